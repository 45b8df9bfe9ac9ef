import json
import logging
import os
import re
import time
from datetime import datetime
from typing import Dict, Mapping, Optional, Tuple

import azure.functions as func
from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContainerClient, ContentSettings

from match_card import card_pipeline
from match_card.card_config import ParserConfig
from match_card.card_fields import first_match, topmost_match
from match_card.card_types import CardParseResult
from match_card.image_io import deskew_image_bytes
from match_card.ocr_client import OcrError

app = func.FunctionApp()

# Define container names from environment variables with defaults
INPUT_CONTAINER_NAME = os.environ.get("INPUT_CONTAINER_NAME", "input")
PROCESSED_CONTAINER_NAME = os.environ.get("PROCESSED_CONTAINER_NAME", "processed")
RESULTS_CONTAINER_NAME = os.environ.get("RESULTS_CONTAINER_NAME", "results")
UPLOAD_PREFIX = os.environ.get("UPLOAD_PREFIX", "uploads").strip("/")
JPEG_QUALITY = int(os.environ.get("JPEG_QUALITY", "80"))


def _parse_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# The source upload is removed once its deskewed copy is stored
DELETE_SOURCE_BLOB = _parse_flag(os.environ.get("DELETE_SOURCE_BLOB"), True)
STORAGE_AUTH_MODE = (
    os.environ.get("STORAGE_AUTH_MODE", "connection_string").strip().lower()
)
STORAGE_ACCOUNT_URL = os.environ.get("STORAGE_ACCOUNT_URL")

PARSER_CONFIG = ParserConfig.from_env()

_MATCH_STRATEGIES = {"first": first_match, "topmost": topmost_match}


def _resolve_auth_level(value: Optional[str], default: func.AuthLevel) -> func.AuthLevel:
    if not value:
        return default
    normalized = value.strip().upper()
    if normalized in {"ANONYMOUS", "FUNCTION", "ADMIN"}:
        return getattr(func.AuthLevel, normalized)
    logging.warning("Unknown auth level '%s'; defaulting to %s", value, default)
    return default


DEFAULT_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HTTP_AUTH_LEVEL"), func.AuthLevel.FUNCTION
)
HEALTH_AUTH_LEVEL = _resolve_auth_level(
    os.environ.get("HEALTH_AUTH_LEVEL"), DEFAULT_AUTH_LEVEL
)


def _get_storage_service_client() -> Optional[BlobServiceClient]:
    if STORAGE_AUTH_MODE in {"managed_identity", "aad"}:
        if not STORAGE_ACCOUNT_URL:
            logging.error(
                "STORAGE_ACCOUNT_URL is required for managed identity storage access"
            )
            return None
        try:
            credential = DefaultAzureCredential()
            return BlobServiceClient(
                account_url=STORAGE_ACCOUNT_URL, credential=credential
            )
        except Exception as exc:
            logging.error(
                "Failed to create blob service client with managed identity: %s", exc
            )
            return None

    connection = os.environ.get("AzureWebJobsStorage")
    if not connection:
        logging.error("AzureWebJobsStorage connection string not found in environment")
        return None

    try:
        return BlobServiceClient.from_connection_string(connection)
    except Exception as exc:
        logging.error("Failed to create blob service client: %s", exc)
        return None


def _get_container_client(
    container_name: str,
) -> Tuple[Optional[BlobServiceClient], Optional[ContainerClient]]:
    service_client = _get_storage_service_client()
    if not service_client:
        return None, None

    try:
        container_client = service_client.get_container_client(container_name)
        return service_client, container_client
    except Exception as exc:
        logging.error(
            "Failed to create blob container client for %s: %s",
            container_name,
            exc,
        )
        return None, None


def _now_millis() -> int:
    return int(time.time() * 1000)


def _read_upload_metadata(
    metadata: Optional[Mapping[str, str]],
) -> Tuple[Optional[str], Optional[int]]:
    """Return ``(session_id, order)`` from blob metadata, or ``(None, None)`` if unusable."""
    metadata = metadata or {}
    session_id = (metadata.get("sessionId") or metadata.get("sessionid") or "").strip()
    raw_order = (metadata.get("order") or "").strip()
    if not session_id or not re.fullmatch(r"\d+", raw_order):
        return None, None
    return session_id, int(raw_order)


def _sanitize_blob_folder_name(value: str) -> str:
    safe = re.sub(r"[^A-Za-z0-9._-]+", "_", value).strip("_")
    return safe or "session"


def _build_job_record_name(session_id: str, order: int) -> str:
    return f"uploads/{_sanitize_blob_folder_name(session_id)}/{order:02d}.json"


def _build_processed_card_name(classes: str, now: datetime, idx: int) -> str:
    safe_classes = re.sub(r"[^A-Za-z0-9-]+", "_", classes).strip("_") or "UNKNOWN"
    return f"{safe_classes}_{now:%H%M}_{idx:03d}.jpg"


def _next_processed_blob_name(
    processed_container: ContainerClient, classes: str, now: datetime, start: int = 1
) -> Tuple[str, int]:
    """Return the first free ``<classes>_<HHMM>_<NNN>.jpg`` name at or after ``start``."""
    idx = start
    while True:
        blob_name = f"{UPLOAD_PREFIX}/{_build_processed_card_name(classes, now, idx)}"
        if not processed_container.get_blob_client(blob_name).exists():
            return blob_name, idx
        idx += 1


def _upload_processed_image(
    processed_container: ContainerClient, classes: str, now: datetime, data: bytes
) -> str:
    """Store ``data`` under the next free name without replacing an existing card."""
    idx = 1
    while True:
        blob_name, idx = _next_processed_blob_name(processed_container, classes, now, idx)
        try:
            processed_container.upload_blob(
                name=blob_name,
                data=data,
                overwrite=False,
                content_settings=ContentSettings(content_type="image/jpeg"),
            )
            return blob_name
        except ResourceExistsError:
            logging.info("Processed blob %s was taken concurrently; trying the next index", blob_name)
            idx += 1


def _read_job_record(results_container: ContainerClient, record_name: str) -> Dict[str, object]:
    try:
        data = results_container.get_blob_client(record_name).download_blob().readall()
    except ResourceNotFoundError:
        return {}
    return json.loads(data.decode("utf-8"))


def _write_job_record(
    results_container: ContainerClient, record_name: str, record: Dict[str, object]
) -> None:
    """Store a job record as JSON, logging instead of raising on failure."""
    try:
        results_container.upload_blob(
            name=record_name,
            data=json.dumps(record, ensure_ascii=False).encode("utf-8"),
            overwrite=True,
            content_settings=ContentSettings(content_type="application/json"),
        )
        logging.info("Stored job record %s (status=%s)", record_name, record.get("status"))
    except Exception as exc:
        logging.error("Failed to store job record %s: %s", record_name, exc)


def _update_job_record(
    results_container: ContainerClient, record_name: str, updates: Dict[str, object]
) -> Dict[str, object]:
    try:
        record = _read_job_record(results_container, record_name)
    except Exception as exc:
        logging.error("Failed to read job record %s: %s", record_name, exc)
        record = {}
    record.update(updates)
    _write_job_record(results_container, record_name, record)
    return record


def _serialize_result(result: CardParseResult) -> Dict[str, object]:
    return {
        "cards": [record.to_dict() for record in result.records],
        "classes": result.classes,
        "rotationAngle": result.rotation_angle,
        "strategy": result.strategy,
        "errors": result.errors,
    }


def _process_upload_bytes(
    source_name: str,
    blob_bytes: bytes,
    processed_container: ContainerClient,
    now: Optional[datetime] = None,
) -> Tuple[CardParseResult, str]:
    """Parse an uploaded card photo and store the deskewed image."""
    result = card_pipeline.parse_image_bytes(blob_bytes, PARSER_CONFIG)
    logging.info(
        "Parsed %s: %d cards, rotation %.2f deg", source_name, len(result.records), result.rotation_angle
    )

    rotated = deskew_image_bytes(blob_bytes, result.rotation_angle, quality=JPEG_QUALITY)
    classes = card_pipeline.class_label(result.records)
    blob_name = _upload_processed_image(processed_container, classes, now or datetime.now(), rotated)
    logging.info("Uploaded deskewed image for %s as %s", source_name, blob_name)
    return result, blob_name


def _delete_source_blob(source_name: str) -> None:
    _, input_container = _get_container_client(INPUT_CONTAINER_NAME)
    if not input_container:
        return
    try:
        input_container.delete_blob(source_name)
        logging.info("Deleted source blob %s", source_name)
    except Exception as exc:
        logging.error("Failed to delete source blob %s: %s", source_name, exc)


def _handle_upload(
    source_name: str,
    blob_bytes: bytes,
    session_id: str,
    order: int,
    processed_container: ContainerClient,
    results_container: ContainerClient,
) -> Dict[str, object]:
    """Run one upload through the pipeline, tracking progress in its job record."""
    record_name = _build_job_record_name(session_id, order)
    _write_job_record(
        results_container,
        record_name,
        {"status": "processing", "imagePath": source_name, "uploadedAt": _now_millis()},
    )

    try:
        result, new_path = _process_upload_bytes(source_name, blob_bytes, processed_container)
    except Exception as exc:
        logging.exception("Failed to parse upload %s", source_name)
        return _update_job_record(
            results_container,
            record_name,
            {"status": "error", "errorMessage": str(exc)},
        )

    updates: Dict[str, object] = {"status": "done", "newFilePath": new_path, "parsedAt": _now_millis()}
    updates.update(_serialize_result(result))
    return _update_job_record(results_container, record_name, updates)


@app.function_name(name="ProcessUpload")
@app.blob_trigger(
    arg_name="inputBlob",
    path=f"{INPUT_CONTAINER_NAME}/{UPLOAD_PREFIX}/{{name}}",
    connection="AzureWebJobsStorage",
)
def process_upload(inputBlob: func.InputStream) -> None:
    """Blob trigger to parse match-result card photos uploaded for a session."""
    if not inputBlob.name:
        logging.error("Blob name is missing, cannot process.")
        return

    session_id, order = _read_upload_metadata(getattr(inputBlob, "metadata", None))
    if session_id is None or order is None:
        logging.info("Skipping %s: sessionId/order metadata missing", inputBlob.name)
        return

    logging.info("Processing upload %s (session=%s, order=%d)", inputBlob.name, session_id, order)

    _, processed_container = _get_container_client(PROCESSED_CONTAINER_NAME)
    _, results_container = _get_container_client(RESULTS_CONTAINER_NAME)
    if not processed_container or not results_container:
        logging.critical(
            "Exiting: Storage container clients could not be initialized. "
            "Check storage connection string."
        )
        return

    try:
        blob_bytes = inputBlob.read()
    except Exception as exc:
        logging.error("Failed to read blob %s: %s", inputBlob.name, exc)
        return

    record = _handle_upload(
        inputBlob.name, blob_bytes, session_id, order, processed_container, results_container
    )
    if DELETE_SOURCE_BLOB and record.get("status") == "done":
        # the trigger reports the name with its container prefix
        _delete_source_blob(inputBlob.name.split("/", 1)[-1])


@app.function_name(name="Health")
@app.route(route="health", methods=["GET"], auth_level=HEALTH_AUTH_LEVEL)
def health(req: func.HttpRequest) -> func.HttpResponse:
    """Simple health endpoint for Postman/smoke tests."""
    return func.HttpResponse("OK", status_code=200)


@app.function_name(name="ParseCard")
@app.route(route="parse", methods=["POST"], auth_level=DEFAULT_AUTH_LEVEL)
def parse_card(req: func.HttpRequest) -> func.HttpResponse:
    """Parse match-result cards from image bytes sent as the raw request body.

    Query params:
      - match=first|topmost (default: first)
    """
    image_bytes = req.get_body() or b""
    if not image_bytes:
        return func.HttpResponse(
            "Provide image bytes in the request body.", status_code=400
        )

    match_name = (req.params.get("match") or "first").strip().lower()
    match = _MATCH_STRATEGIES.get(match_name)
    if match is None:
        return func.HttpResponse(
            "Unsupported match. Use 'first' or 'topmost'.", status_code=400
        )

    try:
        result = card_pipeline.parse_image_bytes(image_bytes, PARSER_CONFIG, match=match)
    except OcrError as exc:
        return func.HttpResponse(f"OCR failed: {exc}", status_code=502)
    except Exception as exc:
        logging.exception("OCR request failed")
        return func.HttpResponse(f"OCR request failed: {exc}", status_code=502)

    return func.HttpResponse(
        body=json.dumps(_serialize_result(result), ensure_ascii=False),
        status_code=200,
        mimetype="application/json",
    )


@app.function_name(name="UploadResult")
@app.route(route="results", methods=["GET"], auth_level=DEFAULT_AUTH_LEVEL)
def upload_result(req: func.HttpRequest) -> func.HttpResponse:
    """Return the stored job record for one upload of a session."""
    session_id, order = _read_upload_metadata(
        {"sessionId": req.params.get("sessionId") or "", "order": req.params.get("order") or ""}
    )
    if session_id is None or order is None:
        return func.HttpResponse(
            "Provide sessionId and a numeric order.", status_code=400
        )

    _, results_container = _get_container_client(RESULTS_CONTAINER_NAME)
    if not results_container:
        return func.HttpResponse(
            "Storage is not configured. Set AzureWebJobsStorage.", status_code=500
        )

    record_name = _build_job_record_name(session_id, order)
    try:
        record = _read_job_record(results_container, record_name)
    except Exception as exc:
        logging.error("Failed to read job record %s: %s", record_name, exc)
        return func.HttpResponse("Failed to read result.", status_code=500)
    if not record:
        return func.HttpResponse("Result not found.", status_code=404)

    return func.HttpResponse(
        body=json.dumps(record, ensure_ascii=False),
        status_code=200,
        mimetype="application/json",
    )
