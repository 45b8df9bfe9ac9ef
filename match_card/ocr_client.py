"""Cloud Vision client resolution and document text detection."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from google.cloud import vision

logger = logging.getLogger(__name__)

_CLIENT: Optional[vision.ImageAnnotatorClient] = None
_CLIENT_LOCK = threading.Lock()


class OcrError(RuntimeError):
    """Raised when the OCR service reports an error for an image."""


def get_vision_client() -> vision.ImageAnnotatorClient:
    """Return a process-wide cached ``ImageAnnotatorClient``."""
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT

    with _CLIENT_LOCK:
        if _CLIENT is None:
            _CLIENT = vision.ImageAnnotatorClient()
        return _CLIENT


def detect_document_text(
    image_bytes: bytes, client: Optional[vision.ImageAnnotatorClient] = None
) -> vision.TextAnnotation:
    """Run dense text detection and return the ``full_text_annotation``.

    Transport errors from the client propagate unchanged; an error reported
    inside the response is raised as :class:`OcrError`.
    """
    client = client or get_vision_client()
    response = client.document_text_detection(image=vision.Image(content=image_bytes))
    message = getattr(getattr(response, "error", None), "message", "")
    if message:
        logger.error("Vision API error: %s", message)
        raise OcrError(message)
    return response.full_text_annotation


def load_annotation_json(payload: str) -> vision.TextAnnotation:
    """Rebuild a ``TextAnnotation`` from a saved ``AnnotateImageResponse`` JSON document."""
    response = vision.AnnotateImageResponse.from_json(payload, ignore_unknown_fields=True)
    return response.full_text_annotation
