"""
Upload-processing tests for the blob trigger.

These are unit-style tests: in-memory stub containers record upload calls and
the OCR pipeline is replaced with canned results, so no Azure or Vision access
is needed.
"""

import json
from datetime import datetime

import pytest

import function_app
from match_card.card_types import CardParseResult, CardRecord
from match_card.ocr_client import OcrError

from Tests.helpers import StubContainer


class _StubInputStream:
    def __init__(self, name, data=b"img", metadata=None):
        self.name = name
        self.metadata = metadata
        self._data = data

    def read(self):
        return self._data


def _record(container: StubContainer, name: str) -> dict:
    return json.loads(container.data_map[name].decode("utf-8"))


@pytest.fixture
def canned_pipeline(monkeypatch: pytest.MonkeyPatch):
    result = CardParseResult(
        records=[CardRecord(class_name="A"), CardRecord(class_name="B")],
        rotation_angle=2.0,
        strategy="x_coordinate",
    )
    angles = []

    def fake_deskew(data, angle, quality):
        angles.append(angle)
        return b"jpeg"

    monkeypatch.setattr(function_app.card_pipeline, "parse_image_bytes", lambda *a, **k: result)
    monkeypatch.setattr(function_app, "deskew_image_bytes", fake_deskew)
    return angles


@pytest.mark.parametrize(
    "metadata, expected",
    [
        ({"sessionId": "s1", "order": "3"}, ("s1", 3)),
        ({"sessionId": "s1", "order": "03"}, ("s1", 3)),
        ({"sessionId": "s1"}, (None, None)),
        ({"sessionId": "", "order": "1"}, (None, None)),
        ({"sessionId": "s1", "order": "one"}, (None, None)),
        (None, (None, None)),
    ],
)
def test_read_upload_metadata(metadata, expected):
    assert function_app._read_upload_metadata(metadata) == expected


def test_build_names():
    assert function_app._build_job_record_name("s1", 3) == "uploads/s1/03.json"
    assert function_app._build_job_record_name("a b", 12) == "uploads/a_b/12.json"
    now = datetime(2025, 1, 1, 9, 5)
    assert function_app._build_processed_card_name("A-B", now, 1) == "A-B_0905_001.jpg"
    assert function_app._build_processed_card_name("", now, 12) == "UNKNOWN_0905_012.jpg"


def test_next_processed_blob_name_skips_existing():
    now = datetime(2025, 1, 1, 9, 5)
    container = StubContainer(
        {"uploads/A_0905_001.jpg": b"x", "uploads/A_0905_002.jpg": b"x"}
    )
    assert function_app._next_processed_blob_name(container, "A", now) == ("uploads/A_0905_003.jpg", 3)


class _RacingContainer(StubContainer):
    """Reports names as free, as if another upload claimed them in between."""

    def get_blob_client(self, blob):
        return StubContainer().get_blob_client(blob)


def test_upload_processed_image_moves_past_concurrent_upload():
    now = datetime(2025, 1, 1, 9, 5)
    container = _RacingContainer({"uploads/A_0905_001.jpg": b"other"})

    name = function_app._upload_processed_image(container, "A", now, b"jpeg")

    assert name == "uploads/A_0905_002.jpg"
    assert container.data_map["uploads/A_0905_001.jpg"] == b"other"
    assert container.uploads == [("uploads/A_0905_002.jpg", b"jpeg", False)]


@pytest.mark.parametrize(
    "value, expected",
    [(None, True), ("", True), ("false", False), ("0", False), ("yes", True)],
)
def test_parse_flag_defaults_to_deleting_source(value, expected):
    assert function_app._parse_flag(value, True) is expected


def test_handle_upload_stores_image_and_done_record(canned_pipeline):
    processed = StubContainer()
    results = StubContainer()

    record = function_app._handle_upload(
        "input/uploads/card.jpg", b"img", "s1", 2, processed, results
    )

    assert canned_pipeline == [2.0]
    assert len(processed.uploads) == 1
    blob_name, data, overwrite = processed.uploads[0]
    assert blob_name.startswith("uploads/A-B_") and blob_name.endswith("_001.jpg")
    assert data == b"jpeg" and overwrite is False

    stored = _record(results, "uploads/s1/02.json")
    assert stored == record
    assert stored["status"] == "done"
    assert stored["imagePath"] == "input/uploads/card.jpg"
    assert stored["classes"] == ["A", "B"]
    assert stored["newFilePath"] == blob_name
    assert stored["cards"][0]["className"] == "A"
    assert "uploadedAt" in stored and "parsedAt" in stored
    # processing record first, then the final one
    assert [name for name, _, _ in results.uploads] == ["uploads/s1/02.json"] * 2


def test_handle_upload_marks_record_failed(monkeypatch: pytest.MonkeyPatch):
    def failing(*args, **kwargs):
        raise OcrError("quota exceeded")

    monkeypatch.setattr(function_app.card_pipeline, "parse_image_bytes", failing)
    processed = StubContainer()
    results = StubContainer()

    record = function_app._handle_upload("uploads/card.jpg", b"img", "s1", 1, processed, results)

    assert record["status"] == "error"
    assert record["errorMessage"] == "quota exceeded"
    assert record["imagePath"] == "uploads/card.jpg"
    assert processed.uploads == []


def test_process_upload_skips_without_metadata(monkeypatch: pytest.MonkeyPatch):
    calls = []
    monkeypatch.setattr(
        function_app, "_get_container_client", lambda name: calls.append(name) or (None, None)
    )
    function_app.process_upload(_StubInputStream("input/uploads/card.jpg"))
    assert calls == []


def test_process_upload_without_storage_does_not_parse(monkeypatch: pytest.MonkeyPatch):
    def fail(*args, **kwargs):
        raise AssertionError("pipeline should not run")

    monkeypatch.setattr(function_app, "_get_container_client", lambda _: (None, None))
    monkeypatch.setattr(function_app.card_pipeline, "parse_image_bytes", fail)
    function_app.process_upload(
        _StubInputStream("input/uploads/card.jpg", metadata={"sessionId": "s1", "order": "1"})
    )


def test_process_upload_end_to_end(monkeypatch: pytest.MonkeyPatch, canned_pipeline):
    containers = {
        function_app.PROCESSED_CONTAINER_NAME: StubContainer(),
        function_app.RESULTS_CONTAINER_NAME: StubContainer(),
        function_app.INPUT_CONTAINER_NAME: StubContainer({"uploads/card.jpg": b"img"}),
    }
    monkeypatch.setattr(function_app, "_get_container_client", lambda name: (None, containers[name]))
    monkeypatch.setattr(function_app, "DELETE_SOURCE_BLOB", True)

    function_app.process_upload(
        _StubInputStream("input/uploads/card.jpg", metadata={"sessionId": "s1", "order": "4"})
    )

    stored = _record(containers[function_app.RESULTS_CONTAINER_NAME], "uploads/s1/04.json")
    assert stored["status"] == "done"
    assert containers[function_app.INPUT_CONTAINER_NAME].deleted == ["uploads/card.jpg"]
