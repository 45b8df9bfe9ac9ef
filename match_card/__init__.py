"""OCR post-processing for match-result cards.

This package exposes the card segmentation and field extraction routines
used by the upload trigger and the HTTP endpoints.
"""

from .card_cluster import (  # noqa: F401
    AnchorMarkerClusterer,
    XCoordinateClusterer,
    cluster_tokens,
    find_markers,
)
from .card_config import ParserConfig  # noqa: F401
from .card_fields import extract_fields, first_match, topmost_match  # noqa: F401
from .card_pipeline import (  # noqa: F401
    class_label,
    parse_annotation,
    parse_image_bytes,
    parse_tokens,
)
from .card_types import CardParseResult, CardRecord, RoundResult, Token  # noqa: F401
from .ocr_client import OcrError  # noqa: F401
