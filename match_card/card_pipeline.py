"""Match-result card parsing pipeline.

OCR response -> words -> skew angle -> deskewed tokens -> clusters -> records.
Everything after the OCR call is a pure function of the annotation.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from .card_cluster import cluster_tokens
from .card_config import DEFAULT_CONFIG, ParserConfig
from .card_fields import MatchStrategy, extract_fields, first_match
from .card_types import UNKNOWN_CLASS, CardParseResult, CardRecord, Token
from .ocr_client import detect_document_text
from .ocr_skew import estimate_skew
from .ocr_words import iter_words, page_center, words_to_tokens

logger = logging.getLogger(__name__)


def parse_tokens(
    tokens: Sequence[Token],
    config: ParserConfig = DEFAULT_CONFIG,
    match: MatchStrategy = first_match,
) -> CardParseResult:
    """Cluster tokens into cards and extract one record per cluster."""
    strategy, clusters = cluster_tokens(tokens, config)
    records = [extract_fields(cluster, config, match) for cluster in clusters]
    logger.info(
        "Parsed %d tokens into %d cards using %s clustering",
        len(tokens),
        len(records),
        strategy,
    )
    return CardParseResult(records=records, strategy=strategy)


def parse_annotation(
    annotation: object,
    config: ParserConfig = DEFAULT_CONFIG,
    match: MatchStrategy = first_match,
) -> CardParseResult:
    """Parse a Vision ``TextAnnotation`` into card records."""
    words = list(iter_words(annotation))
    angle = estimate_skew(words)
    rotation = -angle if config.deskew else 0.0
    tokens = words_to_tokens(words, rotation=rotation, pivot=page_center(annotation))

    result = parse_tokens(tokens, config, match)
    result.rotation_angle = angle
    result.full_text = getattr(annotation, "text", "") or ""
    return result


def parse_image_bytes(
    image_bytes: bytes,
    config: ParserConfig = DEFAULT_CONFIG,
    *,
    client: Optional[object] = None,
    match: MatchStrategy = first_match,
) -> CardParseResult:
    """Run OCR on an image and parse the response.

    OCR failures propagate to the caller; parsing itself never fails.
    """
    annotation = detect_document_text(image_bytes, client=client)
    return parse_annotation(annotation, config, match)


def class_label(records: Iterable[CardRecord]) -> str:
    """Join the class names of all records, e.g. ``"A-B"``; ``UNKNOWN`` when empty."""
    names: List[str] = [record.class_name for record in records]
    return "-".join(names) or UNKNOWN_CLASS
