"""Group tokens into per-card clusters.

Two strategies are available. :class:`AnchorMarkerClusterer` locates the
printed name-field label on every card and cuts a fixed-size card box around
it; :class:`XCoordinateClusterer` is the fallback used when no label was
recognized and simply groups tokens whose x coordinates are close.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

from .card_config import DEFAULT_CONFIG, OVERLAP_NEAREST_ANCHOR, ParserConfig
from .card_types import Cluster, Token

logger = logging.getLogger(__name__)

STRATEGY_X = "x_coordinate"
STRATEGY_ANCHOR = "anchor_marker"


class ClusterStrategy(Protocol):
    name: str

    def cluster(self, tokens: Sequence[Token]) -> List[Cluster]:
        ...


class XCoordinateClusterer:
    """Greedy clustering on the token x coordinate."""

    name = STRATEGY_X

    def __init__(self, threshold: float = DEFAULT_CONFIG.cluster_threshold) -> None:
        self.threshold = threshold

    def cluster(self, tokens: Sequence[Token]) -> List[Cluster]:
        clusters: List[Cluster] = []
        sums: List[float] = []
        for token in sorted(tokens, key=lambda t: t.x):
            for idx, members in enumerate(clusters):
                if abs(token.x - sums[idx] / len(members)) < self.threshold:
                    members.append(token)
                    sums[idx] += token.x
                    break
            else:
                clusters.append([token])
                sums.append(token.x)
        logger.debug("XCoordinateClusterer: %d tokens -> %d clusters", len(tokens), len(clusters))
        return clusters


@dataclass(frozen=True)
class Marker:
    """Bounding box of one recognized name-field label."""

    x: float
    y: float
    width: float
    height: float

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2.0, self.y + self.height / 2.0)


@dataclass(frozen=True)
class CardBox:
    x0: float
    y0: float
    x1: float
    y1: float

    def contains(self, token: Token) -> bool:
        return self.x0 <= token.x <= self.x1 and self.y0 <= token.y <= self.y1


def _union(a: Token, b: Token) -> Marker:
    x0, y0 = min(a.x, b.x), min(a.y, b.y)
    x1, y1 = max(a.right, b.right), max(a.bottom, b.bottom)
    return Marker(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


def _is_split_pair(head: Token, tail: Token, config: ParserConfig) -> bool:
    """True when ``tail`` sits right of or below ``head`` like the second marker character."""
    char_w = max(head.width, 1.0)
    char_h = max(head.height, 1.0)
    dx = tail.x - head.x
    dy = tail.y - head.y
    horizontal = (
        0 < dx <= config.marker_split_tolerance * char_w
        and abs(dy) <= config.marker_align_tolerance * char_h
    )
    vertical = (
        0 < dy <= config.marker_split_tolerance * char_h
        and abs(dx) <= config.marker_align_tolerance * char_w
    )
    return horizontal or vertical


def find_markers(tokens: Sequence[Token], config: ParserConfig = DEFAULT_CONFIG) -> List[Marker]:
    """Locate every anchor marker, including ones split into single characters."""
    text = config.marker_text
    markers: List[Marker] = []
    for token in tokens:
        if token.text.strip() == text:
            markers.append(Marker(token.x, token.y, token.width, token.height))

    if len(text) == 2:
        heads = [t for t in tokens if t.text.strip() == text[0]]
        tails = [t for t in tokens if t.text.strip() == text[1]]
        used = set()
        for head in heads:
            for idx, tail in enumerate(tails):
                if idx in used or not _is_split_pair(head, tail, config):
                    continue
                used.add(idx)
                markers.append(_union(head, tail))
                break

    markers.sort(key=lambda m: (m.y, m.x))
    logger.debug("find_markers: found %d markers", len(markers))
    return markers


def card_box_for_marker(marker: Marker, config: ParserConfig = DEFAULT_CONFIG) -> CardBox:
    """Estimate the card region from the marker size and position."""
    card_h = marker.height * config.card_height_ratio
    card_w = card_h * config.card_aspect_ratio
    left = marker.x - card_w * config.marker_x_fraction
    top = marker.y - card_h * config.marker_y_fraction
    return CardBox(
        x0=left - card_w * config.card_margin_fraction,
        y0=top - card_h * config.card_margin_fraction,
        x1=left + card_w * (1.0 + config.card_margin_far_fraction),
        y1=top + card_h * (1.0 + config.card_margin_far_fraction),
    )


def _distance(token: Token, marker: Marker) -> float:
    mx, my = marker.center
    return math.hypot(token.center_x - mx, token.center_y - my)


class AnchorMarkerClusterer:
    """Cluster tokens into the estimated card boxes around each anchor marker.

    Boxes of neighbouring cards may overlap. With the default ``keep`` policy
    a token inside several boxes belongs to every one of them; the
    ``nearest_anchor`` policy keeps it only in the cluster of the closest
    marker.
    """

    name = STRATEGY_ANCHOR

    def __init__(
        self,
        config: ParserConfig = DEFAULT_CONFIG,
        markers: Optional[Sequence[Marker]] = None,
    ) -> None:
        self.config = config
        self.markers = list(markers) if markers is not None else None

    def cluster(self, tokens: Sequence[Token]) -> List[Cluster]:
        markers = self.markers if self.markers is not None else find_markers(tokens, self.config)
        boxes = [card_box_for_marker(m, self.config) for m in markers]
        clusters: List[Cluster] = [[] for _ in markers]

        for token in tokens:
            hits = [idx for idx, box in enumerate(boxes) if box.contains(token)]
            if not hits:
                continue
            if self.config.overlap_policy == OVERLAP_NEAREST_ANCHOR and len(hits) > 1:
                hits = [min(hits, key=lambda idx: _distance(token, markers[idx]))]
            for idx in hits:
                clusters[idx].append(token)

        logger.debug("AnchorMarkerClusterer: %d markers -> %d clusters", len(markers), len(clusters))
        return clusters


def select_strategy(tokens: Sequence[Token], config: ParserConfig = DEFAULT_CONFIG) -> ClusterStrategy:
    """Prefer anchor-marker clustering whenever a marker was recognized."""
    markers = find_markers(tokens, config)
    if markers:
        return AnchorMarkerClusterer(config, markers=markers)
    return XCoordinateClusterer(config.cluster_threshold)


def cluster_tokens(
    tokens: Sequence[Token], config: ParserConfig = DEFAULT_CONFIG
) -> Tuple[str, List[Cluster]]:
    if not tokens:
        return STRATEGY_X, []
    strategy = select_strategy(tokens, config)
    return strategy.name, strategy.cluster(tokens)
