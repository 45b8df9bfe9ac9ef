"""Tunable parameters for card segmentation and field extraction.

Every threshold, ratio and glyph used by the parsing heuristics lives on
:class:`ParserConfig` so a different physical card layout can be described
without touching the extraction code.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass
from typing import FrozenSet, Mapping, Optional

logger = logging.getLogger(__name__)

OVERLAP_KEEP = "keep"
OVERLAP_NEAREST_ANCHOR = "nearest_anchor"
_OVERLAP_POLICIES = {OVERLAP_KEEP, OVERLAP_NEAREST_ANCHOR}


@dataclass(frozen=True)
class ParserConfig:
    # x-coordinate clustering
    cluster_threshold: float = 50.0

    # anchor-marker clustering
    marker_text: str = "氏名"
    marker_split_tolerance: float = 2.5
    marker_align_tolerance: float = 0.5
    card_height_ratio: float = 18.0
    card_aspect_ratio: float = 1.65
    marker_x_fraction: float = 0.80
    marker_y_fraction: float = 0.25
    card_margin_fraction: float = 0.02
    card_margin_far_fraction: float = 0.05
    overlap_policy: str = OVERLAP_KEEP

    # zones
    info_split_fraction: float = 0.55
    affiliation_zone_fraction: float = 0.30
    round_count: int = 6
    stack_tolerance: float = 0.6

    deskew: bool = True

    # glyphs
    class_suffix: str = "級"
    club_suffix: str = "会"
    win_glyphs: FrozenSet[str] = frozenset({"〇", "○", "◯"})
    lose_glyphs: FrozenSet[str] = frozenset({"×", "✕", "╳"})
    forfeit_glyphs: FrozenSet[str] = frozenset({"不戦", "不"})

    def __post_init__(self) -> None:
        if self.overlap_policy not in _OVERLAP_POLICIES:
            raise ValueError(
                f"Unsupported overlap_policy '{self.overlap_policy}'. "
                f"Choose from: {', '.join(sorted(_OVERLAP_POLICIES))}."
            )
        if self.round_count < 1:
            raise ValueError("round_count must be positive")

    @classmethod
    def from_env(
        cls, prefix: str = "CARD_", environ: Optional[Mapping[str, str]] = None
    ) -> "ParserConfig":
        """Build a config, overriding scalar fields from ``<PREFIX><FIELD>`` variables."""
        env = os.environ if environ is None else environ
        overrides = {}
        for item in dataclasses.fields(cls):
            raw = env.get(f"{prefix}{item.name.upper()}")
            if raw is None:
                continue
            default = item.default
            try:
                if isinstance(default, bool):
                    value: object = raw.strip().lower() in {"1", "true", "yes", "on"}
                elif isinstance(default, int):
                    value = int(raw)
                elif isinstance(default, float):
                    value = float(raw)
                elif isinstance(default, str):
                    value = raw.strip()
                else:
                    logger.warning("Setting %s%s cannot be set from the environment", prefix, item.name.upper())
                    continue
            except ValueError:
                logger.warning("Ignoring malformed setting %s%s=%r", prefix, item.name.upper(), raw)
                continue
            overrides[item.name] = value

        if overrides.get("overlap_policy", OVERLAP_KEEP) not in _OVERLAP_POLICIES:
            logger.warning("Unknown overlap policy '%s'; keeping overlaps", overrides["overlap_policy"])
            overrides.pop("overlap_policy")
        if overrides.get("round_count", 1) < 1:
            logger.warning("Ignoring non-positive setting %sROUND_COUNT=%r", prefix, overrides["round_count"])
            overrides.pop("round_count")
        return cls(**overrides)


DEFAULT_CONFIG = ParserConfig()
