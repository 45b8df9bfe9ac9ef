"""Global skew estimation from word polygons."""

from __future__ import annotations

import math
from typing import Iterable, List, Optional, Sequence

import numpy as np

from .card_types import OcrWord, Vertex


def polygon_angle(vertices: Sequence[Vertex]) -> Optional[float]:
    """Angle in degrees of the edge from the first to the second vertex."""
    if len(vertices) < 2:
        return None
    (x0, y0), (x1, y1) = vertices[0], vertices[1]
    return math.degrees(math.atan2(y1 - y0, x1 - x0))


def estimate_skew_angle(angles: Sequence[float]) -> float:
    """Median of the word angles; 0 when there are none.

    For an even count the upper of the two middle values is used.
    """
    if len(angles) == 0:
        return 0.0
    ordered = np.sort(np.asarray(angles, dtype=float))
    return float(ordered[len(ordered) // 2])


def word_angles(words: Iterable[OcrWord]) -> List[float]:
    angles = []
    for word in words:
        angle = polygon_angle(word.vertices)
        if angle is not None:
            angles.append(angle)
    return angles


def estimate_skew(words: Iterable[OcrWord]) -> float:
    return estimate_skew_angle(word_angles(words))


def rotate_point(point: Vertex, degrees: float, pivot: Vertex = (0.0, 0.0)) -> Vertex:
    """Rotate ``point`` by ``degrees`` around ``pivot`` in image coordinates (y down)."""
    theta = math.radians(degrees)
    cos_t, sin_t = math.cos(theta), math.sin(theta)
    dx, dy = point[0] - pivot[0], point[1] - pivot[1]
    return (
        pivot[0] + dx * cos_t - dy * sin_t,
        pivot[1] + dx * sin_t + dy * cos_t,
    )
