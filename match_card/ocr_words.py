"""Flatten a Cloud Vision text annotation into words and tokens."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, List, Sequence

from .card_types import OcrWord, Token, Vertex
from .ocr_skew import rotate_point

logger = logging.getLogger(__name__)


def _children(node: object, name: str) -> Sequence[object]:
    return getattr(node, name, None) or ()


def _polygon(word: object) -> List[Vertex]:
    box = getattr(word, "bounding_box", None)
    vertices = getattr(box, "vertices", None) or ()
    return [
        (float(getattr(v, "x", 0) or 0), float(getattr(v, "y", 0) or 0))
        for v in vertices
    ]


def iter_words(annotation: object) -> Iterator[OcrWord]:
    """Yield every word of a ``TextAnnotation`` in page/block/paragraph order.

    Missing levels are treated as empty so partial responses still yield the
    words they do contain.
    """
    for page in _children(annotation, "pages"):
        for block in _children(page, "blocks"):
            for paragraph in _children(block, "paragraphs"):
                for word in _children(paragraph, "words"):
                    text = "".join(
                        getattr(symbol, "text", "") or ""
                        for symbol in _children(word, "symbols")
                    )
                    yield OcrWord(text=text, vertices=_polygon(word))


def word_to_token(
    word: OcrWord, rotation: float = 0.0, pivot: Vertex = (0.0, 0.0)
) -> Token:
    """Return the axis-aligned box of a word polygon, rotated by ``rotation`` degrees."""
    points = word.vertices
    if rotation:
        points = [rotate_point(point, rotation, pivot) for point in points]
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    x0, y0 = min(xs), min(ys)
    return Token(
        text=word.text,
        x=x0,
        y=y0,
        width=max(xs) - x0,
        height=max(ys) - y0,
    )


def words_to_tokens(
    words: Iterable[OcrWord], rotation: float = 0.0, pivot: Vertex = (0.0, 0.0)
) -> List[Token]:
    tokens = [word_to_token(w, rotation, pivot) for w in words if w.vertices]
    logger.debug("words_to_tokens: built %d tokens", len(tokens))
    return tokens


def extract_tokens(
    annotation: object, rotation: float = 0.0, pivot: Vertex = (0.0, 0.0)
) -> List[Token]:
    """Flatten an annotation straight into tokens; words without a polygon are dropped."""
    return words_to_tokens(iter_words(annotation), rotation, pivot)


def page_center(annotation: object) -> Vertex:
    """Center of the first page, or the origin when the page size is unknown."""
    pages = _children(annotation, "pages")
    if not pages:
        return (0.0, 0.0)
    width = float(getattr(pages[0], "width", 0) or 0)
    height = float(getattr(pages[0], "height", 0) or 0)
    return (width / 2.0, height / 2.0)
