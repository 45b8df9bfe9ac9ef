"""Test helpers for building OCR annotations, tokens and storage stubs."""

from types import SimpleNamespace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from match_card.card_types import Token
from match_card.ocr_skew import rotate_point

Point = Tuple[float, float]


def box(x: float, y: float, w: float, h: float) -> List[Point]:
    """Upright quadrilateral in Vision vertex order."""
    return [(x, y), (x + w, y), (x + w, y + h), (x, y + h)]


def rotated(points: Sequence[Point], degrees: float, pivot: Point = (0.0, 0.0)) -> List[Point]:
    return [rotate_point(p, degrees, pivot) for p in points]


def vision_word(text: str, vertices: Optional[Sequence[Point]]) -> SimpleNamespace:
    """Mimic a Vision ``Word``: one symbol per character plus a bounding polygon."""
    bounding_box = None
    if vertices is not None:
        bounding_box = SimpleNamespace(
            vertices=[SimpleNamespace(x=x, y=y) for x, y in vertices]
        )
    return SimpleNamespace(
        symbols=[SimpleNamespace(text=ch) for ch in text],
        bounding_box=bounding_box,
    )


def vision_annotation(
    words: Iterable[SimpleNamespace], width: int = 0, height: int = 0, text: str = ""
) -> SimpleNamespace:
    paragraph = SimpleNamespace(words=list(words))
    block = SimpleNamespace(paragraphs=[paragraph])
    page = SimpleNamespace(width=width, height=height, blocks=[block])
    return SimpleNamespace(pages=[page], text=text)


def annotation_from_tokens(tokens: Iterable[Token], degrees: float = 0.0) -> SimpleNamespace:
    """Turn tokens back into an annotation, optionally skewing every polygon."""
    words = []
    for token in tokens:
        points = box(token.x, token.y, token.width, token.height)
        if degrees:
            points = rotated(points, degrees)
        words.append(vision_word(token.text, points))
    return vision_annotation(words)


def side_by_side_card(offset_x: float, class_text: str, id_text: str, name: str) -> List[Token]:
    """Four tokens of a narrow card: a round label on the left, player info on the right."""
    return [
        Token("1回戦", offset_x, 0, 20, 10),
        Token(class_text, offset_x + 30, 0, 10, 10),
        Token(name, offset_x + 30, 50, 20, 10),
        Token(id_text, offset_x + 30, 90, 20, 10),
    ]


def full_card(offset_x: float = 0.0, offset_y: float = 0.0) -> List[Token]:
    """A complete card laid out around a ``氏名`` marker at (800, 200)."""
    layout = [
        # player information
        ("東京会", 720, 120, 80, 20),
        ("A級", 850, 150, 40, 20),
        ("氏名", 800, 200, 40, 20),
        ("山田太郎", 720, 240, 100, 24),
        ("やまだたろう", 720, 270, 100, 14),
        ("東京高校", 720, 300, 100, 20),
        ("ID:1234", 720, 420, 90, 20),
        # round rows
        ("1回戦", 340, 130, 40, 20),
        ("〇", 400, 130, 20, 20),
        ("5", 430, 130, 15, 20),
        ("大阪会", 460, 130, 60, 20),
        ("鈴木", 530, 130, 40, 20),
        ("2回戦", 340, 190, 40, 20),
        ("×", 400, 190, 20, 20),
        ("3", 430, 190, 15, 20),
        ("京都会", 460, 190, 60, 20),
        ("佐藤", 530, 190, 40, 20),
        ("3回戦", 340, 250, 40, 20),
        ("不戦", 400, 250, 40, 20),
        ("4回戦", 340, 310, 40, 20),
        ("5回戦", 340, 370, 40, 20),
        ("6回戦", 340, 430, 40, 20),
    ]
    return [Token(text, x + offset_x, y + offset_y, w, h) for text, x, y, w, h in layout]


class StubDownload:
    def __init__(self, data: bytes) -> None:
        self._data = data

    def readall(self) -> bytes:
        return self._data


class StubBlobClient:
    def __init__(self, name: str, data_map: Dict[str, bytes]) -> None:
        self._name = name
        self._data_map = data_map

    def exists(self) -> bool:
        return self._name in self._data_map

    def download_blob(self) -> StubDownload:
        if self._name not in self._data_map:
            raise ResourceNotFoundError(message="Blob not found")
        return StubDownload(self._data_map[self._name])


class StubContainer:
    """A minimal stand-in for ``azure.storage.blob.ContainerClient`` backed by a dict."""

    def __init__(self, data_map: Optional[Dict[str, bytes]] = None) -> None:
        self.data_map: Dict[str, bytes] = dict(data_map or {})
        self.uploads: List[Tuple[str, bytes, bool]] = []
        self.deleted: List[str] = []

    def get_blob_client(self, blob: str) -> StubBlobClient:
        return StubBlobClient(blob, self.data_map)

    def upload_blob(self, name, data, overwrite=False, **kwargs):
        if not overwrite and name in self.data_map:
            raise ResourceExistsError(message="Blob already exists")
        self.uploads.append((name, data, overwrite))
        self.data_map[name] = data

    def delete_blob(self, name, **kwargs):
        self.deleted.append(name)
        self.data_map.pop(name, None)
