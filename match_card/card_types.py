"""Data structures for match-result card parsing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Tuple


Vertex = Tuple[float, float]

UNKNOWN_CLASS = "UNKNOWN"
UNKNOWN_PLAYER_ID = "0000"

RESULT_NORMAL = "normal"
RESULT_FORFEIT = "forfeit"


@dataclass
class OcrWord:
    """A recognized word with the polygon reported by the OCR engine."""

    text: str
    vertices: List[Vertex] = field(default_factory=list)


@dataclass(frozen=True)
class Token:
    """Axis-aligned box of one recognized word, in image pixels."""

    text: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2.0

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2.0


Cluster = List[Token]


@dataclass
class RoundResult:
    """Outcome of one round slot on a card."""

    round: int
    opponent_club: str = ""
    opponent_name: str = ""
    is_win: bool = False
    score_diff: int = 0
    result_type: str = RESULT_NORMAL

    def to_dict(self) -> Dict[str, object]:
        return {
            "round": self.round,
            "opponentClub": self.opponent_club,
            "opponentName": self.opponent_name,
            "isWin": self.is_win,
            "scoreDiff": self.score_diff,
            "resultType": self.result_type,
        }


@dataclass
class CardRecord:
    """Structured fields read from one physical card."""

    class_name: str = UNKNOWN_CLASS
    club: str = ""
    player_name: str = ""
    school: str = ""
    furigana: str = ""
    player_id: str = UNKNOWN_PLAYER_ID
    game_results: List[RoundResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            "className": self.class_name,
            "club": self.club,
            "playerName": self.player_name,
            "school": self.school,
            "furigana": self.furigana,
            "playerId": self.player_id,
            "gameResults": [result.to_dict() for result in self.game_results],
        }


@dataclass
class CardParseResult:
    """Structured result for one processed image."""

    records: List[CardRecord] = field(default_factory=list)
    rotation_angle: float = 0.0
    full_text: str = ""
    strategy: str = ""
    errors: List[str] = field(default_factory=list)

    @property
    def classes(self) -> List[str]:
        return [record.class_name for record in self.records]
