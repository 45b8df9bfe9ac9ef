"""Extract structured fields from the tokens of one card.

The card is split at a fixed fraction of its width: the right part holds the
player information (affiliation on top, then class, name, reading and
school), the left part holds the six round rows. Every field falls back to a
sentinel value when nothing matches, so a noisy scan yields a partial record
instead of an error.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, List, Optional, Sequence, Set, Tuple

from .card_config import DEFAULT_CONFIG, ParserConfig
from .card_types import (
    RESULT_FORFEIT,
    RESULT_NORMAL,
    CardRecord,
    RoundResult,
    Token,
    UNKNOWN_CLASS,
    UNKNOWN_PLAYER_ID,
)

logger = logging.getLogger(__name__)

Predicate = Callable[[Token], bool]
MatchStrategy = Callable[[Sequence[Token], Predicate], Optional[Token]]

BBox = Tuple[float, float, float, float]

_ID_PATTERN = re.compile(r"ID\s*[:：]?\s*(\d+)")
_DIGITS_PATTERN = re.compile(r"^\d+$")
_ROUND_LABEL_PATTERN = re.compile(
    r"^第?[1-6１-６一二三四五六]?回?戦$|^第?[1-6１-６一二三四五六]回$"
)
_KANA_PATTERN = re.compile(r"^[\u3040-\u30ff\u31f0-\u31ff\s]+$")
_CJK_PATTERN = re.compile(r"[\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff]")


def first_match(tokens: Sequence[Token], predicate: Predicate) -> Optional[Token]:
    """Return the first token, in the given order, satisfying ``predicate``."""
    for token in tokens:
        if predicate(token):
            return token
    return None


def topmost_match(tokens: Sequence[Token], predicate: Predicate) -> Optional[Token]:
    """Return the matching token closest to the top-left corner."""
    matches = [t for t in tokens if predicate(t)]
    if not matches:
        return None
    return min(matches, key=lambda t: (t.y, t.x))


def class_pattern(config: ParserConfig = DEFAULT_CONFIG) -> "re.Pattern[str]":
    return re.compile(rf"^([A-E]\d*){re.escape(config.class_suffix)}?$")


def club_pattern(config: ParserConfig = DEFAULT_CONFIG) -> "re.Pattern[str]":
    return re.compile(rf"^(.+){re.escape(config.club_suffix)}$")


def cluster_bbox(tokens: Sequence[Token]) -> BBox:
    """Return ``(x0, y0, x1, y1)`` covering every token."""
    return (
        min(t.x for t in tokens),
        min(t.y for t in tokens),
        max(t.right for t in tokens),
        max(t.bottom for t in tokens),
    )


def _reading_order(tokens: Sequence[Token]) -> List[Token]:
    return sorted(tokens, key=lambda t: (t.y, t.x))


def split_halves(
    tokens: Sequence[Token], bbox: BBox, config: ParserConfig = DEFAULT_CONFIG
) -> Tuple[List[Token], List[Token]]:
    """Split a cluster into ``(player_info, game_results)`` by horizontal position."""
    x0, _, x1, _ = bbox
    boundary = x0 + (x1 - x0) * config.info_split_fraction
    info = [t for t in tokens if t.center_x >= boundary]
    results = [t for t in tokens if t.center_x < boundary]
    return info, results


def _follows(prev: Token, nxt: Token, tolerance: float) -> bool:
    char_w = max(prev.width, 1.0)
    char_h = max(prev.height, 1.0)
    below = (
        nxt.y > prev.y
        and nxt.y - prev.bottom <= tolerance * char_h
        and abs(nxt.x - prev.x) <= tolerance * char_w
    )
    right = (
        nxt.x > prev.x
        and nxt.x - prev.right <= tolerance * char_w
        and abs(nxt.y - prev.y) <= tolerance * char_h
    )
    return below or right


def stitch_stacked_text(
    tokens: Sequence[Token],
    pattern: "re.Pattern[str]",
    tolerance: float,
    head: Optional[Token] = None,
) -> Optional[Tuple[str, List[Token]]]:
    """Join single-character tokens typeset one after another and match ``pattern``.

    Returns the matched class text and the tokens it was built from. When
    ``head`` is given only chains starting at that token are tried.
    """
    singles = _reading_order([t for t in tokens if len(t.text.strip()) == 1])
    for start, first in enumerate(singles):
        if head is not None and first is not head:
            continue
        chain = [first]
        for candidate in singles[start + 1:]:
            if _follows(chain[-1], candidate, tolerance):
                chain.append(candidate)
        if len(chain) < 2:
            continue
        joined = "".join(t.text.strip() for t in chain)
        # try the longest prefix first so "A1級" wins over "A1"
        for end in range(len(chain), 1, -1):
            found = pattern.match("".join(t.text.strip() for t in chain[:end]))
            if found:
                logger.debug("stitch_stacked_text: matched %r from %r", found.group(1), joined)
                return found.group(1), chain[:end]
    return None


def _is_marker(token: Token, config: ParserConfig) -> bool:
    text = token.text.strip()
    marker = config.marker_text
    return text == marker or (len(marker) > 1 and text in marker)


def _is_round_mark(token: Token, config: ParserConfig) -> bool:
    text = token.text.strip()
    return bool(_ROUND_LABEL_PATTERN.match(text)) or text in config.win_glyphs or text in config.lose_glyphs


def _column_player_section(cluster: Sequence[Token], config: ParserConfig) -> List[Token]:
    """Tokens above the first round row of a single-column card."""
    marks = [t.y for t in cluster if _is_round_mark(t, config)]
    if marks:
        above = [t for t in cluster if t.center_y < min(marks)]
        if above:
            return above
    return list(cluster)


def _extract_player_info(
    record: CardRecord,
    cluster: Sequence[Token],
    info: Sequence[Token],
    bbox: BBox,
    config: ParserConfig,
    match: MatchStrategy,
) -> Set[int]:
    """Fill the player fields of ``record`` and return the ids of the tokens consumed."""
    _, y0, _, y1 = bbox
    zone_limit = y0 + (y1 - y0) * config.affiliation_zone_fraction
    ordered_info = _reading_order(info)
    affiliation_zone = [t for t in ordered_info if t.center_y < zone_limit]
    player_zone = [t for t in ordered_info if t.center_y >= zone_limit]
    used = set()

    class_re = class_pattern(config)
    class_token = match(ordered_info, lambda t: bool(class_re.match(t.text.strip())))
    stitched = None
    if class_token is None:
        stitched = stitch_stacked_text(ordered_info, class_re, config.stack_tolerance)
    elif len(class_token.text.strip()) == 1:
        # a lone letter may be the head of a vertically typeset label such as "B2級"
        stitched = stitch_stacked_text(
            ordered_info, class_re, config.stack_tolerance, head=class_token
        )
    if stitched:
        record.class_name = stitched[0]
        used.update(id(t) for t in stitched[1])
    elif class_token is not None:
        record.class_name = class_re.match(class_token.text.strip()).group(1)
        used.add(id(class_token))

    club_re = club_pattern(config)
    club_token = match(affiliation_zone, lambda t: bool(club_re.match(t.text.strip())))
    if club_token is not None:
        record.club = club_token.text.strip()
        used.add(id(club_token))

    id_token = match(_reading_order(cluster), lambda t: bool(_ID_PATTERN.search(t.text)))
    if id_token is not None:
        record.player_id = _ID_PATTERN.search(id_token.text).group(1)
        used.add(id(id_token))

    def _candidates(zone: Sequence[Token]) -> List[Token]:
        return [
            t
            for t in zone
            if id(t) not in used
            and t.text.strip()
            and not _is_marker(t, config)
            and t.text.strip().upper() != "ID"
            and not _is_round_mark(t, config)
        ]

    remaining = _candidates(player_zone) or _candidates(ordered_info)
    if not remaining:
        return used

    record.player_name = remaining[0].text.strip()
    used.add(id(remaining[0]))
    for token in remaining[1:]:
        text = token.text.strip()
        if not record.furigana and _KANA_PATTERN.match(text):
            record.furigana = text
            used.add(id(token))
        elif (
            not record.school
            and _CJK_PATTERN.search(text)
            and not club_re.match(text)
        ):
            record.school = text
            used.add(id(token))
    return used


def classify_round(
    round_number: int,
    tokens: Sequence[Token],
    config: ParserConfig = DEFAULT_CONFIG,
) -> Optional[RoundResult]:
    """Read one round row; ``None`` for a blank or unidentifiable slot."""
    ordered = sorted(tokens, key=lambda t: (t.x, t.y))
    texts = [t.text.strip() for t in ordered if t.text.strip()]
    suffix = config.club_suffix

    def _is_forfeit(text: str) -> bool:
        return text in config.forfeit_glyphs or any(
            len(glyph) > 1 and glyph in text for glyph in config.forfeit_glyphs
        )

    forfeit = any(_is_forfeit(text) for text in texts)
    glyphs = [t for t in texts if t in config.win_glyphs or t in config.lose_glyphs]
    outcome = (glyphs[0] in config.win_glyphs) if glyphs else None
    if not forfeit and outcome is None:
        return None

    score = next((int(text) for text in texts if _DIGITS_PATTERN.match(text)), 0)
    club_texts = [text for text in texts if suffix in text]
    opponent_club = next((text for text in club_texts if text != suffix), "")
    name_parts = [
        text
        for text in texts
        if suffix not in text
        and not _ROUND_LABEL_PATTERN.match(text)
        and text not in config.win_glyphs
        and text not in config.lose_glyphs
        and not _DIGITS_PATTERN.match(text)
        and not _is_forfeit(text)
    ]
    opponent_name = "".join(name_parts)

    if forfeit:
        return RoundResult(
            round=round_number,
            opponent_club=opponent_club,
            opponent_name=opponent_name,
            is_win=True,
            score_diff=0,
            result_type=RESULT_FORFEIT,
        )
    if not club_texts and not opponent_name:
        return None
    return RoundResult(
        round=round_number,
        opponent_club=opponent_club,
        opponent_name=opponent_name,
        is_win=bool(outcome),
        score_diff=score,
        result_type=RESULT_NORMAL,
    )


def split_round_bands(
    tokens: Sequence[Token], config: ParserConfig = DEFAULT_CONFIG
) -> List[List[Token]]:
    """Divide the results half into ``round_count`` equal horizontal bands."""
    bands: List[List[Token]] = [[] for _ in range(config.round_count)]
    if not tokens:
        return bands
    top = min(t.y for t in tokens)
    bottom = max(t.bottom for t in tokens)
    band_height = (bottom - top) / config.round_count
    for token in tokens:
        if band_height <= 0:
            idx = 0
        else:
            idx = int((token.center_y - top) / band_height)
        bands[max(0, min(idx, config.round_count - 1))].append(token)
    return bands


def extract_rounds(
    tokens: Sequence[Token], config: ParserConfig = DEFAULT_CONFIG
) -> List[RoundResult]:
    results = []
    for number, band in enumerate(split_round_bands(tokens, config), 1):
        result = classify_round(number, band, config)
        if result is None:
            if band:
                logger.debug("extract_rounds: round %d skipped (%d tokens)", number, len(band))
            continue
        results.append(result)
    return results


def extract_fields(
    cluster: Sequence[Token],
    config: ParserConfig = DEFAULT_CONFIG,
    match: MatchStrategy = first_match,
) -> CardRecord:
    """Build a :class:`CardRecord` from one cluster of tokens."""
    record = CardRecord()
    if not cluster:
        return record

    bbox = cluster_bbox(cluster)
    info, results = split_halves(cluster, bbox, config)
    if not info:
        info = _column_player_section(cluster, config)
    used = _extract_player_info(record, cluster, info, bbox, config, match)
    record.game_results = extract_rounds([t for t in results if id(t) not in used], config)
    if record.class_name == UNKNOWN_CLASS or record.player_id == UNKNOWN_PLAYER_ID:
        logger.debug(
            "extract_fields: partial record class=%s id=%s from %d tokens",
            record.class_name,
            record.player_id,
            len(cluster),
        )
    return record
