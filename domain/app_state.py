"""Application state snapshot and its versioned persistence payloads."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Any, Mapping, Union

from parser.calendar_parser import DAY_KEYS, DEFAULT_SONG, CalendarResult, DayRecord, parse_calendar
from parser.list_parsers import MindMapResult, normalize_game_name, parse_spiral_review

SLOT_MIND_MAP = "mindMap"
SLOT_CALENDAR = "calendar"
SLOT_GAMES = "gamesList"
SLOT_SPIRAL_REVIEW = "spiralReview"
SLOT_TEMPLATE = "template"
SLOT_REVIEW_CURSOR = "reviewIndex"
STATE_SLOTS = (
    SLOT_MIND_MAP,
    SLOT_CALENDAR,
    SLOT_GAMES,
    SLOT_SPIRAL_REVIEW,
    SLOT_TEMPLATE,
    SLOT_REVIEW_CURSOR,
)
REQUIRED_DOCUMENTS = {
    SLOT_MIND_MAP: "Mind Map",
    SLOT_CALENDAR: "Calendar",
    SLOT_GAMES: "Games List",
    SLOT_TEMPLATE: "Template",
}


@dataclass(frozen=True)
class AppState:
    mind_map: MindMapResult | None = None
    calendar: CalendarResult | None = None
    games: dict[str, str] | None = None
    spiral_review: tuple[str, ...] | None = None
    template: bytes | None = None
    review_cursor: int = 0

    def missing_documents(self) -> list[str]:
        present = {
            SLOT_MIND_MAP: self.mind_map is not None,
            SLOT_CALENDAR: self.calendar is not None,
            SLOT_GAMES: self.games is not None,
            SLOT_TEMPLATE: self.template is not None,
        }
        return [label for slot, label in REQUIRED_DOCUMENTS.items() if not present[slot]]


@dataclass(frozen=True)
class LegacyCalendarState:
    """Older saves: raw OCR text, or a bare ``day -> record`` mapping."""

    raw: str | dict[str, Any]

    def upgrade(self) -> CalendarResult:
        if isinstance(self.raw, str):
            return parse_calendar(self.raw)
        return CalendarResult(data=_coerce_day_records(self.raw))


@dataclass(frozen=True)
class CurrentCalendarState:
    raw: dict[str, Any] = field(default_factory=dict)

    def upgrade(self) -> CalendarResult:
        return CalendarResult(
            data=_coerce_day_records(self.raw.get("data") or {}),
            song=str(self.raw.get("song") or DEFAULT_SONG),
            week=str(self.raw.get("week") or ""),
        )


@dataclass(frozen=True)
class LegacyMindMapState:
    """Older saves: the bare ``"<week> <day>" -> target`` mapping."""

    raw: dict[str, Any]

    def upgrade(self) -> MindMapResult:
        return MindMapResult(data={str(key).lower(): str(value) for key, value in self.raw.items()})


@dataclass(frozen=True)
class CurrentMindMapState:
    raw: dict[str, Any] = field(default_factory=dict)

    def upgrade(self) -> MindMapResult:
        data = self.raw.get("data") or {}
        return MindMapResult(
            data={str(key).lower(): str(value) for key, value in data.items()},
            date=str(self.raw.get("date") or ""),
        )


CalendarState = Union[LegacyCalendarState, CurrentCalendarState]
MindMapState = Union[LegacyMindMapState, CurrentMindMapState]


def load_calendar_state(raw: Any) -> CalendarState:
    if isinstance(raw, str):
        return LegacyCalendarState(raw=raw)
    if isinstance(raw, dict):
        if isinstance(raw.get("data"), dict):
            return CurrentCalendarState(raw=raw)
        return LegacyCalendarState(raw=raw)
    raise TypeError(f"Unsupported calendar state: {type(raw)!r}")


def load_mind_map_state(raw: Any) -> MindMapState:
    if not isinstance(raw, dict):
        raise TypeError(f"Unsupported mind map state: {type(raw)!r}")
    if isinstance(raw.get("data"), dict):
        return CurrentMindMapState(raw=raw)
    return LegacyMindMapState(raw=raw)


def calendar_to_payload(calendar: CalendarResult) -> dict[str, Any]:
    return {
        "data": {
            day: {"subject": record.subject, "content": record.content, "game": record.game}
            for day, record in calendar.data.items()
        },
        "song": calendar.song,
        "week": calendar.week,
    }


def mind_map_to_payload(mind_map: MindMapResult) -> dict[str, Any]:
    return {"data": dict(mind_map.data), "date": mind_map.date}


def state_to_payloads(state: AppState) -> dict[str, Any]:
    """Serialize every populated slot into a JSON-compatible payload."""
    payloads: dict[str, Any] = {SLOT_REVIEW_CURSOR: state.review_cursor}
    if state.mind_map is not None:
        payloads[SLOT_MIND_MAP] = mind_map_to_payload(state.mind_map)
    if state.calendar is not None:
        payloads[SLOT_CALENDAR] = calendar_to_payload(state.calendar)
    if state.games is not None:
        payloads[SLOT_GAMES] = dict(state.games)
    if state.spiral_review is not None:
        payloads[SLOT_SPIRAL_REVIEW] = list(state.spiral_review)
    if state.template is not None:
        payloads[SLOT_TEMPLATE] = base64.b64encode(state.template).decode("ascii")
    return payloads


def state_from_payloads(payloads: Mapping[str, Any]) -> AppState:
    """Rebuild an AppState from stored payloads, upgrading legacy shapes."""
    mind_map_raw = payloads.get(SLOT_MIND_MAP)
    calendar_raw = payloads.get(SLOT_CALENDAR)
    games_raw = payloads.get(SLOT_GAMES)
    spiral_raw = payloads.get(SLOT_SPIRAL_REVIEW)
    template_raw = payloads.get(SLOT_TEMPLATE)

    return AppState(
        mind_map=load_mind_map_state(mind_map_raw).upgrade() if mind_map_raw is not None else None,
        calendar=load_calendar_state(calendar_raw).upgrade() if calendar_raw is not None else None,
        games=_coerce_games(games_raw) if games_raw is not None else None,
        spiral_review=_coerce_spiral_review(spiral_raw) if spiral_raw is not None else None,
        template=_decode_template(template_raw) if template_raw is not None else None,
        review_cursor=_coerce_cursor(payloads.get(SLOT_REVIEW_CURSOR)),
    )


def _coerce_day_records(raw: Mapping[str, Any]) -> dict[str, DayRecord]:
    records: dict[str, DayRecord] = {}
    for day in DAY_KEYS:
        value = raw.get(day)
        if not isinstance(value, dict):
            continue
        content = str(value.get("content", ""))
        records[day] = DayRecord(
            subject=str(value.get("subject", "")),
            content=content,
            game=str(value.get("game", content)),
        )
    return records


def _coerce_games(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        raise TypeError(f"Unsupported games list state: {type(raw)!r}")
    return {normalize_game_name(str(name)): str(description) for name, description in raw.items()}


def _coerce_spiral_review(raw: Any) -> tuple[str, ...]:
    if isinstance(raw, str):
        return parse_spiral_review(raw)
    if isinstance(raw, (list, tuple)):
        return tuple(str(item) for item in raw)
    raise TypeError(f"Unsupported spiral review state: {type(raw)!r}")


def _decode_template(raw: Any) -> bytes:
    if isinstance(raw, bytes):
        return raw
    try:
        return base64.b64decode(str(raw), validate=True)
    except (binascii.Error, ValueError) as error:
        raise ValueError("Stored template is not valid base64.") from error


def _coerce_cursor(raw: Any) -> int:
    if raw is None:
        return 0
    try:
        cursor = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(cursor, 0)
