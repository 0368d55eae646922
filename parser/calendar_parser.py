"""Weekly calendar recovery from OCR word positions or plain OCR text."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterable

from parser.layout_parser import (
    BBox,
    Positioned,
    Row,
    WordToken,
    clean_text,
    cluster_rows,
    normalize_ocr_output,
    split_text_lines,
)

DAY_KEYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
DAY_ABBREVIATIONS = {day[:3]: day for day in DAY_KEYS}
SONG_COLUMN = "song"
DEFAULT_SONG = "Song of the Week"
DEFAULT_SUBJECT = "Vocabulary"

CONTENT_ROW_WINDOW = 4
CONTENT_LINE_WINDOW = 4
WEEK_TOKEN_WINDOW = 3
MIN_SONG_LENGTH = 4

NOISE_PHRASES = ("small group", "song of the week", "weekly")
WEEK_RE = re.compile(r"(?<!of the )week[ \t]*(\d+)", re.IGNORECASE)
WEEK_DIGIT_RE = re.compile(r"[1-8]")
SONG_LINE_RE = re.compile(r"song\s+of\s+the\s+week\b\s*[:\-]?\s*(.*)$", re.IGNORECASE)
EDGE_NON_LETTERS_RE = re.compile(r"^[^a-z]+|[^a-z]+$")
EDGE_PUNCTUATION = " :;,.-|"


@dataclass(frozen=True)
class Column:
    day: str
    x_min: float
    x_max: float
    subject_text: str = ""

    def contains(self, x: float) -> bool:
        return self.x_min <= x < self.x_max


@dataclass(frozen=True)
class DayRecord:
    subject: str
    content: str
    game: str


@dataclass(frozen=True)
class CalendarResult:
    data: dict[str, DayRecord] = field(default_factory=dict)
    song: str = DEFAULT_SONG
    week: str = ""


def parse_calendar(value: Any) -> CalendarResult:
    """Recover day -> subject/content/game records from raw calendar OCR output."""
    ocr = normalize_ocr_output(value)
    song = ""
    data: dict[str, DayRecord] | None = None

    if isinstance(ocr, Positioned):
        rows = cluster_rows(ocr.tokens)
        lines = [row.text for row in rows if row.text]
        raw_text = "\n".join(lines)
        words = [token.text for row in rows for token in row.tokens]
        data, song = _extract_from_rows(rows)
    else:
        raw_text = ocr.text
        lines = split_text_lines(raw_text)
        words = raw_text.split()

    if not data:
        data = _extract_from_lines(lines)
    if not song:
        song = _song_from_lines(lines)
    if not data:
        data = _fallback_records(raw_text)

    return CalendarResult(
        data={day: data[day] for day in DAY_KEYS if day in data},
        song=song or DEFAULT_SONG,
        week=find_week_label(raw_text, words),
    )


def day_key_for(text: str) -> str | None:
    word = EDGE_NON_LETTERS_RE.sub("", text.lower())
    if word in DAY_KEYS:
        return word
    return DAY_ABBREVIATIONS.get(word)


def is_metadata_noise(text: str) -> bool:
    normalized = clean_text(text).lower()
    if len(normalized) < 2:
        return True
    return any(phrase in normalized for phrase in NOISE_PHRASES)


def detect_columns(tokens: Iterable[WordToken]) -> list[Column]:
    """Open one column per day label (plus an optional song column).

    Other header words attach left-to-right to the most recently opened
    column, widening it.
    """
    drafts: list[dict[str, Any]] = []
    opened: set[str] = set()

    for token in sorted(tokens, key=lambda item: item.bbox.x0):
        day = day_key_for(token.text)
        if day is None and SONG_COLUMN in token.text.lower():
            day = SONG_COLUMN
        if day is not None and day not in opened:
            opened.add(day)
            drafts.append({"day": day, "x_min": token.bbox.x0, "x_max": token.bbox.x1, "subject": []})
            continue
        if not drafts:
            continue
        current = drafts[-1]
        current["subject"].append(token.text)
        current["x_max"] = max(current["x_max"], token.bbox.x1)

    return [
        Column(
            day=draft["day"],
            x_min=draft["x_min"],
            x_max=draft["x_max"],
            subject_text=clean_text(" ".join(draft["subject"])),
        )
        for draft in drafts
    ]


def close_column_boundaries(columns: list[Column]) -> list[Column]:
    """Bisect neighbouring columns so they partition the whole x axis."""
    ordered = sorted(columns, key=lambda column: column.x_min)
    if not ordered:
        return []

    boundaries = [-math.inf]
    for previous, following in zip(ordered, ordered[1:]):
        midpoint = (previous.x_max + following.x_min) / 2.0
        # Overlapping header spans must not produce a boundary behind the last one.
        boundaries.append(max(midpoint, boundaries[-1]))
    boundaries.append(math.inf)

    return [
        replace(column, x_min=boundaries[index], x_max=boundaries[index + 1])
        for index, column in enumerate(ordered)
    ]


def find_week_label(text: str, words: list[str]) -> str:
    match = WEEK_RE.search(text)
    if match is not None:
        return f"WEEK {match.group(1)}"

    for index, word in enumerate(words):
        if "week" not in word.lower() or _follows_song_title(words, index):
            continue
        for candidate in words[index + 1 : index + 1 + WEEK_TOKEN_WINDOW]:
            digit = candidate.strip(EDGE_PUNCTUATION)
            if WEEK_DIGIT_RE.fullmatch(digit):
                return f"WEEK {digit}"
    return ""


def _follows_song_title(words: list[str], index: int) -> bool:
    previous = [word.strip(EDGE_PUNCTUATION).lower() for word in words[max(index - 2, 0) : index]]
    return previous == ["of", "the"]


def _extract_from_rows(rows: list[Row]) -> tuple[dict[str, DayRecord] | None, str]:
    header_index = _find_header_row(rows)
    if header_index is None:
        return None, ""

    columns = close_column_boundaries(detect_columns(rows[header_index].tokens))
    content_start = header_index + 1

    day_columns = [column for column in columns if column.day != SONG_COLUMN]
    if (
        all(not column.subject_text for column in day_columns)
        and content_start < len(rows)
        and not _is_header_row(rows[content_start])
    ):
        # Subjects printed under the day labels rather than beside them.
        subjects = {column.day: _column_text(column, [rows[content_start]]) for column in columns}
        columns = [replace(column, subject_text=subjects[column.day]) for column in columns]
        content_start += 1

    window: list[Row] = []
    for row in rows[content_start:]:
        if len(window) >= CONTENT_ROW_WINDOW or _is_header_row(row):
            break
        window.append(row)

    data: dict[str, DayRecord] = {}
    song = ""
    for column in columns:
        content = _column_text(column, window)
        if column.day == SONG_COLUMN:
            if len(content) >= MIN_SONG_LENGTH:
                song = content
            continue
        record = _make_record(column.subject_text, content)
        if record is not None:
            data[column.day] = record
    return data, song


def _extract_from_lines(lines: list[str]) -> dict[str, DayRecord]:
    data: dict[str, DayRecord] = {}

    for index, line in enumerate(lines):
        days = _days_in_line(line)
        if len(days) == 1:
            day = days[0]
            if day in data:
                continue
            subject = _strip_day_words(line)
            content_start = index + 1
            if is_metadata_noise(subject):
                subject = ""
                for candidate_index in range(index + 1, len(lines)):
                    candidate = lines[candidate_index]
                    if _days_in_line(candidate):
                        break
                    content_start = candidate_index + 1
                    if not is_metadata_noise(candidate):
                        subject = candidate
                        break
            record = _make_record(subject, _collect_content(lines, content_start))
            if record is not None:
                data[day] = record
        elif len(days) > 1:
            content = _collect_content(lines, index + 1)
            for day, subject in _attach_subjects(line).items():
                if day in data:
                    continue
                record = _make_record(subject, content)
                if record is not None:
                    data[day] = record

    return data


def _fallback_records(raw_text: str) -> dict[str, DayRecord]:
    text = clean_text(raw_text)
    if not text:
        return {}

    mentioned = {day_key_for(word) for word in text.split()}
    named = [day for day in DAY_KEYS if day in mentioned]
    if not named:
        named = ["monday"]
    return {day: DayRecord(subject=DEFAULT_SUBJECT, content=text, game=text) for day in named}


def _make_record(subject: str, content: str) -> DayRecord | None:
    subject = clean_text(subject).strip(EDGE_PUNCTUATION)
    content = clean_text(content)
    if is_metadata_noise(subject):
        subject = ""
    if is_metadata_noise(content):
        content = ""
    if not subject and not content:
        return None
    return DayRecord(subject=subject or DEFAULT_SUBJECT, content=content, game=content)


def _find_header_row(rows: list[Row]) -> int | None:
    for index, row in enumerate(rows):
        if _is_header_row(row):
            return index
    return None


def _is_header_row(row: Row) -> bool:
    days = {day_key_for(token.text) for token in row.tokens}
    days.discard(None)
    return len(days) >= 2


def _column_text(column: Column, rows: list[Row]) -> str:
    segments: list[str] = []
    for row in rows:
        segment = clean_text(" ".join(token.text for token in row.tokens if column.contains(token.bbox.mid_x)))
        # Noise is filtered per cell, not per column.
        if segment and not is_metadata_noise(segment):
            segments.append(segment)
    return " ".join(segments)


def _days_in_line(line: str) -> list[str]:
    days: list[str] = []
    for word in line.split():
        day = day_key_for(word)
        if day is not None and day not in days:
            days.append(day)
    return days


def _strip_day_words(line: str) -> str:
    kept = [word for word in line.split() if day_key_for(word) is None]
    return clean_text(" ".join(kept)).strip(EDGE_PUNCTUATION)


def _attach_subjects(line: str) -> dict[str, str]:
    # Word order stands in for x position when no geometry is available.
    tokens = [
        WordToken(text=word, bbox=BBox(x0=float(index), y0=0.0, x1=float(index) + 1.0, y1=1.0))
        for index, word in enumerate(line.split())
    ]
    return {
        column.day: column.subject_text
        for column in detect_columns(tokens)
        if column.day != SONG_COLUMN
    }


def _collect_content(lines: list[str], start: int) -> str:
    collected: list[str] = []
    for line in lines[start:]:
        if len(collected) >= CONTENT_LINE_WINDOW or _days_in_line(line):
            break
        if is_metadata_noise(line):
            continue
        collected.append(line)
    return clean_text(" ".join(collected))


def _song_from_lines(lines: list[str]) -> str:
    for line in lines:
        match = SONG_LINE_RE.search(line)
        if match is None:
            continue
        label = clean_text(match.group(1)).strip(EDGE_PUNCTUATION)
        if len(label) >= MIN_SONG_LENGTH and not _days_in_line(label):
            return label
    return ""
