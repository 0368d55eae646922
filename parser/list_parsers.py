"""Key:value line parsers for the mind map, games list and spiral review."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from parser.layout_parser import clean_text, split_text_lines

MONTH_DAY_RE = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+\d{1,2}\b",
    re.IGNORECASE,
)
LIST_MARKER_RE = re.compile(r"^(?:[-*•]+|\d+[.)])\s*")


@dataclass(frozen=True)
class MindMapResult:
    data: dict[str, str] = field(default_factory=dict)
    date: str = ""


def parse_mind_map(text: str) -> MindMapResult:
    """Index learning targets by ``"<week line> <day>"`` (lowercased).

    A line mentioning "week" starts a new week block; ``day: target`` lines
    below it belong to that week. Lines before the first week are ignored.
    """
    data: dict[str, str] = {}
    current_week = ""

    for line in split_text_lines(text):
        if "week" in line.lower():
            current_week = line
            continue
        if not current_week or ":" not in line:
            continue
        day, _, target = line.partition(":")
        day = clean_text(day)
        if not day:
            continue
        data[f"{current_week} {day}".lower()] = clean_text(target)

    match = MONTH_DAY_RE.search(text)
    return MindMapResult(data=data, date=match.group(0) if match is not None else "")


def parse_games_list(text: str) -> dict[str, str]:
    games: dict[str, str] = {}
    for line in split_text_lines(text):
        if ":" not in line:
            continue
        name, _, description = line.partition(":")
        key = normalize_game_name(name)
        if not key:
            continue
        games[key] = clean_text(description)
    return games


def parse_spiral_review(text: str) -> tuple[str, ...]:
    items: list[str] = []
    for line in split_text_lines(text):
        item = clean_text(LIST_MARKER_RE.sub("", line))
        if item:
            items.append(item)
    return tuple(items)


def normalize_game_name(name: str) -> str:
    return clean_text(name).lower()
