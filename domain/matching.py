"""Token-overlap game matching and mind-map target resolution."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

from parser.calendar_parser import DAY_ABBREVIATIONS, DAY_KEYS
from parser.layout_parser import clean_text

WORD_RE = re.compile(r"[a-z0-9]+")
MIN_TOKEN_LENGTH = 3
FALLBACK_GAME_NAME = "Game of the Day"
FALLBACK_GAME_DESCRIPTION = "Play a game about [topic]"


@dataclass(frozen=True)
class GameMatch:
    name: str
    description: str
    overlap: int
    matched: bool


def tokenize(text: str) -> set[str]:
    return {word for word in WORD_RE.findall(text.lower()) if len(word) >= MIN_TOKEN_LENGTH}


def match_game(noisy_text: str, catalog: Mapping[str, str]) -> GameMatch:
    """Pick the catalog game sharing the most words with ``noisy_text``.

    Equal overlaps keep the first entry in catalog iteration order.
    """
    noisy_tokens = tokenize(noisy_text)
    best_name: str | None = None
    best_overlap = 0

    for name in catalog:
        overlap = len(tokenize(name) & noisy_tokens)
        if overlap > best_overlap:
            best_name = name
            best_overlap = overlap

    if best_name is None:
        return GameMatch(
            name=clean_text(noisy_text) or FALLBACK_GAME_NAME,
            description=FALLBACK_GAME_DESCRIPTION,
            overlap=0,
            matched=False,
        )
    return GameMatch(name=best_name, description=catalog[best_name], overlap=best_overlap, matched=True)


def resolve_targets(
    mind_map: Mapping[str, str],
    day: str,
    week: str | None = None,
    content: str = "",
) -> str:
    """Return the learning target for ``day`` (and ``week`` when known).

    The week filter is strict: a known week with no entry falls straight back
    to a generic target.
    """
    day_key = day.strip().lower()
    day_names = {day_key}
    if day_key in DAY_KEYS:
        day_names.add(day_key[:3])
    elif day_key in DAY_ABBREVIATIONS:
        day_names.add(DAY_ABBREVIATIONS[day_key])
    day_re = _whole_words_re(sorted(day_names))
    week_re = _whole_words_re([week.strip().lower()]) if week and week.strip() else None

    for key, target in mind_map.items():
        if day_re.search(key) is None:
            continue
        if week_re is not None and week_re.search(key) is None:
            continue
        return target

    return f"Learning targets for {clean_text(content) or day_key.title()}"


def _whole_words_re(phrases: list[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(phrase) for phrase in phrases)
    return re.compile(rf"(?<![a-z0-9])(?:{alternatives})(?![a-z0-9])", re.IGNORECASE)
