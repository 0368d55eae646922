"""Spiral-review selection: a cursor sweep over old items plus a recent pick."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Sequence

NO_ITEMS_TEXT = "No spiral review items"
RECENT_DIVISOR = 5


@dataclass(frozen=True)
class SpiralReviewSelection:
    oldest: str
    recent: str
    next_cursor: int
    has_items: bool = True


NO_ITEMS = SpiralReviewSelection(oldest=NO_ITEMS_TEXT, recent=NO_ITEMS_TEXT, next_cursor=0, has_items=False)


def select_spiral_review(
    items: Sequence[str],
    cursor: int,
    *,
    rng: random.Random | None = None,
) -> SpiralReviewSelection:
    """Select review sentences from a newest-first list.

    ``oldest`` walks from the bottom of the list upward as the cursor grows and
    wraps around; ``recent`` is drawn at random from the newest fifth.
    """
    if not items:
        return NO_ITEMS

    length = len(items)
    picker = rng or random
    oldest = items[length - 1 - (cursor % length)]
    recent = items[picker.randrange(math.ceil(length / RECENT_DIVISOR))]
    return SpiralReviewSelection(oldest=oldest, recent=recent, next_cursor=cursor + 1)
