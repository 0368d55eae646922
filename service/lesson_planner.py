"""Lesson planner controller: owns the app state and runs the generation pipeline."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass, replace
from typing import Any, Callable

from domain.app_state import (
    SLOT_CALENDAR,
    SLOT_GAMES,
    SLOT_MIND_MAP,
    SLOT_REVIEW_CURSOR,
    SLOT_SPIRAL_REVIEW,
    SLOT_TEMPLATE,
    STATE_SLOTS,
    AppState,
    state_from_payloads,
    state_to_payloads,
)
from domain.matching import match_game, resolve_targets
from domain.spiral_review import select_spiral_review
from infra.kv_store import KeyValueStore
from infra.state_store import clear_app_state, load_app_state, save_app_state
from infra.template_filler import fill_template
from infra.text_generation import LessonContext, TextGenerationClient
from ocr.paddle_adapter import run_paddle_on_bytes
from parser.calendar_parser import DAY_KEYS, DEFAULT_SUBJECT, CalendarResult, parse_calendar
from parser.list_parsers import parse_games_list, parse_mind_map, parse_spiral_review

DEFAULT_DAY = "monday"
DEFAULT_SET_NAME = "default"
DAY_RE = re.compile(r"\b(" + "|".join(DAY_KEYS) + r")\b")

_LOGGER = logging.getLogger("lesson-planner")


class MissingDocumentsError(ValueError):
    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            "Please upload all required files (Mind Map, Calendar, Games List, and Template) before generating. "
            f"Missing: {', '.join(missing)}."
        )
        self.missing = tuple(missing)


@dataclass(frozen=True)
class GeneratedLessonPlan:
    day: str
    filename: str
    content: bytes
    format: str
    plan: dict[str, str]
    context: LessonContext


def extract_target_day(request: str) -> str:
    match = DAY_RE.search(request.lower())
    return match.group(1) if match is not None else DEFAULT_DAY


def build_template_values(context: LessonContext, plan: dict[str, str], *, date: str = "") -> dict[str, str]:
    values = {
        "DAY": context.day.upper(),
        "DATE": date,
        "WEEK": context.week,
        "SUBJECT": context.subject,
        "TARGETS": context.targets,
        "GAME_NAME": context.game_name,
        "GAME_DESCRIPTION": context.game_description,
        "SONG": context.song,
        "SPIRAL_OLDEST": context.spiral_oldest,
        "SPIRAL_RECENT": context.spiral_recent,
        "TEACHER": context.teacher_name,
        "CLASS": context.class_name,
    }
    values.update(plan)
    return values


class LessonPlanner:
    """Single owner of the uploaded documents and the spiral-review cursor.

    Every mutation builds a replacement state, swaps it in and only then
    persists the touched slots; persistence failures are logged by the state
    store and never reach the caller.
    """

    def __init__(
        self,
        store: KeyValueStore,
        text_client: TextGenerationClient,
        *,
        ocr: Callable[[bytes], Any] | None = None,
        set_name: str = DEFAULT_SET_NAME,
        teacher_name: str = "",
        class_name: str = "",
        rewrite_game_description: bool = False,
        rng: random.Random | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.text_client = text_client
        self.set_name = set_name
        self.teacher_name = teacher_name
        self.class_name = class_name
        self.rewrite_game_description = rewrite_game_description
        self.state = AppState()
        self._ocr = ocr or run_paddle_on_bytes
        self._rng = rng
        self._logger = logger or _LOGGER

    def restore(self) -> AppState:
        payloads: dict[str, Any] = {}
        for slot in STATE_SLOTS:
            value = load_app_state(self.store, self.set_name, slot, logger=self._logger)
            if value is not None:
                payloads[slot] = value
        try:
            self.state = state_from_payloads(payloads)
        except (TypeError, ValueError) as error:
            self._logger.error(
                "Saved state could not be restored",
                extra={"event": "state.restore_failed", "set_name": self.set_name, "error": str(error)},
            )
            self.state = AppState()
        self._logger.info(
            "State restored",
            extra={"event": "state.restored", "set_name": self.set_name, "slots": sorted(payloads)},
        )
        return self.state

    def clear(self) -> None:
        self.state = AppState()
        for slot in STATE_SLOTS:
            clear_app_state(self.store, self.set_name, slot, logger=self._logger)

    def load_mind_map(self, text: str) -> None:
        mind_map = parse_mind_map(text)
        self._commit(replace(self.state, mind_map=mind_map), SLOT_MIND_MAP)
        self._log_loaded(SLOT_MIND_MAP, entry_count=len(mind_map.data), date=mind_map.date)

    def load_games_list(self, text: str) -> None:
        games = parse_games_list(text)
        self._commit(replace(self.state, games=games), SLOT_GAMES)
        self._log_loaded(SLOT_GAMES, entry_count=len(games))

    def load_spiral_review(self, text: str) -> None:
        items = parse_spiral_review(text)
        self._commit(replace(self.state, spiral_review=items), SLOT_SPIRAL_REVIEW)
        self._log_loaded(SLOT_SPIRAL_REVIEW, entry_count=len(items))

    def load_template(self, buffer: bytes) -> None:
        # An empty fill validates the buffer.
        fill_template(buffer, {})
        self._commit(replace(self.state, template=bytes(buffer)), SLOT_TEMPLATE)
        self._log_loaded(SLOT_TEMPLATE, size_bytes=len(buffer))

    def load_calendar(self, ocr_output: Any) -> CalendarResult:
        calendar = parse_calendar(ocr_output)
        self._commit(replace(self.state, calendar=calendar), SLOT_CALENDAR)
        self._log_loaded(SLOT_CALENDAR, days=list(calendar.data), week=calendar.week, song=calendar.song)
        return calendar

    def load_calendar_image(self, blob: bytes) -> CalendarResult:
        return self.load_calendar(self._ocr(blob))

    def generate(self, request: str) -> GeneratedLessonPlan:
        state = self.state
        missing = state.missing_documents()
        if missing:
            raise MissingDocumentsError(missing)

        day = extract_target_day(request)
        record = state.calendar.data.get(day)
        if record is None:
            self._logger.warning(
                "Day not found in calendar",
                extra={"event": "generate.day_missing", "day": day, "set_name": self.set_name},
            )
        subject = record.subject if record is not None else DEFAULT_SUBJECT
        content = record.content if record is not None else ""

        game = match_game(record.game if record is not None else "", state.games)
        targets = resolve_targets(state.mind_map.data, day, state.calendar.week or None, content)
        selection = select_spiral_review(state.spiral_review or (), state.review_cursor, rng=self._rng)

        description = game.description
        if self.rewrite_game_description:
            description = self.text_client.adapt_game_description(description, targets)

        context = LessonContext(
            day=day,
            subject=subject,
            targets=targets,
            game_name=game.name,
            game_description=description,
            spiral_oldest=selection.oldest,
            spiral_recent=selection.recent,
            song=state.calendar.song,
            teacher_name=self.teacher_name,
            class_name=self.class_name,
            week=state.calendar.week,
        )
        self._logger.info(
            "Generating lesson plan",
            extra={
                "event": "generate.start",
                "day": day,
                "game_name": game.name,
                "game_matched": game.matched,
                "game_overlap": game.overlap,
                "week": state.calendar.week,
            },
        )

        plan = self.text_client.generate_lesson_plan(context)
        document = fill_template(state.template, build_template_values(context, plan, date=state.mind_map.date))

        if selection.has_items:
            self._commit(replace(self.state, review_cursor=selection.next_cursor), SLOT_REVIEW_CURSOR)

        result = GeneratedLessonPlan(
            day=day,
            filename=f"Lesson_Plan_{day}.{document.format}",
            content=document.content,
            format=document.format,
            plan=plan,
            context=context,
        )
        self._logger.info(
            "Lesson plan generated",
            extra={"event": "generate.done", "day": day, "format": document.format, "output_name": result.filename},
        )
        return result

    def _commit(self, state: AppState, slot: str) -> None:
        self.state = state
        payloads = state_to_payloads(state)
        save_app_state(self.store, self.set_name, slot, payloads[slot], logger=self._logger)

    def _log_loaded(self, slot: str, **fields: Any) -> None:
        self._logger.info(
            "Document loaded",
            extra={"event": "document.loaded", "slot": slot, "set_name": self.set_name, **fields},
        )
