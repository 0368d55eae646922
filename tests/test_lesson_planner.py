import logging
import random
import unittest
from unittest.mock import MagicMock

from domain.app_state import SLOT_CALENDAR, SLOT_GAMES, SLOT_MIND_MAP, SLOT_REVIEW_CURSOR
from infra.kv_store import InMemoryKeyValueStore
from infra.template_filler import TemplateError
from infra.text_generation import LESSON_PLAN_KEYS, TextGenerationClient, TextGenerationError
from parser.calendar_parser import DayRecord
from service.lesson_planner import (
    LessonPlanner,
    MissingDocumentsError,
    build_template_values,
    extract_target_day,
)

MIND_MAP = "Week 1\nMonday: Wrong target\nWeek 2\nMonday: Count to 10\nSeptember 8"
CALENDAR = "WEEK 2\nMonday Math\nPlay the bee hunt game"
GAMES = "Bee Hunt: Find the bees\nLeaf Toss: Toss leaves"
SPIRAL = "newest\nmiddle\noldest"
TEMPLATE = b"{{DAY}}|{{DATE}}|{{GAME_NAME}}|{{TARGETS}}|{{introduction}}|{{SPIRAL_OLDEST}}"


def _plan(**overrides: str) -> dict[str, str]:
    plan = {key: "" for key in LESSON_PLAN_KEYS}
    plan["introduction"] = "Sing Song -> Review: oldest / newest"
    plan.update(overrides)
    return plan


class LessonPlannerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryKeyValueStore()
        self.text_client = MagicMock(spec=TextGenerationClient)
        self.text_client.generate_lesson_plan.return_value = _plan()
        self.logger = logging.getLogger("test.lesson_planner")
        self.planner = self._planner()

    def _planner(self, **kwargs) -> LessonPlanner:
        return LessonPlanner(
            self.store,
            self.text_client,
            rng=random.Random(7),
            logger=self.logger,
            **kwargs,
        )

    def _load_all(self, planner: LessonPlanner) -> None:
        planner.load_mind_map(MIND_MAP)
        planner.load_calendar(CALENDAR)
        planner.load_games_list(GAMES)
        planner.load_spiral_review(SPIRAL)
        planner.load_template(TEMPLATE)

    def test_generate_fills_template_from_all_documents(self) -> None:
        self._load_all(self.planner)

        result = self.planner.generate("Generate Monday lesson plan")

        self.assertEqual(result.day, "monday")
        self.assertEqual(result.filename, "Lesson_Plan_monday.txt")
        self.assertEqual(
            result.content.decode("utf-8"),
            "MONDAY|September 8|bee hunt|Count to 10|Sing Song -> Review: oldest / newest|oldest",
        )
        context = self.text_client.generate_lesson_plan.call_args.args[0]
        self.assertEqual(context.subject, "Math")
        self.assertEqual(context.game_description, "Find the bees")
        self.assertEqual(context.week, "WEEK 2")
        self.assertEqual((context.spiral_oldest, context.spiral_recent), ("oldest", "newest"))
        self.text_client.adapt_game_description.assert_not_called()

    def test_cursor_advances_and_is_persisted(self) -> None:
        self._load_all(self.planner)

        self.planner.generate("monday")
        second = self.planner.generate("monday")

        self.assertEqual(second.context.spiral_oldest, "middle")
        self.assertEqual(self.planner.state.review_cursor, 2)
        self.assertEqual(self.store.get(f"default:{SLOT_REVIEW_CURSOR}"), 2)

    def test_failed_generation_keeps_cursor(self) -> None:
        self._load_all(self.planner)
        self.text_client.generate_lesson_plan.side_effect = TextGenerationError("AI returned an invalid JSON format.")

        with self.assertRaises(TextGenerationError):
            self.planner.generate("monday")

        self.assertEqual(self.planner.state.review_cursor, 0)

    def test_missing_documents_are_reported(self) -> None:
        self.planner.load_games_list(GAMES)
        with self.assertRaises(MissingDocumentsError) as raised:
            self.planner.generate("monday")
        self.assertEqual(raised.exception.missing, ("Mind Map", "Calendar", "Template"))
        self.text_client.generate_lesson_plan.assert_not_called()

    def test_empty_spiral_review_uses_sentinel_without_advancing(self) -> None:
        self.planner.load_mind_map(MIND_MAP)
        self.planner.load_calendar(CALENDAR)
        self.planner.load_games_list(GAMES)
        self.planner.load_template(TEMPLATE)

        result = self.planner.generate("monday")

        self.assertEqual(result.context.spiral_oldest, "No spiral review items")
        self.assertEqual(self.planner.state.review_cursor, 0)

    def test_day_missing_from_calendar_uses_fallbacks(self) -> None:
        self._load_all(self.planner)

        with self.assertLogs("test.lesson_planner", level="WARNING") as captured:
            result = self.planner.generate("Plan for Friday please")

        self.assertEqual(captured.records[0].event, "generate.day_missing")
        self.assertEqual(result.context.subject, "Vocabulary")
        self.assertEqual(result.context.game_name, "Game of the Day")
        self.assertEqual(result.context.targets, "Learning targets for Friday")

    def test_game_description_can_be_adapted(self) -> None:
        planner = self._planner(rewrite_game_description=True)
        self._load_all(planner)
        self.text_client.adapt_game_description.return_value = "Find bees while counting to 10."

        result = planner.generate("monday")

        self.text_client.adapt_game_description.assert_called_once_with("Find the bees", "Count to 10")
        self.assertEqual(result.context.game_description, "Find bees while counting to 10.")

    def test_invalid_template_is_rejected_at_load(self) -> None:
        with self.assertRaises(TemplateError):
            self.planner.load_template(b"\xff\xfe\x00\x81")
        self.assertIsNone(self.planner.state.template)

    def test_calendar_image_goes_through_ocr(self) -> None:
        ocr = MagicMock(
            return_value=[
                {"text": "Monday", "bbox": [0, 0, 60, 20]},
                {"text": "Math", "bbox": [70, 0, 110, 20]},
                {"text": "Tuesday", "bbox": [300, 0, 370, 20]},
                {"text": "Art", "bbox": [380, 0, 410, 20]},
                {"text": "Bee Hunt", "bbox": [0, 40, 80, 60]},
            ]
        )
        planner = self._planner(ocr=ocr)

        calendar = planner.load_calendar_image(b"image-bytes")

        ocr.assert_called_once_with(b"image-bytes")
        self.assertEqual(calendar.data["monday"], DayRecord(subject="Math", content="Bee Hunt", game="Bee Hunt"))
        self.assertEqual(planner.state.calendar, calendar)

    def test_state_is_restored_from_store(self) -> None:
        self._load_all(self.planner)
        self.planner.generate("monday")

        restored = self._planner()
        state = restored.restore()

        self.assertEqual(state, self.planner.state)

    def test_legacy_saves_are_upgraded_on_restore(self) -> None:
        self.store.set(f"default:{SLOT_CALENDAR}", "Monday Math\nBee Hunt")
        self.store.set(f"default:{SLOT_MIND_MAP}", {"week 1 monday": "Count"})

        state = self.planner.restore()

        self.assertEqual(state.calendar.data["monday"].subject, "Math")
        self.assertEqual(state.mind_map.data, {"week 1 monday": "Count"})

    def test_corrupt_save_restores_empty_state(self) -> None:
        self.store.set(f"default:{SLOT_GAMES}", ["not", "a", "mapping"])

        with self.assertLogs("test.lesson_planner", level="ERROR") as captured:
            state = self.planner.restore()

        self.assertEqual(captured.records[0].event, "state.restore_failed")
        self.assertIsNone(state.games)

    def test_persistence_failures_do_not_reach_caller(self) -> None:
        store = MagicMock()
        store.set.side_effect = RuntimeError("store offline")
        planner = LessonPlanner(store, self.text_client, logger=self.logger)

        with self.assertLogs("test.lesson_planner", level="ERROR"):
            planner.load_games_list(GAMES)

        self.assertEqual(planner.state.games, {"bee hunt": "Find the bees", "leaf toss": "Toss leaves"})

    def test_sets_are_isolated(self) -> None:
        self.planner.load_games_list(GAMES)
        other = self._planner(set_name="spring")
        self.assertIsNone(other.restore().games)

    def test_clear_forgets_documents(self) -> None:
        self._load_all(self.planner)
        self.planner.clear()
        self.assertEqual(self.store.keys(), [])
        self.assertEqual(self.planner.state.missing_documents(), ["Mind Map", "Calendar", "Games List", "Template"])


class RequestHelperTests(unittest.TestCase):
    def test_extract_target_day(self) -> None:
        self.assertEqual(extract_target_day("Generate FRIDAY plan"), "friday")
        self.assertEqual(extract_target_day("Make a plan"), "monday")
        self.assertEqual(extract_target_day("Mondays are fun, do Wednesday"), "wednesday")

    def test_plan_keys_override_context_values(self) -> None:
        context = MagicMock(
            day="monday",
            week="WEEK 1",
            subject="Math",
            targets="Count",
            game_name="bee hunt",
            game_description="Find",
            song="Song of the Week",
            spiral_oldest="a",
            spiral_recent="b",
            teacher_name="Ms. Lee",
            class_name="K1",
        )
        values = build_template_values(context, {"objectives": "Count"}, date="Sep 8")
        self.assertEqual(values["DAY"], "MONDAY")
        self.assertEqual(values["TEACHER"], "Ms. Lee")
        self.assertEqual(values["DATE"], "Sep 8")
        self.assertEqual(values["objectives"], "Count")


if __name__ == "__main__":
    unittest.main()
