import json
import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock

import requests
from openai import OpenAIError

from infra.text_generation import (
    DEFAULT_OPENAI_MODEL,
    GEMINI_URL,
    LESSON_PLAN_KEYS,
    LessonContext,
    TextGenerationClient,
    TextGenerationError,
    build_lesson_prompt,
    introduction_line,
    parse_lesson_plan,
    strip_code_fences,
)
from parser.calendar_parser import DEFAULT_SONG


def _context(**overrides: str) -> LessonContext:
    fields = {
        "day": "monday",
        "subject": "Math",
        "targets": "Count to 10",
        "game_name": "bee hunt",
        "game_description": "Find the bees",
        "spiral_oldest": "I see a cat.",
        "spiral_recent": "The dog runs.",
        "song": DEFAULT_SONG,
        "week": "WEEK 2",
    }
    fields.update(overrides)
    return LessonContext(**fields)


def _openai_response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class PromptTests(unittest.TestCase):
    def test_default_song_is_shortened(self) -> None:
        self.assertEqual(introduction_line(_context()), "Sing Song -> Review: I see a cat. / The dog runs.")

    def test_named_song_is_used(self) -> None:
        self.assertEqual(
            introduction_line(_context(song="Twinkle Star")),
            "Sing Twinkle Star -> Review: I see a cat. / The dog runs.",
        )

    def test_lesson_prompt_carries_literal_context(self) -> None:
        prompt = build_lesson_prompt(_context())
        self.assertIn("Game Description (LITERAL): Find the bees", prompt)
        self.assertIn('"activityName": "WEEK 2 MONDAY - Math"', prompt)
        for key in LESSON_PLAN_KEYS:
            self.assertIn(f'"{key}"', prompt)


class ParseLessonPlanTests(unittest.TestCase):
    def test_code_fences_are_stripped(self) -> None:
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fences('```\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fences(' {"a": 1} '), '{"a": 1}')

    def test_missing_keys_become_empty_and_lists_are_joined(self) -> None:
        plan = parse_lesson_plan(json.dumps({"activityName": "WEEK 2 MONDAY - Math", "materials": ["bees", "net"]}))
        self.assertEqual(set(plan), set(LESSON_PLAN_KEYS))
        self.assertEqual(plan["activityName"], "WEEK 2 MONDAY - Math")
        self.assertEqual(plan["materials"], "bees\nnet")
        self.assertEqual(plan["closure"], "")

    def test_invalid_json_raises(self) -> None:
        with self.assertRaises(TextGenerationError):
            parse_lesson_plan("not json")

    def test_non_object_json_raises(self) -> None:
        with self.assertRaises(TextGenerationError):
            parse_lesson_plan("[1, 2]")


class ClientValidationTests(unittest.TestCase):
    def test_unknown_provider(self) -> None:
        with self.assertRaises(ValueError):
            TextGenerationClient("claude", "key", session=MagicMock())

    def test_missing_key(self) -> None:
        with self.assertRaises(ValueError):
            TextGenerationClient("openai", "", session=MagicMock())


class OpenAiClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.openai = MagicMock()
        self.client = TextGenerationClient("openai", "sk-test", openai_client=self.openai, session=MagicMock())

    def test_lesson_plan_uses_json_mode(self) -> None:
        self.openai.chat.completions.create.return_value = _openai_response('{"closure": "Count together."}')

        plan = self.client.generate_lesson_plan(_context())

        self.assertEqual(plan["closure"], "Count together.")
        kwargs = self.openai.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], DEFAULT_OPENAI_MODEL)
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["messages"][0]["role"], "user")

    def test_game_adaptation_is_free_text(self) -> None:
        self.openai.chat.completions.create.return_value = _openai_response("  Find bees while counting to 10. ")

        text = self.client.adapt_game_description("Find the bees", "Count to 10")

        self.assertEqual(text, "Find bees while counting to 10.")
        self.assertNotIn("response_format", self.openai.chat.completions.create.call_args.kwargs)

    def test_provider_error_is_wrapped(self) -> None:
        self.openai.chat.completions.create.side_effect = OpenAIError("quota exceeded")
        with self.assertRaisesRegex(TextGenerationError, "OpenAI Error: quota exceeded"):
            self.client.complete("hello")

    def test_empty_response_raises(self) -> None:
        self.openai.chat.completions.create.return_value = _openai_response(None)
        with self.assertRaises(TextGenerationError):
            self.client.complete("hello")

    def test_invalid_json_is_logged_and_raised(self) -> None:
        self.openai.chat.completions.create.return_value = _openai_response("Sure! Here is your plan.")
        with self.assertLogs("lesson-planner.llm", level="ERROR") as captured:
            with self.assertRaises(TextGenerationError):
                self.client.generate_lesson_plan(_context())
        self.assertEqual(captured.records[-1].event, "llm.invalid_json")


class GeminiClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = MagicMock()
        self.client = TextGenerationClient("gemini", "g-key", session=self.session, timeout_seconds=5.0)

    def _respond(self, payload: object) -> None:
        self.session.post.return_value.json.return_value = payload

    def test_fenced_json_response(self) -> None:
        self._respond({"candidates": [{"content": {"parts": [{"text": '```json\n{"closure": "Bye"}\n```'}]}}]})

        plan = self.client.generate_lesson_plan(_context())

        self.assertEqual(plan["closure"], "Bye")
        args, kwargs = self.session.post.call_args
        self.assertEqual(args[0], GEMINI_URL.format(model="gemini-1.5-flash"))
        self.assertEqual(kwargs["params"], {"key": "g-key"})
        self.assertEqual(kwargs["timeout"], 5.0)
        self.assertEqual(kwargs["json"]["generationConfig"], {"responseMimeType": "application/json"})

    def test_error_body_raises(self) -> None:
        self._respond({"error": {"message": "API key not valid"}})
        with self.assertRaisesRegex(TextGenerationError, "Gemini Error: API key not valid"):
            self.client.complete("hello")

    def test_empty_candidates_raise(self) -> None:
        self._respond({"candidates": []})
        with self.assertRaisesRegex(TextGenerationError, "safety filters"):
            self.client.complete("hello")

    def test_unexpected_shape_raises(self) -> None:
        self._respond({"candidates": [{"content": {}}]})
        with self.assertRaises(TextGenerationError):
            self.client.complete("hello")

    def test_network_error_is_wrapped(self) -> None:
        self.session.post.side_effect = requests.ConnectionError("unreachable")
        with self.assertRaisesRegex(TextGenerationError, "Gemini request failed"):
            self.client.complete("hello")

    def test_non_json_body_raises(self) -> None:
        self.session.post.return_value.json.side_effect = ValueError("no json")
        self.session.post.return_value.status_code = 502
        with self.assertRaisesRegex(TextGenerationError, "HTTP 502"):
            self.client.complete("hello")


if __name__ == "__main__":
    unittest.main()
