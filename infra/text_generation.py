"""Text-generation client turning structured lesson context into lesson prose."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import requests
from openai import OpenAI, OpenAIError

from parser.calendar_parser import DEFAULT_SONG

PROVIDER_OPENAI = "openai"
PROVIDER_GEMINI = "gemini"
PROVIDERS = (PROVIDER_OPENAI, PROVIDER_GEMINI)
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"
DEFAULT_GEMINI_MODEL = "gemini-1.5-flash"
GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
LESSON_PLAN_KEYS = ("activityName", "objectives", "materials", "introduction", "activity", "game", "closure")

_LOGGER = logging.getLogger("lesson-planner.llm")


class TextGenerationError(RuntimeError):
    """Raised when the provider fails or returns something unusable."""


@dataclass(frozen=True)
class LessonContext:
    day: str
    subject: str
    targets: str
    game_name: str
    game_description: str
    spiral_oldest: str
    spiral_recent: str
    song: str
    teacher_name: str = ""
    class_name: str = ""
    week: str = ""


def introduction_line(context: LessonContext) -> str:
    song = "Song" if context.song == DEFAULT_SONG else context.song
    return f"Sing {song} -> Review: {context.spiral_oldest} / {context.spiral_recent}"


def build_lesson_prompt(context: LessonContext) -> str:
    introduction = introduction_line(context)
    week = context.week or "WEEK X"
    return f"""
You are a strict data formatter for a lesson plan. You are NOT a creative writer.

CONTEXT:
Week: {context.week}
Day: {context.day}
Subject: {context.subject}
Learning Targets: {context.targets}
Game Name: {context.game_name}
Game Description (LITERAL): {context.game_description}
Spiral Review (Oldest): {context.spiral_oldest}
Spiral Review (Recent): {context.spiral_recent}
Song of the Week: {context.song}
Teacher: {context.teacher_name}
Class: {context.class_name}

RULES:
1. Be literal. If an activity (weather, calendar, greeting) is not in the context, leave it out.
2. No filler such as "discuss the weather", "sing a goodbye song", "clean up" or "take attendance".
3. The introduction must be exactly: "{introduction}"
4. The game section repeats the literal game name and description. Do not summarize.
5. The closure is at most one sentence reflecting on the learning targets.

Respond with JSON only, using exactly these keys:
{{
  "activityName": "{week} {context.day.upper()} - {context.subject}",
  "objectives": "Learning targets copied exactly.",
  "materials": "Concise list based only on the game and activity.",
  "introduction": "{introduction}",
  "activity": "At most 3 short steps based only on the learning targets.",
  "game": "Literal name, a newline, then the literal description.",
  "closure": "Short review of the targets."
}}
""".strip()


def build_game_prompt(description: str, targets: str) -> str:
    return f"""
You are an educational assistant.
Modify the following game description to incorporate the specific learning targets for the day.

Original Game Description:
"{description}"

Learning Targets for the day:
"{targets}"

Instructions:
- Keep the core mechanics of the game.
- Replace generic placeholders (like [skill] or [topic]) with the actual learning targets.
- Output the modified game description only.
""".strip()


def strip_code_fences(text: str) -> str:
    if "```json" in text:
        return text.split("```json", 1)[1].split("```", 1)[0].strip()
    if "```" in text:
        return text.split("```", 1)[1].split("```", 1)[0].strip()
    return text.strip()


def parse_lesson_plan(text: str) -> dict[str, str]:
    try:
        payload = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as error:
        raise TextGenerationError("AI returned an invalid JSON format. Please try again.") from error
    if not isinstance(payload, dict):
        raise TextGenerationError("AI returned JSON that is not an object.")

    plan: dict[str, str] = {}
    for key in LESSON_PLAN_KEYS:
        value = payload.get(key, "")
        if isinstance(value, list):
            value = "\n".join(str(item) for item in value)
        plan[key] = "" if value is None else str(value)
    return plan


class TextGenerationClient:
    def __init__(
        self,
        provider: str,
        api_key: str,
        *,
        openai_model: str = DEFAULT_OPENAI_MODEL,
        gemini_model: str = DEFAULT_GEMINI_MODEL,
        timeout_seconds: float = 60.0,
        openai_client: Any | None = None,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if provider not in PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")
        if not api_key:
            raise ValueError("An API key is required for text generation.")
        self.provider = provider
        self.api_key = api_key
        self.openai_model = openai_model
        self.gemini_model = gemini_model
        self.timeout_seconds = timeout_seconds
        self._openai_client = openai_client
        self._session = session or requests.Session()
        self._logger = logger or _LOGGER

    def generate_lesson_plan(self, context: LessonContext) -> dict[str, str]:
        text = self.complete(build_lesson_prompt(context), json_mode=True)
        try:
            return parse_lesson_plan(text)
        except TextGenerationError:
            self._logger.error(
                "Failed to parse AI JSON",
                extra={"event": "llm.invalid_json", "provider": self.provider, "response": text[:2000]},
            )
            raise

    def adapt_game_description(self, description: str, targets: str) -> str:
        return self.complete(build_game_prompt(description, targets)).strip()

    def complete(self, prompt: str, *, json_mode: bool = False) -> str:
        self._logger.info(
            "Text generation requested",
            extra={"event": "llm.request", "provider": self.provider, "json_mode": json_mode},
        )
        if self.provider == PROVIDER_OPENAI:
            text = self._complete_openai(prompt, json_mode=json_mode)
        else:
            text = self._complete_gemini(prompt, json_mode=json_mode)
        self._logger.info(
            "Text generation completed",
            extra={"event": "llm.response", "provider": self.provider, "response_chars": len(text)},
        )
        return text

    def _openai(self) -> Any:
        if self._openai_client is None:
            self._openai_client = OpenAI(api_key=self.api_key, timeout=self.timeout_seconds)
        return self._openai_client

    def _complete_openai(self, prompt: str, *, json_mode: bool) -> str:
        request: dict[str, Any] = {
            "model": self.openai_model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}
        try:
            response = self._openai().chat.completions.create(**request)
        except OpenAIError as error:
            raise TextGenerationError(f"OpenAI Error: {error}") from error

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise TextGenerationError("OpenAI returned an empty response.")
        return content

    def _complete_gemini(self, prompt: str, *, json_mode: bool) -> str:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if json_mode:
            body["generationConfig"] = {"responseMimeType": "application/json"}
        try:
            response = self._session.post(
                GEMINI_URL.format(model=self.gemini_model),
                params={"key": self.api_key},
                json=body,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as error:
            raise TextGenerationError(f"Gemini request failed: {error}") from error
        try:
            data = response.json()
        except ValueError as error:
            raise TextGenerationError(f"Gemini returned a non-JSON response (HTTP {response.status_code}).") from error

        if not isinstance(data, dict):
            raise TextGenerationError("Gemini returned an unexpected response shape.")
        if data.get("error"):
            error_body = data["error"]
            message = error_body.get("message") if isinstance(error_body, dict) else str(error_body)
            raise TextGenerationError(f"Gemini Error: {message}")

        candidates = data.get("candidates") or []
        if not candidates:
            raise TextGenerationError("Gemini returned an empty response. This might be due to safety filters.")
        try:
            text = candidates[0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as error:
            raise TextGenerationError("Gemini returned an unexpected response shape.") from error
        if not text:
            raise TextGenerationError("Gemini returned an empty response.")
        return str(text)
