#!/usr/bin/env python3
"""Command-line entry point for assembling daily lesson plans."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from domain.app_state import STATE_SLOTS
from infra.kv_store import InMemoryKeyValueStore, KeyValueStore, PostgresKeyValueStore
from infra.state_store import clear_app_state, list_known_set_names
from infra.text_generation import (
    DEFAULT_GEMINI_MODEL,
    DEFAULT_OPENAI_MODEL,
    PROVIDER_GEMINI,
    PROVIDER_OPENAI,
    PROVIDERS,
    TextGenerationClient,
)
from ocr.paddle_adapter import create_paddle_ocr, run_paddle_on_bytes, run_paddle_on_image
from parser.calendar_parser import CalendarResult, parse_calendar
from service.lesson_planner import DEFAULT_SET_NAME, LessonPlanner

SERVICE_NAME = "lesson-planner"
TEXT_SUFFIXES = {".txt", ".text", ".md"}
WORDS_SUFFIXES = {".json"}


class JsonFormatter(logging.Formatter):
    _RESERVED = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
        "asctime",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "event": getattr(record, "event", "log"),
            "message": record.getMessage(),
            "logger": record.name,
        }
        for key, value in record.__dict__.items():
            if key not in self._RESERVED and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, sort_keys=True, default=str)


@dataclass(frozen=True)
class AppConfig:
    provider: str
    api_key: str
    openai_model: str
    gemini_model: str
    llm_timeout_seconds: float
    database_url: str | None
    db_schema: str
    set_name: str
    teacher_name: str
    class_name: str
    ocr_lang: str
    rewrite_game_description: bool


def setup_logger() -> logging.Logger:
    logger = logging.getLogger(SERVICE_NAME)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def getenv_first(*names: str) -> str | None:
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return None


def parse_positive_float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float for {name}: {value}") from exc
    if parsed <= 0:
        raise RuntimeError(f"{name} must be > 0.")
    return parsed


def parse_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise RuntimeError(f"Invalid boolean for {name}: {value}")


def load_config() -> AppConfig:
    provider = os.getenv("LLM_PROVIDER", PROVIDER_OPENAI).strip().lower()
    if provider not in PROVIDERS:
        raise RuntimeError(f"Invalid LLM_PROVIDER: {provider} (expected one of {', '.join(PROVIDERS)})")

    if provider == PROVIDER_GEMINI:
        api_key = getenv_first("GEMINI_API_KEY", "GOOGLE_API_KEY")
    else:
        api_key = getenv_first("OPENAI_API_KEY")

    return AppConfig(
        provider=provider,
        api_key=api_key or "",
        openai_model=os.getenv("OPENAI_MODEL", DEFAULT_OPENAI_MODEL),
        gemini_model=os.getenv("GEMINI_MODEL", DEFAULT_GEMINI_MODEL),
        llm_timeout_seconds=parse_positive_float_env("LLM_TIMEOUT_SECONDS", 60.0),
        database_url=getenv_first("DATABASE_URL", "POSTGRES_DSN"),
        db_schema=os.getenv("DB_SCHEMA", "lesson_planner"),
        set_name=os.getenv("STATE_SET_NAME", DEFAULT_SET_NAME),
        teacher_name=os.getenv("TEACHER_NAME", ""),
        class_name=os.getenv("CLASS_NAME", ""),
        ocr_lang=os.getenv("OCR_LANG", "en"),
        rewrite_game_description=parse_bool_env("REWRITE_GAME_DESCRIPTION", False),
    )


def build_store(config: AppConfig, logger: logging.Logger) -> KeyValueStore:
    if not config.database_url:
        logger.warning(
            "DATABASE_URL not set; state is kept in memory only",
            extra={"event": "state.in_memory"},
        )
        return InMemoryKeyValueStore()
    store = PostgresKeyValueStore(config.database_url, schema=config.db_schema)
    store.ensure_schema()
    return store


def build_text_client(config: AppConfig, logger: logging.Logger) -> TextGenerationClient:
    if not config.api_key:
        variable = "GEMINI_API_KEY" if config.provider == PROVIDER_GEMINI else "OPENAI_API_KEY"
        raise RuntimeError(f"Missing required environment variable: {variable}")
    return TextGenerationClient(
        config.provider,
        config.api_key,
        openai_model=config.openai_model,
        gemini_model=config.gemini_model,
        timeout_seconds=config.llm_timeout_seconds,
        logger=logger,
    )


def read_calendar_input(path: Path, config: AppConfig) -> Any:
    """Return raw OCR output for a calendar file: text, a JSON word dump, or an image."""
    resolved = path.expanduser().resolve()
    if not resolved.exists():
        raise RuntimeError(f"Calendar input not found: {resolved}")

    suffix = resolved.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        return resolved.read_text(encoding="utf-8")
    if suffix in WORDS_SUFFIXES:
        try:
            return json.loads(resolved.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Calendar word dump is not valid JSON: {resolved}") from exc
    return run_paddle_on_image(resolved, ocr=create_paddle_ocr(lang=config.ocr_lang))


def calendar_to_json(calendar: CalendarResult) -> dict[str, Any]:
    return asdict(calendar)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assemble daily lesson plans from teacher documents.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    calendar_parser = subparsers.add_parser("calendar", help="Parse a weekly calendar and print it as JSON.")
    calendar_parser.add_argument("input", type=Path, help="Calendar image, OCR text (.txt) or word dump (.json).")

    generate_parser = subparsers.add_parser("generate", help="Generate a lesson plan for one day.")
    generate_parser.add_argument("request", help="Request text, e.g. 'Generate Monday lesson plan'.")
    generate_parser.add_argument("--mind-map", type=Path, default=None)
    generate_parser.add_argument("--games", type=Path, default=None)
    generate_parser.add_argument("--spiral-review", type=Path, default=None)
    generate_parser.add_argument("--calendar", type=Path, default=None)
    generate_parser.add_argument("--template", type=Path, default=None)
    generate_parser.add_argument(
        "--output-dir",
        type=Path,
        default=Path.cwd(),
        help="Directory for the filled lesson plan.",
    )

    subparsers.add_parser("sets", help="List saved document sets.")
    subparsers.add_parser("clear", help="Forget every document of the current set.")
    return parser.parse_args(argv)


def run_generate(args: argparse.Namespace, config: AppConfig, logger: logging.Logger) -> int:
    store = build_store(config, logger)
    planner = LessonPlanner(
        store,
        build_text_client(config, logger),
        ocr=lambda blob: run_paddle_on_bytes(blob, ocr=create_paddle_ocr(lang=config.ocr_lang)),
        set_name=config.set_name,
        teacher_name=config.teacher_name,
        class_name=config.class_name,
        rewrite_game_description=config.rewrite_game_description,
        logger=logger,
    )
    planner.restore()

    if args.mind_map is not None:
        planner.load_mind_map(args.mind_map.read_text(encoding="utf-8"))
    if args.games is not None:
        planner.load_games_list(args.games.read_text(encoding="utf-8"))
    if args.spiral_review is not None:
        planner.load_spiral_review(args.spiral_review.read_text(encoding="utf-8"))
    if args.template is not None:
        planner.load_template(args.template.read_bytes())
    if args.calendar is not None:
        planner.load_calendar(read_calendar_input(args.calendar, config))

    result = planner.generate(args.request)
    output_path = args.output_dir.expanduser().resolve() / result.filename
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.content)
    print(f"Lesson plan written: {output_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger = setup_logger()

    try:
        config = load_config()
    except Exception as exc:
        logger.error("Configuration error", extra={"event": "app.config_error", "error": str(exc)})
        return 1

    try:
        if args.command == "calendar":
            calendar = parse_calendar(read_calendar_input(args.input, config))
            print(json.dumps(calendar_to_json(calendar), indent=2, ensure_ascii=False))
            return 0
        if args.command == "generate":
            return run_generate(args, config, logger)
        store = build_store(config, logger)
        if args.command == "sets":
            for name in list_known_set_names(store, logger=logger):
                print(name)
            return 0
        for slot in STATE_SLOTS:
            clear_app_state(store, config.set_name, slot, logger=logger)
        return 0
    except Exception as exc:
        logger.error(
            "Command failed",
            extra={"event": "app.command_failed", "command": args.command, "error": str(exc)},
        )
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
