"""
QuizRush logging.

``setup_logging()`` wires the root logger to the console and to a rotating
``quizrush.log`` under ``QUIZ_LOG_DIR``. Game lifecycle, answer and results
events go to ``game_events.jsonl`` (one JSON object per line) through
``log_game_event``. Every record carries the request id of the HTTP call
that produced it.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from config import get_settings

GAME_EVENTS_LOGGER = "game.events"
MB = 1024 * 1024

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(rid: str | None = None) -> str:
    """Bind a correlation id to the current context (generated if not given)."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id.set(rid)
    return rid


def get_request_id() -> str:
    return _request_id.get()


class _RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()  # type: ignore[attr-defined]
        return True


class GameEventFormatter(logging.Formatter):
    """Render a game event record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "event": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
        }
        payload.update(getattr(record, "fields", {}))
        return json.dumps(payload, default=str)


def _file_handler(path: Path, formatter: logging.Formatter, *, max_mb: int, backups: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=max_mb * MB, backupCount=backups, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(_RequestIdFilter())
    return handler


_configured = False


def setup_logging(*, console_level: int | None = None, log_dir: Path | None = None) -> None:
    """Configure handlers once per process; later calls are no-ops."""
    global _configured
    if _configured:
        return
    _configured = True

    settings = get_settings()
    log_dir = Path(log_dir or settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    if console_level is None:
        level = logging.getLevelName(settings.log_level)
        console_level = level if isinstance(level, int) else logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s", datefmt="%H:%M:%S"))
    root.addHandler(console)

    root.addHandler(_file_handler(
        log_dir / "quizrush.log",
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-22s | [%(request_id)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ),
        max_mb=5,
        backups=5,
    ))

    events = logging.getLogger(GAME_EVENTS_LOGGER)
    events.setLevel(logging.INFO)
    events.propagate = False  # keep raw JSON off the console
    events.addHandler(_file_handler(log_dir / "game_events.jsonl", GameEventFormatter(), max_mb=10, backups=10))

    get_logger().info(f"📁 Logging to {log_dir.resolve()}")


def get_logger(name: str = "QuizRush") -> logging.Logger:
    return logging.getLogger(name)


def get_game_event_logger() -> logging.Logger:
    return logging.getLogger(GAME_EVENTS_LOGGER)


def log_game_event(
    event_type: str,
    *,
    game_id: str | None = None,
    player_id: str | None = None,
    data: dict[str, Any] | None = None,
) -> None:
    """Append one structured event (game created, answer submitted, results computed, ...)."""
    fields: dict[str, Any] = {}
    if game_id:
        fields["game_id"] = game_id
    if player_id:
        fields["player_id"] = player_id
    if data:
        fields.update(data)
    get_game_event_logger().info(event_type, extra={"fields": fields, "request_id": get_request_id()})
