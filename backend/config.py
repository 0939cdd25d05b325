"""
QuizRush backend configuration.

Values come from environment variables (optionally via a ``.env`` file next
to the backend, loaded with python-dotenv). ``get_settings()`` builds the
settings object once per process; tests call ``reset_settings()`` after
patching the environment.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

BACKEND_DIR = Path(__file__).resolve().parent

load_dotenv(BACKEND_DIR / ".env")

DEFAULT_QUESTION_TIME_LIMIT = 20  # seconds
GRACE_PERIOD_SECONDS = 2.0  # network latency allowance on server-side timers
DEFAULT_LEADERBOARD_SIZE = 20
RETENTION_DAYS = 30
MAX_TEXT_ANSWER_LENGTH = 200


class Settings(BaseModel):
    store_backend: Literal["memory", "firestore"] = "memory"
    log_dir: Path = BACKEND_DIR / "logs"
    log_level: str = "INFO"
    leaderboard_size: int = Field(default=DEFAULT_LEADERBOARD_SIZE, ge=1, le=100)
    default_time_limit: int = Field(default=DEFAULT_QUESTION_TIME_LIMIT, ge=1)
    grace_period_seconds: float = Field(default=GRACE_PERIOD_SECONDS, ge=0)
    retention_days: int = Field(default=RETENTION_DAYS, ge=1)
    cors_origins: list[str] = ["*"]
    firebase_credentials_path: Optional[str] = None
    firebase_credentials_json: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from QUIZ_* environment variables."""
        env = os.environ
        values: dict = {}
        if env.get("QUIZ_STORE_BACKEND"):
            values["store_backend"] = env["QUIZ_STORE_BACKEND"].strip().lower()
        if env.get("QUIZ_LOG_DIR"):
            values["log_dir"] = Path(os.path.expanduser(env["QUIZ_LOG_DIR"]))
        if env.get("QUIZ_LOG_LEVEL"):
            values["log_level"] = env["QUIZ_LOG_LEVEL"].strip().upper()
        if env.get("QUIZ_LEADERBOARD_SIZE"):
            values["leaderboard_size"] = env["QUIZ_LEADERBOARD_SIZE"]
        if env.get("QUIZ_DEFAULT_TIME_LIMIT"):
            values["default_time_limit"] = env["QUIZ_DEFAULT_TIME_LIMIT"]
        if env.get("QUIZ_GRACE_PERIOD_SECONDS"):
            values["grace_period_seconds"] = env["QUIZ_GRACE_PERIOD_SECONDS"]
        if env.get("QUIZ_RETENTION_DAYS"):
            values["retention_days"] = env["QUIZ_RETENTION_DAYS"]
        if env.get("QUIZ_CORS_ORIGINS"):
            values["cors_origins"] = [o.strip() for o in env["QUIZ_CORS_ORIGINS"].split(",") if o.strip()]

        # Firestore credentials: JSON blob wins over a file path
        values["firebase_credentials_json"] = env.get("FIREBASE_SERVICE_ACCOUNT_JSON") or None
        cred_path = env.get("GOOGLE_APPLICATION_CREDENTIALS")
        if cred_path:
            cred_path = cred_path.strip().strip('"').strip("'")
            values["firebase_credentials_path"] = os.path.expanduser(os.path.expandvars(cred_path))
        return cls.model_validate(values)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
