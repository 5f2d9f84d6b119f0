"""flowspec configuration — environment-driven defaults.

Environment variables
---------------------
FLOWSPEC_DEFAULT_MODEL   Model used by llm-call nodes that declare none and
                         whose graph has no ``globals.model`` (default
                         ``"gpt-4o-mini"``).
FLOWSPEC_HTTP_TIMEOUT    Seconds before the requests-based HTTP client gives
                         up (default 30).
FLOWSPEC_LOG_LEVEL       Level passed to ``setup_logging`` by the CLI
                         (default ``"info"``).
FLOWSPEC_LOG_DIR         Directory for CLI log files (default ``./logs``).

A ``.env`` file in the working directory (or a parent) is loaded first.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass(frozen=True)
class Settings:
    default_model: str = DEFAULT_MODEL
    http_timeout: float = 30.0
    log_level: str = "info"
    log_dir: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            default_model=os.environ.get("FLOWSPEC_DEFAULT_MODEL", DEFAULT_MODEL),
            http_timeout=float(os.environ.get("FLOWSPEC_HTTP_TIMEOUT", "30")),
            log_level=os.environ.get("FLOWSPEC_LOG_LEVEL", "info"),
            log_dir=os.environ.get("FLOWSPEC_LOG_DIR") or None,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return process-wide settings, reading ``.env`` and the environment once."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings so the next :func:`get_settings` re-reads the environment."""
    global _settings
    _settings = None
