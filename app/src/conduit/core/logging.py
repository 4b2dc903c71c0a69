"""
Conduit Logging: colorized dev output, JSON in production.

Features:
- Color formatter for dev mode (auto-detects TTY)
- JSON structured formatter for production (CONDUIT_LOG_FORMAT=json)
- Suppresses noisy third-party loggers (httpx, httpcore, openai)
- Configurable via CONDUIT_LOG_LEVEL, CONDUIT_LOG_COLOR, CONDUIT_LOG_FORMAT
- PhaseTimer for per-state timing of a single generate() call

Structured log extra fields (pass via logger.info(..., extra={...})):
    request_id, provider, model, state, duration_ms
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from datetime import datetime, timezone

COLORS = {
    "DEBUG": "\033[36m",  # Cyan
    "INFO": "\033[32m",  # Green
    "WARNING": "\033[33m",  # Yellow
    "ERROR": "\033[31m",  # Red
    "CRITICAL": "\033[1;31m",  # Bold red
    "RESET": "\033[0m",
    "DIM": "\033[2m",
}


class ColorFormatter(logging.Formatter):
    """Colorized log formatter for terminal output."""

    def __init__(self, use_color: bool = True):
        super().__init__(
            fmt="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%H:%M:%S",
        )
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_color:
            return super().format(record)

        orig_levelname = record.levelname
        orig_name = record.name
        record.levelname = (
            f"{COLORS.get(record.levelname, '')}{record.levelname}{COLORS['RESET']}"
        )
        record.name = f"{COLORS['DIM']}{record.name}{COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = orig_levelname
            record.name = orig_name


_STRUCTURED_FIELDS = (
    "request_id",
    "provider",
    "model",
    "state",
    "duration_ms",
    "code",
)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line; structured extras go to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _STRUCTURED_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class PhaseTimer:
    """Tracks how long a generate() call spends in each state.

    Usage:
        timer = PhaseTimer()
        timer.mark("building_request")
        timer.mark("invoking")
        timer.summary()  # -> "building_request: 0.00s | invoking: 0.41s | Total: 0.41s"
    """

    def __init__(self):
        self._marks: list[tuple[str, float]] = []
        self._start = time.monotonic()

    def mark(self, phase: str) -> None:
        self._marks.append((phase, time.monotonic()))

    def elapsed(self, phase: str) -> float | None:
        """Time between the previous mark and this one."""
        for i, (name, ts) in enumerate(self._marks):
            if name == phase:
                prev_ts = self._marks[i - 1][1] if i > 0 else self._start
                return ts - prev_ts
        return None

    def total(self) -> float:
        return time.monotonic() - self._start

    def summary(self) -> str:
        parts = []
        for i, (name, ts) in enumerate(self._marks):
            prev_ts = self._marks[i - 1][1] if i > 0 else self._start
            parts.append(f"{name}: {ts - prev_ts:.2f}s")
        parts.append(f"Total: {self.total():.2f}s")
        return " | ".join(parts)


def _should_use_color() -> bool:
    env_val = os.getenv("CONDUIT_LOG_COLOR", "auto").lower()
    if env_val == "true":
        return True
    if env_val == "false":
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def setup_logging() -> None:
    """Configure logging for the whole process. Call once at startup.

    Env vars:
        CONDUIT_LOG_LEVEL : DEBUG / INFO / WARNING / ERROR (default: INFO)
        CONDUIT_LOG_COLOR : true / false / auto (default: auto)
        CONDUIT_LOG_FORMAT: text / json (default: text)
    """
    level_name = os.getenv("CONDUIT_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("CONDUIT_LOG_FORMAT", "text").lower()

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = ColorFormatter(use_color=_should_use_color())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # Request/response chatter from the HTTP stack
    for noisy_logger in [
        "httpx",
        "httpcore",
        "openai",
        "openai._base_client",
        "uvicorn.access",
    ]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("conduit").debug(
        "Logging configured (level=%s, format=%s)", level_name, log_format
    )
