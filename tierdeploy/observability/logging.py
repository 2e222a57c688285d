"""Logging setup for orchestration runs.

Every record emitted during a run can carry the run id and the unit or
check it concerns. ``RunLoggerAdapter`` stamps those fields; both formatters
render them, as JSON keys or as a bracketed console suffix.
"""

import json
import logging
import os
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

# Record attributes that identify where in a run a record comes from
CONTEXT_FIELDS = ("run_id", "unit", "check")

# Loggers that are chatty at INFO during connectivity and endpoint checks
QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Run context fields set on ``record``, in a stable order."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for CI log collectors."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "line": record.lineno,
        }
        entry.update(record_context(record))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable formatter with level colors and a run context suffix.

    The ``%(context)s`` placeholder expands to e.g. ``[run=3f2a unit=api]``,
    or to nothing for records logged outside a run.
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s%(context)s: %(message)s"

    def __init__(self, fmt: str | None = None, datefmt: str | None = "%H:%M:%S"):
        super().__init__(fmt=fmt or self.DEFAULT_FORMAT, datefmt=datefmt)

    def format(self, record: logging.LogRecord) -> str:
        # Work on a copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)

        context = record_context(record)
        if "run_id" in context:
            context["run"] = context.pop("run_id")
        record.context = (
            " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]" if context else ""
        )

        if sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{self.RESET}"

        return super().format(record)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in ("true", "1", "yes")


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: Path | None = None,
) -> None:
    """Configure the root logger for a CLI invocation.

    ``LOG_LEVEL`` and ``LOG_JSON`` in the environment take precedence over
    the arguments. A log file always receives JSON.

    Args:
        level: Logging level name.
        json_format: Emit JSON on stderr instead of colored text.
        log_file: Optional file that also receives every record.
    """
    level_name = os.getenv("LOG_LEVEL", level).upper()
    log_level = getattr(logging, level_name, logging.INFO)
    json_format = json_format or _env_flag("LOG_JSON")

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(log_level)
    console.setFormatter(JSONFormatter() if json_format else ConsoleFormatter())
    root.addHandler(console)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JSONFormatter())
        root.addHandler(file_handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


class RunLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps records with run context.

    Components build one per run from their module logger and ``bind`` the
    unit or check they are working on::

        log = RunLoggerAdapter(logger, run_id).bind(unit="api")
        log.info("3/3 replicas ready")  # record.run_id, record.unit set
    """

    def __init__(self, logger: logging.Logger, run_id: str | None = None, **context: Any):
        super().__init__(logger, {"run_id": run_id, **context})

    @property
    def run_id(self) -> str | None:
        return (self.extra or {}).get("run_id")

    def bind(self, **context: Any) -> "RunLoggerAdapter":
        """Adapter on the same logger with additional context fields."""
        merged = {**(self.extra or {}), **context}
        run_id = merged.pop("run_id", None)
        return RunLoggerAdapter(self.logger, run_id, **merged)

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = {k: v for k, v in (self.extra or {}).items() if v is not None}
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs
