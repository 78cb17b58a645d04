"""
Structured JSONL run logs.

Each run appends to <hal_dir>/logs/<run_id>-YYYY-MM-DD.jsonl. An entry is a
JSON object with:
- timestamp: ISO 8601 UTC, "Z" suffix
- level: debug, info, warn or error
- event_type: what happened (loop_start, iteration_result, ...)
- run_id: the run the entry belongs to
- data: event payload

Entries are mirrored to the stdlib "hal.run" logger so --verbose shows them.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

_mirror = logging.getLogger("hal.run")


class LogLevel:
    """Log level constants."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def new_run_id() -> str:
    """Run identifier derived from the current UTC time: run-20260101-120000."""
    return datetime.now(timezone.utc).strftime("run-%Y%m%d-%H%M%S")


def _today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


class HalLogger:
    """
    JSONL event logger for one run.

    Args:
        run_id: Identifier used in file names and entries.
        logs_dir: Directory receiving the log files. Created on first write.
    """

    def __init__(self, run_id: str, logs_dir: Union[str, Path]) -> None:
        self.run_id = run_id
        self.logs_dir = Path(logs_dir)
        self._lock = threading.Lock()

    def log_path(self, date: Optional[str] = None) -> Path:
        """Log file for date (YYYY-MM-DD), today by default."""
        return self.logs_dir / f"{self.run_id}-{date or _today()}.jsonl"

    def _write_entry(self, entry: dict[str, Any]) -> None:
        with self._lock:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
            with open(self.log_path(), "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = LogLevel.INFO,
    ) -> None:
        """
        Log an event.

        Args:
            event_type: Type of event (e.g., "iteration_start", "loop_error").
            data: Additional data to include in the log entry.
            level: Log level (debug, info, warn, error).
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "event_type": event_type,
            "run_id": self.run_id,
            "data": data or {},
        }
        self._write_entry(entry)
        _mirror.log(_STDLIB_LEVELS.get(level, logging.INFO), "%s %s", event_type, entry["data"])

    def debug(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.DEBUG)

    def info(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.INFO)

    def warn(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.WARN)

    def error(self, event_type: str, data: Optional[dict[str, Any]] = None) -> None:
        self.log(event_type, data, LogLevel.ERROR)

