"""
=============================================================================
COMMAND LOGGING
=============================================================================

Optional per-command log records, one per request/reply exchange.

    text:  a1b2c3d4 m test_filter keys=5 ok 0.42ms
    json:  {"connection_id": "a1b2c3d4", "verb": "m", "filter": ...}

Records go to the "bloomd.commands" logger so they can be routed or
silenced separately from the library's debug output:

    logging.getLogger("bloomd.commands").setLevel(logging.WARNING)

Keys are never logged, only how many there were.

=============================================================================
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

from .protocol.commands import Command


logger = logging.getLogger("bloomd.commands")


@dataclass
class CommandLog:
    """
    Structured log entry for one command.

    connection_id:  Connection that carried the command
    verb:           Protocol verb (create, m, b, ...)
    filter_name:    Target filter, "-" for list / flush-all
    key_count:      Number of keys sent
    outcome:        "ok" or the exception class name
    duration_ms:    Write + read time
    timestamp:      Wall clock time the command finished
    """

    connection_id: str
    verb: str
    filter_name: str
    key_count: int
    outcome: str
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "verb": self.verb,
            "filter": self.filter_name,
            "key_count": self.key_count,
            "outcome": self.outcome,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp,
        }

    def to_text(self) -> str:
        return (
            f"{self.connection_id} {self.verb} {self.filter_name} "
            f"keys={self.key_count} {self.outcome} {self.duration_ms:.2f}ms"
        )


class CommandLogger:
    """
    Emits a CommandLog for each exchange on a connection.

    Args:
        log_format: "text" or "json".
        log_level: Level for successful commands. Failed commands are
            always logged at WARNING.
    """

    def __init__(self, log_format: str = "text", log_level: int = logging.INFO):
        if log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {log_format!r}")
        self.log_format = log_format
        self.log_level = log_level

    def record(
        self,
        connection_id: str,
        command: Command,
        duration: float,
        error: Optional[BaseException] = None,
    ) -> CommandLog:
        """Build and emit the log entry for one command."""
        entry = CommandLog(
            connection_id=connection_id,
            verb=command.verb,
            filter_name=command.filter_name or "-",
            key_count=command.key_count,
            outcome="ok" if error is None else type(error).__name__,
            duration_ms=duration * 1000,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        level = self.log_level if error is None else logging.WARNING
        if self.log_format == "json":
            logger.log(level, json.dumps(entry.to_dict()))
        else:
            logger.log(level, entry.to_text())
        return entry
