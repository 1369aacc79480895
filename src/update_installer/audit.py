"""
Install history for the update installer.

Every step of an update attempt is narrated to an append-only log file under
the managed root, one ``[<timestamp>] <message>`` line per event. Entries are
never rewritten or deleted.
"""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from update_installer.logging import get_logger

logger = get_logger(__name__)

HISTORY_FILENAME = "install_history.log"

_ENTRY_PATTERN = re.compile(r"^\[(?P<timestamp>[^\]]+)\] (?P<message>.*)$")


class AuditEntry(BaseModel):
    """A single line of the install history."""

    timestamp: str = Field(..., description="ISO 8601 timestamp in UTC")
    message: str = Field(..., description="Event description")


class AuditLog:
    """
    Append-only, timestamped event sink.

    Entries are written through a dedicated logging.FileHandler so each
    record is flushed as soon as it is emitted. With ``echo`` enabled every
    entry is also passed to the application logger.

    Example:
        >>> audit = AuditLog(Path("/var/lib/app/install_history.log"))
        >>> audit.record("Validated package for version: 1.2.0")
    """

    def __init__(self, path: Path | str, *, echo: bool = True) -> None:
        """
        Initialize the audit log.

        Args:
            path: Path of the history file; parent directories are created
                on first write.
            echo: Also emit each entry on the application logger.
        """
        self._path = Path(path)
        self._echo = echo
        self._file_logger: logging.Logger | None = None
        self._handler: logging.FileHandler | None = None

    @property
    def path(self) -> Path:
        """Path of the history file."""
        return self._path

    def _ensure_file_logger(self) -> logging.Logger:
        """Create the file logger on first use."""
        if self._file_logger is not None:
            return self._file_logger

        self._path.parent.mkdir(parents=True, exist_ok=True)

        # Owned by this instance and kept out of the logging registry
        file_logger = logging.Logger(f"update_installer.audit:{self._path.name}")
        file_logger.setLevel(logging.INFO)
        file_logger.propagate = False

        handler = logging.FileHandler(self._path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(message)s"))
        file_logger.addHandler(handler)

        self._file_logger = file_logger
        self._handler = handler
        return file_logger

    def record(self, message: str) -> AuditEntry:
        """
        Append an event to the history.

        Args:
            message: Event description. Line breaks are collapsed so every
                entry occupies exactly one line.

        Returns:
            The entry that was written.
        """
        entry = AuditEntry(
            timestamp=datetime.now(UTC).isoformat(),
            message=" ".join(message.splitlines()).strip(),
        )
        self._ensure_file_logger().info(f"[{entry.timestamp}] {entry.message}")

        if self._echo:
            logger.info(entry.message)

        return entry

    def entries(self) -> list[AuditEntry]:
        """
        Read the history back in chronological order.

        Returns:
            Parsed entries; lines that do not match the entry format are skipped.
        """
        if not self._path.exists():
            return []

        result = []
        for line in self._path.read_text(encoding="utf-8").splitlines():
            match = _ENTRY_PATTERN.match(line)
            if match:
                result.append(AuditEntry(**match.groupdict()))
        return result

    def close(self) -> None:
        """Release the file handler."""
        if self._file_logger is not None and self._handler is not None:
            self._file_logger.removeHandler(self._handler)
            self._handler.close()
        self._file_logger = None
        self._handler = None
