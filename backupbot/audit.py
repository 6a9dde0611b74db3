"""
Per-instance audit log.

Appends one human-readable line per event to ``<log_dir>/<source_id>_backup.log``:

    [2024-01-15T12:00:00.000Z] [SUCCESS] Backup created: backups/...

Built on the logging module so a failed append is reported to stderr by the
handler and never raised into the backup cycle.
"""

import logging
import os
from datetime import datetime, timezone
from pathlib import Path


class AuditFormatter(logging.Formatter):
    """Formats records as ``[ISO-8601 UTC timestamp] message``."""

    def __init__(self):
        super().__init__('[%(asctime)s] %(message)s')

    def formatTime(self, record, datefmt=None):
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return timestamp.isoformat(timespec='milliseconds').replace('+00:00', 'Z')


class AuditFileHandler(logging.FileHandler):
    """
    Delayed FileHandler that recreates a missing log directory and reports
    a failed open through handleError instead of raising.
    """

    def emit(self, record):
        if self.stream is None:
            try:
                os.makedirs(os.path.dirname(self.baseFilename), exist_ok=True)
                self.stream = self._open()
            except OSError:
                self.handleError(record)
                return
        super().emit(record)


class AuditLog:
    """
    Append-only event log keyed by source identifier.

    Records are also propagated to the process logger so they show up on the
    console and in the rotating application log.
    """

    def __init__(self, source_id: str, log_dir='./logs'):
        """
        Initialize the audit log.

        Args:
            source_id: Sanitized source identifier (names the log file)
            log_dir: Directory for audit files, created if absent
        """
        self.source_id = source_id
        self.log_dir = Path(log_dir)
        self.path = self.log_dir / f"{source_id}_backup.log"

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(f"backupbot.audit.{source_id}")
        self.logger.setLevel(logging.INFO)

        # One file handler per source; a new AuditLog for the same source replaces it
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        self.handler = AuditFileHandler(self.path, mode='a', encoding='utf-8', delay=True)
        self.handler.setFormatter(AuditFormatter())
        self.logger.addHandler(self.handler)

    def record(self, message: str, level: int = logging.INFO):
        """Append a raw message."""
        self.logger.log(level, message)

    def info(self, message: str):
        self.record(f"[INFO] {message}")

    def success(self, message: str):
        self.record(f"[SUCCESS] {message}")

    def warning(self, message: str):
        self.record(f"[WARNING] {message}", logging.WARNING)

    def error(self, message: str):
        self.record(f"[ERROR] {message}", logging.ERROR)

    def close(self):
        """Detach and close the file handler."""
        self.logger.removeHandler(self.handler)
        self.handler.close()
