"""
Retention policy enforcement for backups.

Removes entries under a source's backup root that are older than the
configured retention window. Entries are usually the per-day folders
(``<root>/<YYYY-MM-DD>``) and are removed recursively.
"""

import os
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from backupbot.audit import AuditLog
from backupbot.models import RetentionEntry


class RetentionError(Exception):
    """Raised when an expired entry cannot be deleted."""
    pass


@dataclass
class SweepSummary:
    """What one sweep did."""

    scanned: int = 0
    deleted: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def list_entries(root, on_error: Optional[Callable[[str, OSError], None]] = None) -> List[RetentionEntry]:
    """
    List the immediate children of `root`.

    Entries that disappear between listing and stat are skipped. Any other
    stat failure skips only that entry and is passed to `on_error`.

    Args:
        root: Directory to scan (non-recursive)
        on_error: Called with the entry path and the error for unreadable entries

    Returns:
        RetentionEntry per file or directory, empty if root is missing
    """
    root = Path(root)
    if not root.is_dir():
        return []

    entries = []
    with os.scandir(root) as it:
        for dir_entry in it:
            try:
                entries.append(RetentionEntry.from_dir_entry(dir_entry))
            except FileNotFoundError:
                continue
            except OSError as e:
                if on_error:
                    on_error(dir_entry.path, e)
    return entries


def remove_entry(entry: RetentionEntry):
    """
    Delete a file or directory tree; already-gone is not an error.

    Raises:
        RetentionError: If the entry exists but cannot be removed
    """
    try:
        if entry.is_dir:
            shutil.rmtree(entry.path)
        else:
            entry.path.unlink()
    except FileNotFoundError:
        return
    except OSError as e:
        raise RetentionError(f"Failed to remove old backup {entry.path}: {e}")


class RetentionSweeper:
    """
    Enforces the retention window on one source's backup tree.

    Every deletion and every failure is written to the audit log; a failure
    on one entry never stops the sweep.
    """

    def __init__(self, audit: Optional[AuditLog] = None):
        """
        Initialize the sweeper.

        Args:
            audit: Audit log receiving one record per deletion attempt
        """
        self.audit = audit

    def sweep(self, root, retention_days: float, now: Optional[float] = None) -> SweepSummary:
        """
        Delete entries of `root` older than `retention_days`.

        Args:
            root: Backup root of the current source
            retention_days: Age threshold in days (strictly older is deleted)
            now: Epoch seconds to measure age against (defaults to time.time())

        Returns:
            SweepSummary with deleted paths and error messages
        """
        summary = SweepSummary()

        if now is None:
            now = time.time()

        def _unreadable(path, error):
            message = f"Failed to read backup entry {path}: {error}"
            self._record_error(message)
            summary.errors.append(message)

        try:
            entries = list_entries(root, on_error=_unreadable)
        except OSError as e:
            message = f"Failed to scan backup directory {root}: {e}"
            self._record_error(message)
            summary.errors.append(message)
            return summary

        summary.scanned = len(entries)

        expired = [
            entry for entry in entries
            if entry.age_days(now) > retention_days
        ]

        for entry in expired:
            try:
                remove_entry(entry)
            except RetentionError as e:
                self._record_error(str(e))
                summary.errors.append(str(e))
                continue

            summary.deleted.append(str(entry.path))
            if self.audit:
                self.audit.info(f"Old backup removed: {entry.path}")

        return summary

    def _record_error(self, message: str):
        if self.audit:
            self.audit.error(message)
