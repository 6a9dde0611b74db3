"""
Archiver for database dumps.

Compresses a single dump file into a single-entry zip next to it, verifies
the archive is not empty and only then discards the uncompressed dump.
"""

import os
import zipfile
from pathlib import Path
from typing import Optional

from backupbot.audit import AuditLog


MAX_COMPRESSION_LEVEL = 9
ARCHIVE_EXTENSION = '.zip'


class ArchiveError(Exception):
    """Raised when archive creation fails."""
    pass


class EmptyArchiveError(ArchiveError):
    """Raised when the archive was written but is zero bytes."""
    pass


def archive_path_for(source_path) -> str:
    """
    Sibling archive path for a dump file.

    Example: backups/x/2024-01-15/x-2024-01-15T12-00-00.000Z.sql -> ...000Z.zip
    """
    return str(Path(source_path).with_suffix(ARCHIVE_EXTENSION))


def _write_zip(source_path: str, archive_path: str, compression_level: int):
    """
    Write `source_path` as the only entry of a new zip archive.

    The entry name is the base filename so the archive carries no directory
    structure.
    """
    with zipfile.ZipFile(
        archive_path, 'w',
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=compression_level
    ) as zipf:
        zipf.write(source_path, os.path.basename(source_path))


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        ArchiveError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise ArchiveError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise ArchiveError(f"Failed to get archive size: {e}")


class Archiver:
    """
    Compresses dump files with maximum compression.

    Cleanup of the partial archive or of the source dump is best-effort: a
    failure is written to the audit log and does not change the outcome.
    """

    def __init__(self, audit: Optional[AuditLog] = None, compression_level: int = MAX_COMPRESSION_LEVEL):
        """
        Initialize the archiver.

        Args:
            audit: Audit log for cleanup warnings
            compression_level: zlib level (0-9)
        """
        self.audit = audit
        self.compression_level = compression_level

    def archive(self, source_path) -> str:
        """
        Compress `source_path` into a sibling zip archive.

        Args:
            source_path: Uncompressed dump file

        Returns:
            Path to the verified, non-empty archive

        Raises:
            ArchiveError: If the source is missing or compression fails
            EmptyArchiveError: If the written archive is zero bytes
                (the source dump is kept in that case)
        """
        source_path = str(source_path)
        archive_path = archive_path_for(source_path)

        if not os.path.isfile(source_path):
            raise ArchiveError(f"Dump file not found: {source_path}")

        try:
            _write_zip(source_path, archive_path, self.compression_level)
        except (OSError, zipfile.BadZipFile, ValueError) as e:
            self._remove(archive_path, "partial archive")
            raise ArchiveError(f"Failed to compress {os.path.basename(source_path)}: {e}")

        # Verify before discarding the only other copy of the data
        if get_archive_size(archive_path) == 0:
            self._remove(archive_path, "empty archive")
            raise EmptyArchiveError(f"Compressed file is empty: {archive_path}")

        self._remove(source_path, "uncompressed dump")

        return archive_path

    def _remove(self, path: str, description: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self._warn(f"Could not remove {description} {path}: {e}")

    def _warn(self, message: str):
        if self.audit:
            self.audit.warning(message)
