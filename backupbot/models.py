"""
Data model for the backup agent.

- BackupConfig: immutable configuration resolved once at startup
- InstanceContext: source identifier + config passed to every component
- BackupArtifact: output of one backup attempt
- CycleResult: outcome of one orchestration pass
- RetentionEntry: a filesystem entry considered by the retention sweep
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


DEFAULT_RETENTION_DAYS = 30
DEFAULT_COOLDOWN_MINUTES = 10
MIN_INTERVAL_MINUTES = 1
DEFAULT_MYSQL_PORT = 3306
DEFAULT_DUMP_TIMEOUT = 600

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9_-]')


class ConfigError(Exception):
    """Raised when the backup configuration is missing or malformed."""
    pass


def sanitize_source_id(name: str) -> str:
    """
    Make an instance/server name safe for use in paths and filenames.

    Every character outside [A-Za-z0-9_-] is replaced with an underscore.

    Args:
        name: Raw instance name (e.g. a Discord guild name)

    Returns:
        Sanitized source identifier
    """
    return _UNSAFE_CHARS.sub('_', name or '')


def _number_or_default(value: Any, default: float) -> float:
    # Missing, empty and zero values all fall back to the default
    if value in (None, ''):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Expected a number, got: {value!r}")
    return number or default


@dataclass(frozen=True)
class BackupConfig:
    """Configuration for one data source and one delivery channel."""

    host: str = ''
    user: str = ''
    password: Optional[str] = None
    database: str = ''
    port: int = DEFAULT_MYSQL_PORT
    retention_days: float = DEFAULT_RETENTION_DAYS
    cooldown: float = DEFAULT_COOLDOWN_MINUTES

    # Delivery
    channel_id: str = ''
    token: str = ''

    # Instance
    source_name: str = ''

    # Dump tool
    dump_timeout: int = DEFAULT_DUMP_TIMEOUT
    mysqldump_path: str = 'mysqldump'

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BackupConfig':
        """
        Build a config from the JSON file layout.

        Expected shape::

            {
                "token": "...",
                "channelId": "...",
                "serverName": "...",
                "backup": {"host": ..., "user": ..., "password": ...,
                           "database": ..., "port": ...,
                           "retentionDays": ..., "cooldown": ...}
            }

        A missing or malformed "backup" section is not rejected here; it
        surfaces as a ConfigError when a cycle validates the config.
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration root must be an object")

        backup = data.get('backup')
        if not isinstance(backup, dict):
            backup = {}

        port = backup.get('port') or DEFAULT_MYSQL_PORT
        try:
            port = int(port)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid database port: {port!r}")

        dump_timeout = backup.get('dumpTimeout') or DEFAULT_DUMP_TIMEOUT
        try:
            dump_timeout = int(dump_timeout)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid dump timeout: {dump_timeout!r}")

        password = backup.get('password')

        return cls(
            host=str(backup.get('host') or ''),
            user=str(backup.get('user') or ''),
            password=None if password is None else str(password),
            database=str(backup.get('database') or ''),
            port=port,
            retention_days=_number_or_default(backup.get('retentionDays'), DEFAULT_RETENTION_DAYS),
            cooldown=_number_or_default(backup.get('cooldown'), DEFAULT_COOLDOWN_MINUTES),
            channel_id=str(data.get('channelId') or ''),
            token=str(data.get('token') or ''),
            source_name=str(data.get('serverName') or ''),
            dump_timeout=dump_timeout,
            mysqldump_path=str(backup.get('mysqldumpPath') or 'mysqldump'),
        )

    @property
    def interval_minutes(self) -> float:
        """Delay between cycles, never below one minute."""
        return max(MIN_INTERVAL_MINUTES, self.cooldown)

    @property
    def delivery_configured(self) -> bool:
        return bool(self.token and self.channel_id)

    def validate(self):
        """
        Check the fields every cycle needs.

        Raises:
            ConfigError: If host, database or user is missing
        """
        missing = [
            name for name in ('host', 'database', 'user')
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigError(
                f"Invalid backup configuration, missing: {', '.join(missing)}"
            )


@dataclass(frozen=True)
class InstanceContext:
    """
    Everything that identifies one running backup instance.

    Constructed once at startup and handed to every component.
    """

    source_id: str
    config: BackupConfig
    backup_root: Path = Path('./backups')
    log_dir: Path = Path('./logs')

    @classmethod
    def create(cls, source_name: str, config: BackupConfig,
               backup_root: str = './backups', log_dir: str = './logs') -> 'InstanceContext':
        source_id = sanitize_source_id(source_name)
        if not source_id:
            raise ConfigError("A source name is required to namespace backups and logs")
        return cls(
            source_id=source_id,
            config=config,
            backup_root=Path(backup_root),
            log_dir=Path(log_dir),
        )

    @property
    def source_dir(self) -> Path:
        """Root of this source's backup tree."""
        return self.backup_root / self.source_id

    @property
    def display_name(self) -> str:
        return self.source_id.replace('_', ' ')


@dataclass
class BackupArtifact:
    """One backup attempt's files."""

    source_id: str
    created_at: datetime
    folder: Path
    dump_path: Path
    archive_path: Optional[Path] = None
    size_bytes: int = 0

    @property
    def archive_name(self) -> str:
        return self.archive_path.name if self.archive_path else ''

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)


@dataclass
class CycleResult:
    """Outcome of one backup cycle."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    artifact: Optional[BackupArtifact] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
    delivered: bool = False

    @property
    def ok(self) -> bool:
        return self.error_kind is None

    @property
    def status(self) -> str:
        return 'success' if self.ok else 'failed'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'archive': str(self.artifact.archive_path) if self.artifact and self.artifact.archive_path else None,
            'size_bytes': self.artifact.size_bytes if self.artifact else None,
            'delivered': self.delivered,
            'error_kind': self.error_kind,
            'error_message': self.error_message,
        }


@dataclass(frozen=True)
class RetentionEntry:
    """Immediate child of a source's backup root."""

    path: Path
    modified_at: float
    is_dir: bool = False

    @classmethod
    def from_dir_entry(cls, entry: os.DirEntry) -> 'RetentionEntry':
        # follow_symlinks=False so a dangling link is still aged and removable
        stat = entry.stat(follow_symlinks=False)
        return cls(
            path=Path(entry.path),
            modified_at=stat.st_mtime,
            is_dir=entry.is_dir(follow_symlinks=False),
        )

    def age_days(self, now: float) -> float:
        """Age in days relative to the epoch timestamp `now`."""
        return (now - self.modified_at) / 86400

    @property
    def modified(self) -> datetime:
        return datetime.fromtimestamp(self.modified_at, tz=timezone.utc)
