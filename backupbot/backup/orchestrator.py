"""
Backup cycle orchestrator - runs one complete backup pass.

Workflow:
1. Validate configuration
2. Sweep backups older than the retention window
3. Dump the database into today's folder
4. Compress and verify the dump
5. Deliver the report and archive to the notification sink

Every pass returns a CycleResult; errors are caught at the step that can
still make progress and are never raised to the scheduler.
"""

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from backupbot.audit import AuditLog
from backupbot.models import BackupArtifact, ConfigError, CycleResult, InstanceContext
from backupbot.notify import Attachment, DeliveryError, NotificationSink, build_backup_report
from .compression import Archiver, ArchiveError, get_archive_size
from .dump import DumpError, MySQLDumpProducer, create_dump_producer
from .retention import RetentionSweeper


class UnexpectedError(Exception):
    """Any failure outside the known error taxonomy."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def backup_folder(context: InstanceContext, created_at: datetime) -> Path:
    """``<backup_root>/<source_id>/<YYYY-MM-DD>`` using the local date."""
    return context.source_dir / created_at.astimezone().strftime('%Y-%m-%d')


def dump_filename(source_id: str, created_at: datetime) -> str:
    """
    ``<source_id>-<UTC ISO-8601 timestamp>.sql`` with colons replaced by dashes.

    Example: TestServer-2024-01-15T12-00-00.000Z.sql
    """
    timestamp = created_at.astimezone(timezone.utc).isoformat(timespec='milliseconds')
    timestamp = timestamp.replace('+00:00', 'Z').replace(':', '-')
    return f"{source_id}-{timestamp}.sql"


class BackupOrchestrator:
    """
    Sequences sweep, dump, archive and delivery for one instance.

    A single orchestrator runs at most one cycle at a time; the scheduler
    guarantees cycles never overlap.
    """

    def __init__(
        self,
        context: InstanceContext,
        audit: AuditLog,
        dumper: Optional[MySQLDumpProducer] = None,
        archiver: Optional[Archiver] = None,
        sweeper: Optional[RetentionSweeper] = None,
        notifier: Optional[NotificationSink] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        """
        Initialize the orchestrator.

        Args:
            context: Instance context (source identifier, config, paths)
            audit: Audit log for this source
            dumper: Dump producer (built from config when omitted)
            archiver: Archiver (default: max compression)
            sweeper: Retention sweeper
            notifier: Notification sink, or None to skip delivery
            clock: Returns the current aware datetime
        """
        self.context = context
        self.audit = audit
        self.dumper = dumper or create_dump_producer(context.config)
        self.archiver = archiver or Archiver(audit)
        self.sweeper = sweeper or RetentionSweeper(audit)
        self.notifier = notifier
        self.clock = clock

    @property
    def config(self):
        return self.context.config

    def run_cycle(self) -> CycleResult:
        """
        Run one backup cycle.

        Returns:
            CycleResult; error_kind names the failing step's error class
        """
        result = CycleResult(started_at=self.clock())

        try:
            self._execute_workflow(result)
        except (ConfigError, DumpError, ArchiveError) as e:
            self._fail(result, e)
        except Exception as e:
            self.audit.error(f"Unexpected error in backup routine: {e}")
            self._fail(result, UnexpectedError(str(e)))
        finally:
            result.finished_at = self.clock()

        return result

    def _execute_workflow(self, result: CycleResult):
        """Execute the cycle steps, filling in `result`."""
        # Step 1: Validate configuration
        try:
            self.config.validate()
        except ConfigError as e:
            self.audit.error(f"Incorrect backup configuration: {e}")
            raise

        # Step 2: Retention sweep (never aborts the cycle)
        self.sweeper.sweep(self.context.source_dir, self.config.retention_days)

        # Step 3: Dump
        artifact = self._dump()

        # Step 4: Compress and verify
        self._archive(artifact)
        result.artifact = artifact

        # Step 5: Deliver
        result.delivered = self._deliver(artifact)

    def _dump(self) -> BackupArtifact:
        created_at = self.clock()
        folder = backup_folder(self.context, created_at)
        artifact = BackupArtifact(
            source_id=self.context.source_id,
            created_at=created_at,
            folder=folder,
            dump_path=folder / dump_filename(self.context.source_id, created_at)
        )

        try:
            # Connection parameters are checked before the day folder exists
            self.dumper.validate(self.config)
            folder.mkdir(parents=True, exist_ok=True)
            self.dumper.dump(self.config, artifact.dump_path)
        except (DumpError, ConfigError) as e:
            self.audit.error(f"Failed to create the backup file: {e}")
            raise

        return artifact

    def _archive(self, artifact: BackupArtifact):
        try:
            archive_path = self.archiver.archive(artifact.dump_path)
        except ArchiveError as e:
            self.audit.error(f"Failed to compress the backup file: {e}")
            raise

        artifact.archive_path = Path(archive_path)
        artifact.size_bytes = get_archive_size(archive_path)
        self.audit.success(f"Backup created successfully: {artifact.archive_path}")

    def _deliver(self, artifact: BackupArtifact) -> bool:
        """Send the report; delivery failures leave the backup valid."""
        if self.notifier is None:
            self.audit.info("No notification channel configured, skipping delivery")
            return False

        report = build_backup_report(
            artifact,
            database=self.config.database,
            interval_minutes=self.config.interval_minutes,
            display_name=self.context.display_name
        )
        attachment = Attachment(
            path=str(artifact.archive_path),
            filename=os.path.basename(artifact.archive_path)
        )

        try:
            self.notifier.send(report, attachment)
        except DeliveryError as e:
            self.audit.error(f"Failed to deliver backup: {e}")
            return False

        self.audit.success(f"Backup delivered. Size: {artifact.size_mb:.2f} MB")
        return True

    def _fail(self, result: CycleResult, error: Exception):
        result.error_kind = type(error).__name__
        result.error_message = str(error)
        if not isinstance(error, ConfigError):
            self.audit.error("Could not create the backup. Check the log for details.")
