"""
Shared pytest fixtures for backupbot tests.

This module provides fixtures for:
- Backup configuration and instance context in a temp directory
- Audit log bound to the temp log directory
- A fake mysqldump process
- Mock notification sink and APScheduler instance
- Temporary dump files and aged backup folders
"""

import os
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from backupbot.audit import AuditLog
from backupbot.backup.orchestrator import BackupOrchestrator
from backupbot.models import BackupConfig, InstanceContext
from backupbot.notify import NotificationSink


SAMPLE_SQL = (
    "-- MySQL dump\n"
    "CREATE TABLE `players` (`id` int NOT NULL, `name` varchar(64));\n"
    "INSERT INTO `players` VALUES (1,'alice'),(2,'bob');\n"
) * 50


@pytest.fixture
def backup_config():
    """
    Complete configuration with a 10 minute cooldown.
    """
    return BackupConfig(
        host='h',
        user='u',
        password='p',
        database='db',
        cooldown=10,
        channel_id='123456789',
        token='test-token'
    )


@pytest.fixture
def context(tmp_path, backup_config):
    """Instance context for source 'TestServer' rooted in tmp_path."""
    return InstanceContext.create(
        'TestServer',
        backup_config,
        backup_root=str(tmp_path / 'backups'),
        log_dir=str(tmp_path / 'logs')
    )


@pytest.fixture
def audit(context):
    """Audit log writing to tmp_path/logs/TestServer_backup.log."""
    log = AuditLog(context.source_id, context.log_dir)
    yield log
    log.close()


@pytest.fixture
def audit_text(context):
    """Returns a callable reading the current audit log contents."""
    def _read() -> str:
        path = context.log_dir / f"{context.source_id}_backup.log"
        if not path.exists():
            return ''
        return path.read_text(encoding='utf-8')
    return _read


def _result_file(cmd):
    for arg in cmd:
        if arg.startswith('--result-file='):
            return arg.split('=', 1)[1]
    raise AssertionError(f"No --result-file in {cmd}")


@pytest.fixture
def fake_mysqldump():
    """
    Patch subprocess.run so mysqldump "succeeds" and writes SAMPLE_SQL.
    """
    def _run(cmd, **kwargs):
        with open(_result_file(cmd), 'w', encoding='utf-8') as f:
            f.write(SAMPLE_SQL)
        return subprocess.CompletedProcess(cmd, 0, stdout='', stderr='')

    with patch('backupbot.backup.dump.subprocess.run', side_effect=_run) as mock_run:
        yield mock_run


@pytest.fixture
def mock_notifier():
    """Notification sink that accepts every report."""
    return MagicMock(spec=NotificationSink)


@pytest.fixture
def orchestrator(context, audit, mock_notifier):
    """Orchestrator with real dump/archive/retention components."""
    return BackupOrchestrator(context, audit, notifier=mock_notifier)


@pytest.fixture
def temp_dump(tmp_path):
    """
    An uncompressed dump file in tmp_path/dumps.
    """
    dump_dir = tmp_path / 'dumps'
    dump_dir.mkdir()
    dump_path = dump_dir / 'TestServer-2024-01-15T12-00-00.000Z.sql'
    dump_path.write_text(SAMPLE_SQL, encoding='utf-8')
    return dump_path


@pytest.fixture
def age_path():
    """Returns a callable setting a path's mtime `days` before epoch `now`."""
    def _age(path, days, now):
        timestamp = now - days * 86400
        os.utime(path, (timestamp, timestamp))
    return _age


@pytest.fixture
def mock_scheduler():
    """
    Mock APScheduler instance for BackupScheduler tests.
    """
    scheduler_instance = MagicMock()
    scheduler_instance.running = False
    scheduler_instance.get_jobs.return_value = []
    return scheduler_instance
