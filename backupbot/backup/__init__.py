"""
Backup module for backupbot.

This module handles the backup lifecycle:
- Database dump (mysqldump)
- Compression and verification
- Retention policy enforcement
- Cycle orchestration
"""

from .orchestrator import BackupOrchestrator, UnexpectedError
from .dump import MySQLDumpProducer, DumpError
from .compression import Archiver, ArchiveError, EmptyArchiveError
from .retention import RetentionSweeper, RetentionError

__all__ = [
    'BackupOrchestrator',
    'UnexpectedError',
    'MySQLDumpProducer',
    'DumpError',
    'Archiver',
    'ArchiveError',
    'EmptyArchiveError',
    'RetentionSweeper',
    'RetentionError'
]
