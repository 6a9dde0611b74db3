"""
Dump producer for MySQL/MariaDB databases.

Runs ``mysqldump`` as an external process and writes a single uncompressed
SQL file. The password is handed over through the MYSQL_PWD environment
variable so it never appears in the process list.
"""

import logging
import os
import subprocess
from pathlib import Path

from backupbot.models import BackupConfig, ConfigError


logger = logging.getLogger(__name__)


class DumpError(Exception):
    """Raised when the database dump fails."""
    pass


def summarize_dump_error(stderr: str) -> str:
    """
    Turn mysqldump stderr into a short human-readable reason.

    Args:
        stderr: Raw stderr output from mysqldump

    Returns:
        One-line summary (connection, authentication, database or tool failure)
    """
    text = (stderr or '').lower()

    if 'access denied' in text:
        return "Authentication failed: user or password rejected by the server"
    if "unknown database" in text:
        return "Database not found: the configured database does not exist"
    if "can't connect" in text or 'connection refused' in text:
        return "Connection failed: could not reach the database server, check host and port"
    if 'unknown mysql server host' in text or 'name or service not known' in text:
        return "Connection failed: the database host name could not be resolved"
    if 'lost connection' in text or 'timed out' in text:
        return "Connection failed: the server dropped the connection"

    return "mysqldump failed for an unidentified reason"


class MySQLDumpProducer:
    """
    Produces a full logical dump of one database.

    Creates exactly one file at the requested path on success and none on
    failure.
    """

    def __init__(self, mysqldump_path: str = 'mysqldump', timeout: int = 600):
        """
        Initialize the dump producer.

        Args:
            mysqldump_path: Executable to run
            timeout: Seconds before the dump process is abandoned
        """
        self.mysqldump_path = mysqldump_path
        self.timeout = timeout

    def build_command(self, config: BackupConfig, output_path: str) -> list:
        """Command line for dumping `config.database` into `output_path`."""
        return [
            self.mysqldump_path,
            f"--host={config.host}",
            f"--port={config.port}",
            f"--user={config.user}",
            '--single-transaction',
            '--routines',
            '--triggers',
            '--events',
            f"--result-file={output_path}",
            config.database,
        ]

    def dump(self, config: BackupConfig, output_path) -> str:
        """
        Dump the configured database to `output_path`.

        Args:
            config: Backup configuration with connection parameters
            output_path: Destination file for the SQL dump

        Returns:
            Path of the written dump file

        Raises:
            ConfigError: If a connection parameter is missing (no I/O attempted)
            DumpError: If the dump tool cannot run or exits with an error
        """
        self.validate(config)

        output_path = str(output_path)
        cmd = self.build_command(config, output_path)

        env = os.environ.copy()
        env['MYSQL_PWD'] = config.password

        logger.debug(f"Executing mysqldump for {config.user}@{config.host}:{config.port}/{config.database}")

        try:
            result = subprocess.run(
                cmd,
                env=env,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError:
            self._remove_partial(output_path)
            raise DumpError(f"Dump tool not found: {self.mysqldump_path}")
        except subprocess.TimeoutExpired:
            self._remove_partial(output_path)
            raise DumpError(f"mysqldump timed out after {self.timeout} seconds")
        except OSError as e:
            self._remove_partial(output_path)
            raise DumpError(f"Failed to start mysqldump: {e}")

        if result.returncode != 0:
            self._remove_partial(output_path)
            summary = summarize_dump_error(result.stderr)
            detail = (result.stderr or '').strip()
            raise DumpError(
                f"{summary} (exit code {result.returncode}): {detail}" if detail
                else f"{summary} (exit code {result.returncode})"
            )

        if not os.path.exists(output_path):
            raise DumpError(f"mysqldump reported success but wrote no file: {output_path}")

        return output_path

    @staticmethod
    def validate(config: BackupConfig):
        """
        Check the connection parameters without touching the filesystem.

        Raises:
            ConfigError: If host, user, database or password is missing
        """
        missing = [
            name for name in ('host', 'user', 'database')
            if not getattr(config, name)
        ]
        if config.password is None:
            missing.append('password')
        if missing:
            raise ConfigError(
                f"Missing database connection parameters: {', '.join(missing)}"
            )

    @staticmethod
    def _remove_partial(output_path: str):
        path = Path(output_path)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial dump {output_path}: {e}")


def create_dump_producer(config: BackupConfig) -> MySQLDumpProducer:
    """Build a dump producer from the configured tool path and timeout."""
    return MySQLDumpProducer(
        mysqldump_path=config.mysqldump_path,
        timeout=config.dump_timeout
    )
