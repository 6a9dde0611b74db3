"""
Command-line entry point.

Resolves the configuration once, builds the instance context and runs the
backup scheduler until the process is terminated.
"""

import argparse
import logging
import signal
import sys
import threading

from backupbot import configure_logging, create_app
from backupbot.audit import AuditLog
from backupbot.backup.orchestrator import BackupOrchestrator
from backupbot.config import config as app_configs, load_backup_config
from backupbot.models import ConfigError, InstanceContext
from backupbot.notify import DeliveryError, DiscordNotifier
from backupbot.scheduler import BackupScheduler


logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog='backupbot',
        description='Scheduled MySQL backups delivered to a Discord channel'
    )
    parser.add_argument('--config', help='Path to the JSON config file')
    parser.add_argument('--source-name', help='Instance name (defaults to the Discord server name)')
    parser.add_argument('--env', choices=['development', 'production'], default='production')
    parser.add_argument('--once', action='store_true', help='Run a single cycle and exit')
    return parser.parse_args(argv)


def resolve_source_name(explicit, backup_config, notifier) -> str:
    """
    Pick the instance name: CLI flag, then config, then the Discord server.

    Raises:
        ConfigError: If no name can be determined
    """
    if explicit:
        return explicit
    if backup_config.source_name:
        return backup_config.source_name
    if notifier is not None:
        try:
            name = notifier.resolve_source_name()
        except DeliveryError as e:
            raise ConfigError(f"Could not detect the server name: {e}")
        if name:
            logger.info(f"Server name detected: {name}")
            return name
    raise ConfigError("No source name configured and no Discord server to detect it from")


def build_scheduler(context: InstanceContext, notifier=None) -> BackupScheduler:
    """Wire the audit log, orchestrator and scheduler for one instance."""
    audit = AuditLog(context.source_id, context.log_dir)
    orchestrator = BackupOrchestrator(context, audit, notifier=notifier)
    return BackupScheduler(orchestrator)


def start_status_server(backup_scheduler, settings, config_name):
    """Serve the status endpoint from a daemon thread."""
    app = create_app(backup_scheduler, config_name)
    thread = threading.Thread(
        target=app.run,
        kwargs={
            'host': settings.HEALTH_HOST,
            'port': settings.HEALTH_PORT,
            'use_reloader': False
        },
        name='status-server',
        daemon=True
    )
    thread.start()
    logger.info(f"Status endpoint listening on {settings.HEALTH_HOST}:{settings.HEALTH_PORT}")
    return thread


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = app_configs[args.env]

    configure_logging(debug=settings.DEBUG, log_dir=settings.LOG_DIR)

    try:
        backup_config = load_backup_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    notifier = None
    if backup_config.delivery_configured:
        notifier = DiscordNotifier(backup_config.token, backup_config.channel_id)
    else:
        logger.warning("Discord token or channel not configured, backups will not be delivered")

    try:
        source_name = resolve_source_name(args.source_name, backup_config, notifier)
        context = InstanceContext.create(
            source_name,
            backup_config,
            backup_root=settings.BACKUP_ROOT,
            log_dir=settings.LOG_DIR
        )
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    logger.info(f"Source identifier: {context.source_id}")
    backup_scheduler = build_scheduler(context, notifier)

    if args.once:
        result = backup_scheduler.orchestrator.run_cycle()
        if notifier is not None:
            notifier.close()
        return 0 if result.ok else 1

    stop_event = threading.Event()

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, stopping")
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    backup_scheduler.start(run_immediately=settings.RUN_ON_START)

    if settings.HEALTH_PORT:
        start_status_server(backup_scheduler, settings, args.env)

    stop_event.wait()
    backup_scheduler.stop()
    if notifier is not None:
        notifier.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
