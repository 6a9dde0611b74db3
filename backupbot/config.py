import json
import os

from backupbot.models import BackupConfig, ConfigError


class Config:
    """Base configuration"""

    # Backup config file (token, channel and database settings)
    BACKUP_CONFIG_PATH = os.environ.get('BACKUP_CONFIG_PATH') or './config/config.json'

    # Filesystem layout
    BACKUP_ROOT = os.environ.get('BACKUP_ROOT') or './backups'
    LOG_DIR = os.environ.get('LOG_DIR') or './logs'

    # Status endpoint (disabled when no port is set)
    HEALTH_HOST = os.environ.get('HEALTH_HOST') or '127.0.0.1'
    HEALTH_PORT = int(os.environ.get('HEALTH_PORT') or 0)

    # Scheduler
    RUN_ON_START = os.environ.get('RUN_ON_START', 'true').lower() == 'true'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


# Environment variables that override keys of the JSON config file
ENV_OVERRIDES = {
    'DISCORD_TOKEN': ('token',),
    'DISCORD_CHANNEL_ID': ('channelId',),
    'BACKUP_SOURCE_NAME': ('serverName',),
    'BACKUP_DB_HOST': ('backup', 'host'),
    'BACKUP_DB_PORT': ('backup', 'port'),
    'BACKUP_DB_USER': ('backup', 'user'),
    'BACKUP_DB_PASSWORD': ('backup', 'password'),
    'BACKUP_DB_NAME': ('backup', 'database'),
    'BACKUP_RETENTION_DAYS': ('backup', 'retentionDays'),
    'BACKUP_COOLDOWN': ('backup', 'cooldown'),
    'BACKUP_DUMP_TIMEOUT': ('backup', 'dumpTimeout'),
    'MYSQLDUMP_PATH': ('backup', 'mysqldumpPath'),
}


def read_config_file(path: str) -> dict:
    """
    Read the JSON config file.

    Returns an empty dict when the file does not exist so the whole
    configuration can come from the environment.

    Raises:
        ConfigError: If the file exists but is not valid JSON
    """
    if not os.path.exists(path):
        return {}

    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def apply_env_overrides(data: dict, environ=None) -> dict:
    """Return a copy of `data` with environment overrides applied."""
    environ = os.environ if environ is None else environ

    merged = dict(data)
    backup = merged.get('backup')
    merged['backup'] = dict(backup) if isinstance(backup, dict) else {}

    for variable, keys in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value is None or value == '':
            continue
        if len(keys) == 1:
            merged[keys[0]] = value
        else:
            merged[keys[0]][keys[1]] = value

    # Leave a missing "backup" section missing so validation reports it
    if not merged['backup'] and not isinstance(backup, dict):
        del merged['backup']

    return merged


def load_backup_config(path: str = None, environ=None) -> BackupConfig:
    """
    Resolve the backup configuration once at startup.

    Args:
        path: JSON config file (defaults to Config.BACKUP_CONFIG_PATH)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Immutable BackupConfig
    """
    path = path or Config.BACKUP_CONFIG_PATH
    data = apply_env_overrides(read_config_file(path), environ)
    return BackupConfig.from_dict(data)
