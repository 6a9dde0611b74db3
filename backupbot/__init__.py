import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(debug=False, log_dir='./logs', app=None):
    """Configure process logging"""

    # Create logs directory if it doesn't exist
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if debug else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'backupbot.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10,
        encoding='utf-8'
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Configure Flask app logger
    if app is not None:
        app.logger.setLevel(log_level)

    logging.getLogger(__name__).info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(backup_scheduler=None, config_name=None):
    """Flask application factory for the status endpoint"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('BACKUPBOT_ENV', 'production')

    from backupbot.config import config
    app.config.from_object(config[config_name])

    # Scheduler is read by the status routes
    app.extensions['backup_scheduler'] = backup_scheduler

    from backupbot.routes import status_routes
    app.register_blueprint(status_routes.bp)

    return app
