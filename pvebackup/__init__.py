import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


def configure_logging(app):
    """Configure application logging"""

    log_file = app.config['LOG_FILE']

    # Create log directory if it doesn't exist
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(message)s', '%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)

    # File handler (rotated when it exceeds LOG_MAX_BYTES)
    from pvebackup.config import config_int
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config_int(app.config, 'LOG_MAX_BYTES'),
        backupCount=config_int(app.config, 'LOG_BACKUP_COUNT')
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
        '%Y-%m-%d %H:%M:%S'
    )
    file_handler.setFormatter(file_formatter)

    # Configure package logger, replacing handlers from a previous app instance
    package_logger = logging.getLogger('pvebackup')
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(log_level)
    package_logger.addHandler(console_handler)
    package_logger.addHandler(file_handler)

    app.logger.setLevel(log_level)

    package_logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)}, file: {log_file})")


def create_app(config_name=None, overrides=None):
    """
    Flask application factory.

    The application carries configuration, logging and the 'backup' CLI
    command group.

    Args:
        config_name: 'development', 'production' or 'default' (default: FLASK_ENV)
        overrides: Optional mapping applied on top of the config class
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from pvebackup.config import config
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Configure logging
    configure_logging(app)

    # Register CLI commands
    from pvebackup.cli import backup_cli
    app.cli.add_command(backup_cli)

    return app
