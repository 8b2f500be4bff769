import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask


# Handlers installed by configure_logging, replaced on reconfiguration
_log_handlers = []


def configure_logging(log_settings, app=None, max_bytes=10485760, backup_count=10):
    """
    Configure process logging from the logging section of the settings.

    Safe to call again after a config reload; previously installed handlers
    are replaced.
    """
    global _log_handlers

    log_level = log_settings.level_number

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    handlers = [console_handler]

    # File handler
    file_error = None
    try:
        log_dir = os.path.dirname(os.path.abspath(log_settings.file))
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_settings.file,
            maxBytes=max_bytes,
            backupCount=backup_count
        )
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)
    except OSError as e:
        file_error = e

    root = logging.getLogger()
    for handler in _log_handlers:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)
    _log_handlers = handlers

    if app is not None:
        app.logger.setLevel(log_level)

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.warning(f"Log file {log_settings.file} unavailable, logging to console only: {file_error}")
    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, overrides=None):
    """Flask application factory for the status API and scheduler"""

    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('BACKUP_AGENT_ENV', 'production')

    from backup_agent.config import config
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # Load the backup settings snapshot
    from backup_agent.settings import SettingsStore, ensure_config_file

    ensure_config_file(app.config['CONFIG_FILE'])
    store = SettingsStore(app.config['CONFIG_FILE'], backup_dir=app.config['BACKUP_DIR'])
    settings = store.load()
    app.extensions['settings_store'] = store

    # Configure logging
    configure_logging(
        settings.logging,
        app,
        max_bytes=app.config['LOG_MAX_BYTES'],
        backup_count=app.config['LOG_BACKUP_COUNT']
    )

    # Ensure the artifact directory exists
    os.makedirs(settings.backup_dir, exist_ok=True)

    # Register blueprints
    from backup_agent.routes import status_routes
    app.register_blueprint(status_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    if app.config['SCHEDULER_ENABLED']:
        from backup_agent.scheduler import init_scheduler, start_scheduler, stop_scheduler
        import atexit

        app.logger.info("Initializing scheduler...")
        init_scheduler(
            store,
            timezone=app.config['SCHEDULER_TIMEZONE'],
            poll_seconds=app.config['CONFIG_POLL_SECONDS']
        )
        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler disabled for this configuration")

    return app
