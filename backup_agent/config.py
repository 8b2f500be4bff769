import os


class Config:
    """Base configuration"""

    # Backup configuration document (watched for changes)
    CONFIG_FILE = os.environ.get('CONFIG_FILE') or '/config/config.yaml'

    # Artifact directory; overrides backup_dir from the YAML file when set
    BACKUP_DIR = os.environ.get('BACKUP_DIR') or None

    # Scheduler
    SCHEDULER_ENABLED = True
    SCHEDULER_TIMEZONE = os.environ.get('SCHEDULER_TIMEZONE') or os.environ.get('TZ') or 'UTC'
    CONFIG_POLL_SECONDS = int(os.environ.get('CONFIG_POLL_SECONDS', 5))

    # Status API
    HOST = os.environ.get('HOST', '0.0.0.0')
    PORT = int(os.environ.get('PORT', 8080))

    # Logging
    LOG_MAX_BYTES = 10485760  # 10MB
    LOG_BACKUP_COUNT = 10


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    CONFIG_FILE = os.path.join(DATA_DIR, 'config.yaml')
    BACKUP_DIR = os.path.join(DATA_DIR, 'backups')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = False
    SCHEDULER_ENABLED = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
