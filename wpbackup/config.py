import os
import tempfile


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


class Config:
    """Base configuration"""

    # WordPress installations and local copies
    BASE_DIR = os.environ.get('BASE_DIR') or '/var/www'
    LOCAL_BACKUP_DIR = os.environ.get('LOCAL_BACKUP_DIR') or '/var/backups/wordpress_backups'
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()
    LOCAL_RETENTION_DAYS = _env_int('LOCAL_RETENTION_DAYS', 1)

    # Logging
    DEBUG = False
    LOG_FILE = os.environ.get('LOG_FILE') or '/var/log/wpbackup.log'

    # S3-compatible object storage
    S3_BUCKET = os.environ.get('S3_BUCKET')
    S3_PREFIX = os.environ.get('S3_PREFIX', '')
    S3_REGION = os.environ.get('S3_REGION') or 'us-east-1'
    S3_ENDPOINT_URL = os.environ.get('S3_ENDPOINT_URL')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')

    # Retention windows (days)
    TIMEZONE = os.environ.get('TIMEZONE') or 'UTC'
    RETENTION_DAILY_DAYS = _env_int('RETENTION_DAILY_DAYS', 7)
    RETENTION_WEEKLY_DAYS = _env_int('RETENTION_WEEKLY_DAYS', 28)
    RETENTION_MONTHLY_DAYS = _env_int('RETENTION_MONTHLY_DAYS', 90)
    RETENTION_DELETE_WORKERS = _env_int('RETENTION_DELETE_WORKERS', 1)

    # Restore
    RESTORE_MIN_FREE_GB = _env_int('RESTORE_MIN_FREE_GB', 2)

    # Scheduler
    SCHEDULE_CRON = os.environ.get('SCHEDULE_CRON') or '0 2 * * *'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Keep everything under the project's data directory
    PROJECT_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(PROJECT_DIR, 'data')
    BASE_DIR = os.path.join(DATA_DIR, 'www')
    LOCAL_BACKUP_DIR = os.path.join(DATA_DIR, 'local_backups')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_FILE = os.path.join(DATA_DIR, 'logs', 'wpbackup.log')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': ProductionConfig
}


def get_config(config_name=None):
    """
    Resolve a configuration class by name.

    Falls back to the WPBACKUP_ENV environment variable, then to production.

    Raises:
        ValueError: If the name is not a known configuration
    """
    if config_name is None:
        config_name = os.environ.get('WPBACKUP_ENV', 'default')

    try:
        return config[config_name]
    except KeyError:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {sorted(config.keys())}"
        )
