import os
import logging
from logging.handlers import RotatingFileHandler


def configure_logging(config, verbose=False):
    """Configure application logging"""

    log_file = config.LOG_FILE
    log_level = logging.DEBUG if (verbose or getattr(config, 'DEBUG', False)) else logging.INFO

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
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
    except OSError as e:
        file_error = e
    else:
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # boto3 is very chatty at DEBUG
    for noisy in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger('wpbackup')
    if file_error is not None:
        logger.warning(f"File logging disabled for {log_file}: {file_error}")
    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")
    return logger
