"""
Unit tests for configuration and logging setup (wpbackup/config.py, wpbackup/__init__.py).
"""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from wpbackup import configure_logging
from wpbackup.config import Config, DevelopmentConfig, ProductionConfig, _env_int, get_config


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    saved_handlers = list(root.handlers)
    saved_level = root.level
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)


class TestConfig:
    """Test configuration defaults and lookup."""

    def test_defaults(self):
        assert Config.RETENTION_DAILY_DAYS == 7
        assert Config.RETENTION_WEEKLY_DAYS == 28
        assert Config.RETENTION_MONTHLY_DAYS == 90
        assert Config.LOCAL_RETENTION_DAYS == 1
        assert Config.SCHEDULE_CRON == '0 2 * * *'

    def test_get_config_by_name(self):
        assert get_config('development') is DevelopmentConfig
        assert get_config('production') is ProductionConfig

    def test_get_config_from_environment(self, monkeypatch):
        monkeypatch.setenv('WPBACKUP_ENV', 'development')

        assert get_config() is DevelopmentConfig

    def test_get_config_default(self, monkeypatch):
        monkeypatch.delenv('WPBACKUP_ENV', raising=False)

        assert get_config() is ProductionConfig

    def test_get_config_unknown(self):
        with pytest.raises(ValueError, match="Unknown configuration: staging"):
            get_config('staging')

    def test_development_paths(self):
        assert DevelopmentConfig.DEBUG
        assert DevelopmentConfig.BASE_DIR.endswith('www')
        assert DevelopmentConfig.LOG_FILE.endswith('wpbackup.log')

    def test_env_int(self, monkeypatch):
        monkeypatch.setenv('WPBACKUP_TEST_INT', '14')
        assert _env_int('WPBACKUP_TEST_INT', 7) == 14

        monkeypatch.setenv('WPBACKUP_TEST_INT', '')
        assert _env_int('WPBACKUP_TEST_INT', 7) == 7

        monkeypatch.delenv('WPBACKUP_TEST_INT')
        assert _env_int('WPBACKUP_TEST_INT', 7) == 7


class TestConfigureLogging:
    """Test logging setup."""

    def test_console_and_file_handlers(self, config, restore_root_logger):
        logger = configure_logging(config)

        handlers = restore_root_logger.handlers
        assert any(isinstance(h, RotatingFileHandler) for h in handlers)
        assert restore_root_logger.level == logging.INFO
        assert logger.name == 'wpbackup'

        file_handler = next(h for h in handlers if isinstance(h, RotatingFileHandler))
        assert file_handler.maxBytes == 10485760
        assert file_handler.backupCount == 10

    def test_verbose_enables_debug(self, config, restore_root_logger):
        configure_logging(config, verbose=True)

        assert restore_root_logger.level == logging.DEBUG
        assert logging.getLogger('botocore').level == logging.WARNING

    def test_unwritable_log_file_falls_back_to_console(self, config, tmp_path, restore_root_logger):
        blocker = tmp_path / 'blocker'
        blocker.write_text('a file, not a directory')
        config.LOG_FILE = str(blocker / 'wpbackup.log')

        configure_logging(config)

        assert not any(isinstance(h, RotatingFileHandler) for h in restore_root_logger.handlers)
        assert restore_root_logger.handlers
