"""
Shared pytest fixtures for wpbackup tests.

This module provides fixtures for:
- Configuration pointing at temporary directories
- WordPress site trees (wp-config.php, wp-content)
- Mocked S3 via moto
- An in-memory storage double for retention and executor tests
- Sample backup archives
"""

import os
import tarfile
from pathlib import Path

import pytest
import boto3
from moto import mock_aws

from wpbackup.config import Config
from wpbackup.backup.storage import S3Storage, StorageError


WP_CONFIG_TEMPLATE = """<?php
define( 'DB_NAME', '{name}' );
define( 'DB_USER', '{user}' );
define( 'DB_PASSWORD', '{password}' );
define( 'DB_HOST', 'localhost' );
$table_prefix = '{prefix}';
"""


def write_site(base_dir, domain, name='wp_db', user='wp_user', password='s3cret-pass', prefix='wp_'):
    """Create a minimal WordPress installation under base_dir."""
    site_dir = base_dir / domain
    (site_dir / 'wp-content' / 'uploads').mkdir(parents=True)
    (site_dir / 'wp-content' / 'uploads' / 'image.txt').write_text('pixels')
    (site_dir / 'wp-admin').mkdir()
    (site_dir / 'wp-config.php').write_text(
        WP_CONFIG_TEMPLATE.format(name=name, user=user, password=password, prefix=prefix)
    )
    return site_dir


@pytest.fixture
def config(tmp_path):
    """
    Configuration class rooted in tmp_path.

    Subclassed per test so attribute overrides never leak between tests.
    """
    class TestConfig(Config):
        BASE_DIR = str(tmp_path / 'www')
        LOCAL_BACKUP_DIR = str(tmp_path / 'local_backups')
        TEMP_DIR = str(tmp_path / 'temp')
        LOG_FILE = str(tmp_path / 'logs' / 'wpbackup.log')
        S3_BUCKET = 'test-bucket'
        S3_PREFIX = ''
        S3_REGION = 'us-east-1'
        S3_ENDPOINT_URL = None
        AWS_ACCESS_KEY_ID = 'testing'
        AWS_SECRET_ACCESS_KEY = 'testing'
        TIMEZONE = 'UTC'
        RETENTION_DAILY_DAYS = 7
        RETENTION_WEEKLY_DAYS = 28
        RETENTION_MONTHLY_DAYS = 90
        RETENTION_DELETE_WORKERS = 1
        LOCAL_RETENTION_DAYS = 1
        RESTORE_MIN_FREE_GB = 0

    (tmp_path / 'www').mkdir()
    return TestConfig


@pytest.fixture
def wp_site(config, tmp_path):
    """A single WordPress site named example.com."""
    return write_site(tmp_path / 'www', 'example.com')


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def s3_storage(mock_s3):
    return S3Storage(
        bucket_name='test-bucket',
        access_key='testing',
        secret_key='testing',
        region='us-east-1'
    )


class FakeStorage:
    """
    In-memory stand-in for S3Storage.

    ``folders`` maps folder name -> {file name: bytes}. Folders listed in
    ``failing`` raise StorageError on deletion.
    """

    def __init__(self, folders=None, failing=()):
        self.folders = {name: dict(files) for name, files in (folders or {}).items()}
        self.failing = set(failing)
        self.deleted = []
        self.uploaded = []

    def list_folders(self):
        return list(self.folders)

    def list_folder_files(self, folder):
        return list(self.folders.get(folder, {}))

    def delete_folder(self, folder):
        if folder in self.failing:
            raise StorageError(f"Access denied deleting {folder}")
        self.folders.pop(folder, None)
        self.deleted.append(folder)
        return 1

    def folder_key(self, folder, filename=''):
        return f"{folder}/{filename}"

    def upload(self, local_path, folder):
        name = os.path.basename(local_path)
        with open(local_path, 'rb') as f:
            self.folders.setdefault(folder, {})[name] = f.read()
        self.uploaded.append((folder, name))
        return self.folder_key(folder, name)

    def object_exists(self, key):
        folder, _, name = key.partition('/')
        return name in self.folders.get(folder, {})

    def get_object_size(self, key):
        folder, _, name = key.partition('/')
        return len(self.folders[folder][name])

    def download(self, key, local_path):
        folder, _, name = key.partition('/')
        with open(local_path, 'wb') as f:
            f.write(self.folders[folder][name])
        return local_path

    def test_connection(self):
        return True


@pytest.fixture
def fake_storage():
    return FakeStorage()


def build_backup_archive(tmp_path, domain='example.com', day='2024-03-15', sql=None):
    """
    Build an archive laid out like the ones the backup run produces.

    Returns:
        (archive file name, archive bytes)
    """
    staging = tmp_path / f'staging_{domain}_{day}'
    (staging / 'wp-content' / 'themes').mkdir(parents=True)
    (staging / 'wp-content' / 'themes' / 'style.css').write_text('body {}')
    (staging / 'wp-config.php').write_text('<?php // backed up config')
    prefix = domain.split('.')[0]
    (staging / f'{prefix}_db_{day}.sql').write_text(
        sql or "CREATE TABLE `wp_commentmeta` (id int);\nCREATE TABLE `wp_options` (id int);\n"
    )
    (staging / f'{domain}_backup.log').write_text('log')

    name = f'{domain}_{day}.tar.gz'
    archive = tmp_path / name
    with tarfile.open(archive, 'w:gz') as tar:
        for child in sorted(staging.iterdir()):
            tar.add(child, arcname=child.name)
    return name, archive.read_bytes()


@pytest.fixture
def make_site(config):
    """Factory creating additional sites under config.BASE_DIR."""

    def _make(domain, **kwargs):
        return write_site(Path(config.BASE_DIR), domain, **kwargs)
    return _make


@pytest.fixture
def make_archive(tmp_path):
    """Factory returning (name, bytes) of a backup archive."""
    def _make(domain='example.com', day='2024-03-15', sql=None):
        return build_backup_archive(tmp_path, domain=domain, day=day, sql=sql)
    return _make


@pytest.fixture
def storage_factory():
    """The FakeStorage class, for tests that need pre-populated folders."""
    return FakeStorage
