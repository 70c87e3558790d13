"""
Unit tests for site discovery (wpbackup/backup/sources.py).

Tests discover_sites and read_database_credentials.
"""

from pathlib import Path

import pytest

from wpbackup.backup.sources import (
    DatabaseCredentials,
    WordPressSite,
    discover_sites,
    read_database_credentials,
    SourceError
)


class TestDiscoverSites:
    """Test WordPress site discovery."""

    def test_discovers_sites_sorted(self, config, make_site):
        make_site('zeta.net')
        make_site('alpha.org')

        sites = discover_sites(config.BASE_DIR)

        assert [site.domain for site in sites] == ['alpha.org', 'zeta.net']
        assert sites[0].path == Path(config.BASE_DIR) / 'alpha.org'

    def test_skips_directories_without_wp_config(self, config, make_site):
        make_site('example.com')
        (Path(config.BASE_DIR) / 'html').mkdir()
        (Path(config.BASE_DIR) / 'README.txt').write_text('not a site')

        sites = discover_sites(config.BASE_DIR)

        assert [site.domain for site in sites] == ['example.com']

    def test_empty_base_dir(self, config):
        assert discover_sites(config.BASE_DIR) == []

    def test_missing_base_dir(self, tmp_path):
        with pytest.raises(SourceError, match="does not exist"):
            discover_sites(str(tmp_path / 'missing'))


class TestWordPressSite:
    """Test site path helpers."""

    def test_paths(self, tmp_path):
        site = WordPressSite(domain='blog.example.com', path=tmp_path / 'blog.example.com')

        assert site.config_path == tmp_path / 'blog.example.com' / 'wp-config.php'
        assert site.content_dir == tmp_path / 'blog.example.com' / 'wp-content'
        assert site.domain_prefix == 'blog'


class TestReadDatabaseCredentials:
    """Test wp-config.php parsing."""

    def test_reads_credentials(self, wp_site):
        creds = read_database_credentials(wp_site / 'wp-config.php')

        assert creds.name == 'wp_db'
        assert creds.user == 'wp_user'
        assert creds.password == 's3cret-pass'
        assert creds.host == 'localhost'
        assert creds.table_prefix == 'wp_'

    def test_reads_custom_prefix(self, make_site):
        site_dir = make_site('shop.example.com', name='shop', user='shopper', prefix='shop_')

        creds = read_database_credentials(site_dir / 'wp-config.php')

        assert creds.name == 'shop'
        assert creds.user == 'shopper'
        assert creds.table_prefix == 'shop_'

    def test_compact_define_syntax(self, tmp_path):
        config_file = tmp_path / 'wp-config.php'
        config_file.write_text(
            '<?php\n'
            'define("DB_NAME","db1");\n'
            'define("DB_USER","u1");\n'
            'define("DB_HOST","db.internal:3306");\n'
            '$table_prefix="abc_";\n'
        )

        creds = read_database_credentials(config_file)

        assert creds.name == 'db1'
        assert creds.user == 'u1'
        assert creds.password == ''
        assert creds.host == 'db.internal:3306'
        assert creds.table_prefix == 'abc_'

    def test_defaults_when_optional_values_missing(self, tmp_path):
        config_file = tmp_path / 'wp-config.php'
        config_file.write_text("<?php define('DB_NAME', 'db'); define('DB_USER', 'user');")

        creds = read_database_credentials(config_file)

        assert creds.host == 'localhost'
        assert creds.table_prefix == 'wp_'

    def test_missing_name(self, tmp_path):
        config_file = tmp_path / 'wp-config.php'
        config_file.write_text("<?php define('DB_USER', 'user');")

        with pytest.raises(SourceError, match="Failed to extract database credentials"):
            read_database_credentials(config_file)

    def test_unreadable_file(self, tmp_path):
        with pytest.raises(SourceError, match="Cannot read"):
            read_database_credentials(tmp_path / 'missing.php')

    def test_masked_password(self):
        assert DatabaseCredentials('db', 'u', password='supersecret').masked_password == '******ecret'
        assert DatabaseCredentials('db', 'u', password='abc').masked_password == 'abc'
        assert DatabaseCredentials('db', 'u').masked_password == ''
