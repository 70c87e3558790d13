"""
Unit tests for site cleanup (wpbackup/cleanup.py).
"""

from pathlib import Path

import pytest

from wpbackup.cleanup import SiteCleanup, CleanupError


@pytest.fixture
def leftovers(config, wp_site):
    base = Path(config.BASE_DIR)
    restore_dir = base / 'wprestore_example.com_03152024'
    restore_dir.mkdir()
    (restore_dir / 'wprestore.log').write_text('log')
    (base / 'wprestore_blog.org_03152024').mkdir()

    local = Path(config.LOCAL_BACKUP_DIR)
    local.mkdir(parents=True)
    (local / 'example.com_2024-03-15.tar.gz').write_bytes(b'x' * 2048)
    (local / 'blog.org_2024-03-15.tar.gz').write_bytes(b'x')
    return base, local


def make_cleanup(config, domain='example.com', **kwargs):
    return SiteCleanup(domain, base_dir=config.BASE_DIR, local_backup_dir=config.LOCAL_BACKUP_DIR, **kwargs)


class TestSiteCleanup:
    """Test removal of a site's leftovers."""

    def test_removes_site_restore_dirs_and_archives(self, config, leftovers):
        base, local = leftovers

        result = make_cleanup(config).execute()

        assert not (base / 'example.com').exists()
        assert not (base / 'wprestore_example.com_03152024').exists()
        assert not (local / 'example.com_2024-03-15.tar.gz').exists()
        assert len(result.removed) == 3
        assert result.bytes_freed >= 2048

    def test_leaves_other_sites(self, config, leftovers, make_site):
        base, local = leftovers
        make_site('blog.org')

        make_cleanup(config).execute()

        assert (base / 'blog.org').exists()
        assert (base / 'wprestore_blog.org_03152024').exists()
        assert (local / 'blog.org_2024-03-15.tar.gz').exists()

    def test_dry_run_removes_nothing(self, config, leftovers):
        base, local = leftovers

        result = make_cleanup(config, dry_run=True).execute()

        assert result.dry_run
        assert len(result.removed) == 3
        assert (base / 'example.com').exists()
        assert (local / 'example.com_2024-03-15.tar.gz').exists()

    def test_nothing_to_remove(self, config):
        result = make_cleanup(config, domain='gone.example').execute()

        assert result.removed == []
        assert result.bytes_freed == 0

    def test_without_local_backup_dir(self, config, wp_site):
        result = SiteCleanup('example.com', base_dir=config.BASE_DIR).execute()

        assert result.removed == [str(wp_site)]

    @pytest.mark.parametrize('domain', ['', '.', '..', '../etc', 'a/b'])
    def test_rejects_invalid_domain(self, config, domain):
        with pytest.raises(CleanupError, match="Invalid domain"):
            make_cleanup(config, domain=domain)
