"""
Removal of a deleted WordPress site's leftovers.

Removes the site directory, any restore directories created for it and its
local backup archives. Remote backups are left to the retention pass.
"""

import os
import shutil
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from wpbackup.backup.storage import LocalStorage, StorageError


logger = logging.getLogger(__name__)


class CleanupError(Exception):
    """Raised when site leftovers cannot be removed."""
    pass


@dataclass
class CleanupResult:
    domain: str
    dry_run: bool = False
    removed: List[str] = field(default_factory=list)
    bytes_freed: int = 0


def _tree_size(path: Path) -> int:
    if path.is_file():
        return path.stat().st_size
    total = 0
    for root, _, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def _format_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024 or unit == 'GB':
            return f"{size:.1f}{unit}"
        size /= 1024


class SiteCleanup:
    """Removes a site's directory, restore directories and local archives."""

    def __init__(self, domain: str, base_dir: str, local_backup_dir: str = None, dry_run: bool = False):
        if not domain or '/' in domain or domain in ('.', '..'):
            raise CleanupError(f"Invalid domain: {domain!r}")
        self.domain = domain
        self.base_dir = Path(base_dir)
        self.local_backup_dir = local_backup_dir
        self.dry_run = dry_run

    def execute(self) -> CleanupResult:
        result = CleanupResult(domain=self.domain, dry_run=self.dry_run)
        logger.info(f"Starting cleanup for domain: {self.domain}{' (dry run)' if self.dry_run else ''}")

        site_dir = self.base_dir / self.domain
        if site_dir.is_dir():
            self._remove(site_dir, result)
        else:
            logger.info(f"Site directory not found at {site_dir}")

        for restore_dir in sorted(self.base_dir.glob('wprestore_*')):
            if restore_dir.is_dir() and self.domain.lower() in restore_dir.name.lower():
                self._remove(restore_dir, result)

        if self.local_backup_dir and os.path.isdir(self.local_backup_dir):
            try:
                archives = LocalStorage(self.local_backup_dir).list_files(self.domain)
            except StorageError as e:
                raise CleanupError(str(e))
            if not archives:
                logger.info(f"No backup files found for {self.domain}")
            for archive in archives:
                self._remove(Path(archive['path']), result)

        verb = 'Would free' if self.dry_run else 'Freed'
        logger.info(f"Cleanup for {self.domain} complete. {verb} approximately {_format_size(result.bytes_freed)}")
        return result

    def _remove(self, path: Path, result: CleanupResult):
        size = _tree_size(path)
        if self.dry_run:
            logger.info(f"[Dry run] Would remove {path} ({_format_size(size)})")
        else:
            try:
                if path.is_dir():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as e:
                raise CleanupError(f"Failed to remove {path}: {e}")
            logger.info(f"Removed {path} ({_format_size(size)})")
        result.removed.append(str(path))
        result.bytes_freed += size
