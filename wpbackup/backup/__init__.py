"""
Backup module for wpbackup.

This module handles the nightly backup run:
- Site discovery (WordPress installations under the web root)
- Packaging (content, config, database dump and log)
- Storage (S3-compatible and local)
- Execution orchestration
- Retention policy enforcement
"""

from .executor import BackupRun, SiteBackupExecutor, run_backup
from .sources import WordPressSite, discover_sites
from .compression import create_site_archive
from .storage import S3Storage, LocalStorage
from .retention import RetentionManager, RetentionPlanner, RetentionPolicy

__all__ = [
    'BackupRun',
    'SiteBackupExecutor',
    'run_backup',
    'WordPressSite',
    'discover_sites',
    'create_site_archive',
    'S3Storage',
    'LocalStorage',
    'RetentionManager',
    'RetentionPlanner',
    'RetentionPolicy'
]
