"""
Backup executor - orchestrates the nightly backup run.

Per site:
1. Read database credentials from wp-config.php
2. Dump the database
3. Write the site log and package content, config, dump and log
4. Upload into today's folder and verify the upload
5. Keep a local copy
6. Cleanup temporary files

Per run: prune old local copies, back up every site, then run the
retention pass over the remote folders.
"""

import os
import shutil
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import List, Optional

from .database import MySQLClient, DatabaseError
from .sources import WordPressSite, discover_sites, read_database_credentials, SourceError
from .compression import (
    create_site_archive,
    generate_archive_filename,
    generate_dump_filename,
    generate_log_filename,
    get_archive_size,
    CompressionError
)
from .storage import LocalStorage, StorageError, create_s3_storage
from .retention import RetentionSummary, enforce_retention_policy, folder_name_for, today_in


logger = logging.getLogger(__name__)


@dataclass
class SiteBackupResult:
    domain: str
    status: str = 'running'
    archive_name: Optional[str] = None
    remote_key: Optional[str] = None
    local_path: Optional[str] = None
    file_size_bytes: Optional[int] = None
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)


@dataclass
class BackupRunResult:
    run_date: date
    folder: str
    dry_run: bool = False
    sites: List[SiteBackupResult] = field(default_factory=list)
    retention: Optional[RetentionSummary] = None
    errors: List[str] = field(default_factory=list)

    @property
    def failed_sites(self) -> List[SiteBackupResult]:
        return [site for site in self.sites if site.status != 'success']

    @property
    def ok(self) -> bool:
        """No site failed, no run-level error and no failed deletion."""
        retention_failed = self.retention is not None and self.retention.failed > 0
        return not self.failed_sites and not self.errors and not retention_failed


class SiteBackupExecutor:
    """
    Backs up one WordPress site into today's remote folder.
    """

    def __init__(
        self,
        site: WordPressSite,
        folder: str,
        run_date: date,
        storage,
        local_storage: Optional[LocalStorage] = None,
        temp_root: Optional[str] = None,
        dry_run: bool = False
    ):
        """
        Initialize site backup executor.

        Args:
            site: Site to back up
            folder: Remote folder for today's backups
            run_date: Date stamped on the dump and archive names
            storage: Remote storage (S3Storage or compatible)
            local_storage: Where to keep a local copy (None to skip)
            temp_root: Parent directory for the working directory
            dry_run: Dump and package but don't upload or copy
        """
        self.site = site
        self.folder = folder
        self.run_date = run_date
        self.storage = storage
        self.local_storage = local_storage
        self.temp_root = temp_root
        self.dry_run = dry_run
        self.temp_dir = None
        self.archive_path = None
        self.logs = []

    def execute(self) -> SiteBackupResult:
        """
        Run the backup for the site. Never raises; failures, including
        filesystem errors, are recorded on the result instead.
        """
        result = SiteBackupResult(domain=self.site.domain)
        self._log(f"Processing site: {self.site.domain}")

        try:
            self._execute_workflow(result)
            result.status = 'success'
            self._log(f"Backup process for {self.site.domain} completed")

        except (SourceError, DatabaseError, CompressionError, StorageError) as e:
            result.status = 'failed'
            result.error_message = str(e)
            self._log(f"Backup failed for {self.site.domain}: {e}", level=logging.ERROR)

        except Exception as e:
            result.status = 'failed'
            result.error_message = str(e)
            self._log(f"Backup failed for {self.site.domain}: {e}", level=logging.ERROR)
            logger.exception(f"Unexpected error backing up {self.site.domain}")

        finally:
            self._cleanup()
            result.logs = list(self.logs)

        return result

    def _execute_workflow(self, result: SiteBackupResult):
        self.temp_dir = tempfile.mkdtemp(prefix='wpbackup_', dir=self.temp_root)

        credentials = read_database_credentials(self.site.config_path)
        self._log(f"Found database: {credentials.name}")

        if not self.site.content_dir.is_dir():
            raise SourceError(f"wp-content directory not found at {self.site.content_dir}")

        # Database dump
        dump_path = os.path.join(
            self.temp_dir,
            generate_dump_filename(self.site.domain_prefix, self.run_date)
        )
        self._log("Creating database dump...")
        MySQLClient(credentials).dump(dump_path)
        self._log(f"Database dump successful ({os.path.getsize(dump_path) / 1024 / 1024:.2f} MB)")

        # Archive (the site log goes in as it stands at this point)
        archive_name = generate_archive_filename(self.site.domain, self.run_date)
        self.archive_path = os.path.join(self.temp_dir, archive_name)
        self._log("Creating backup archive...")
        log_path = self._write_site_log()
        create_site_archive(self.site, dump_path, log_path, self.archive_path)

        result.archive_name = archive_name
        result.file_size_bytes = get_archive_size(self.archive_path)
        self._log(f"Archive created: {archive_name} ({result.file_size_bytes / 1024 / 1024:.2f} MB)")

        if self.dry_run:
            self._log(f"[Dry run] Would upload {archive_name} to {self.folder}")
            return

        # Upload and verify
        self._log(f"Uploading to {self.folder}...")
        key = self.storage.upload(self.archive_path, self.folder)
        if not self.storage.object_exists(key):
            raise StorageError(f"Failed to verify upload of {key}")
        result.remote_key = key
        self._log(f"Successfully uploaded to {key}")

        # Local copy only once the remote copy is confirmed
        if self.local_storage is not None:
            result.local_path = self.local_storage.store(self.archive_path)
            self._log(f"Keeping local copy in {self.local_storage.base_path}")

    def _write_site_log(self) -> str:
        log_path = os.path.join(self.temp_dir, generate_log_filename(self.site.domain))
        header = [
            f"WordPress Backup Log for {self.site.domain} - {datetime.now():%Y-%m-%d %H:%M:%S}",
            '-' * 46,
        ]
        with open(log_path, 'w', encoding='utf-8') as f:
            f.write('\n'.join(header + self.logs) + '\n')
        return log_path

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: Level for the application log
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, f"[{self.site.domain}] {message}")


class BackupRun:
    """
    One full backup invocation: every site, then retention.
    """

    def __init__(
        self,
        config,
        storage=None,
        local_storage: Optional[LocalStorage] = None,
        dry_run: bool = False,
        skip_retention: bool = False,
        today: Optional[date] = None
    ):
        self.config = config
        self.storage = storage if storage is not None else create_s3_storage(config)
        if local_storage is None and config.LOCAL_BACKUP_DIR:
            local_storage = LocalStorage(config.LOCAL_BACKUP_DIR)
        self.local_storage = local_storage
        self.dry_run = dry_run
        self.skip_retention = skip_retention
        self.today = today or today_in(config.TIMEZONE)

    def execute(self) -> BackupRunResult:
        folder = folder_name_for(self.today)
        result = BackupRunResult(run_date=self.today, folder=folder, dry_run=self.dry_run)
        logger.info(f"Backup process started for {folder}{' (dry run)' if self.dry_run else ''}")

        if self.local_storage is not None and not self.dry_run:
            logger.info("Cleaning up old local backups...")
            try:
                self.local_storage.prune(self.config.LOCAL_RETENTION_DAYS)
            except StorageError as e:
                logger.error(f"Local cleanup failed: {e}")
                result.errors.append(f"Local cleanup failed: {e}")

        try:
            sites = discover_sites(self.config.BASE_DIR)
        except SourceError as e:
            logger.error(str(e))
            result.errors.append(str(e))
            sites = []

        logger.info(f"Found {len(sites)} WordPress site(s) in {self.config.BASE_DIR}")
        os.makedirs(self.config.TEMP_DIR, exist_ok=True)

        for site in sites:
            executor = SiteBackupExecutor(
                site,
                folder=folder,
                run_date=self.today,
                storage=self.storage,
                local_storage=None if self.dry_run else self.local_storage,
                temp_root=self.config.TEMP_DIR,
                dry_run=self.dry_run
            )
            result.sites.append(executor.execute())

        if self.skip_retention:
            logger.info("Retention pass skipped")
        else:
            try:
                result.retention = enforce_retention_policy(
                    self.storage, self.config, today=self.today, dry_run=self.dry_run
                )
            except StorageError as e:
                logger.error(f"Retention pass failed: {e}")
                result.errors.append(f"Retention pass failed: {e}")

        logger.info(
            f"Backup process finished: {len(result.sites) - len(result.failed_sites)} succeeded, "
            f"{len(result.failed_sites)} failed"
        )
        return result


def run_backup(config, dry_run: bool = False, skip_retention: bool = False) -> BackupRunResult:
    """
    Execute a full backup run with the given configuration.

    This function is what the scheduler calls every night.
    """
    return BackupRun(config, dry_run=dry_run, skip_retention=skip_retention).execute()
