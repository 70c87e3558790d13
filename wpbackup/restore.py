"""
Restore a WordPress site from its most recent remote backup.

Workflow:
1. Verify the WordPress installation and prepare a protected restore directory
2. Verify storage access and pick the backup folder
3. Check free space, download and extract the archive
4. Restore the database using the credentials of the live wp-config.php
5. Swap in the restored wp-content (the current one is moved aside)
6. Optionally optimize tables, then archive the download and write the log
"""

import os
import math
import shutil
import logging
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from wpbackup.backup.compression import archive_name_pattern, extract_archive, CompressionError
from wpbackup.backup.database import MySQLClient, DatabaseError, detect_table_prefix
from wpbackup.backup.retention import ParseError, parse_backup_unit, today_in
from wpbackup.backup.sources import read_database_credentials, SourceError
from wpbackup.backup.storage import StorageError


logger = logging.getLogger(__name__)

GIGABYTE = 1024 ** 3
HTACCESS_DENY_ALL = "Order Deny,Allow\nDeny from all\n"


class RestoreError(Exception):
    """Raised when a restore cannot proceed."""
    pass


@dataclass
class RestoreResult:
    domain: str
    status: str = 'running'
    folder: Optional[str] = None
    archive_name: Optional[str] = None
    restore_dir: Optional[str] = None
    content_backup_dir: Optional[str] = None
    prefix_mismatch: Optional[Tuple[str, str]] = None
    error_message: Optional[str] = None
    logs: List[str] = field(default_factory=list)


def find_backup_archive(storage, domain: str, folder: Optional[str] = None) -> Tuple[str, str]:
    """
    Locate the newest archive for ``domain``.

    With ``folder`` given only that folder is searched. Otherwise dated
    folders are searched newest first and the first one holding an archive
    for the domain wins.

    Returns:
        (folder, archive file name)

    Raises:
        RestoreError: If no archive is found
    """
    pattern = archive_name_pattern(domain)

    if folder is not None:
        candidates = [folder.rstrip('/')]
    else:
        units = []
        for identifier in storage.list_folders():
            try:
                units.append(parse_backup_unit(identifier))
            except ParseError:
                continue
        if not units:
            raise RestoreError("No backup directories found in the bucket")
        candidates = [unit.id for unit in sorted(units, key=lambda u: u.date, reverse=True)]

    for candidate in candidates:
        matches = sorted(
            (name for name in storage.list_folder_files(candidate) if pattern.match(name)),
            reverse=True
        )
        if matches:
            return candidate, matches[0]

    where = f"folder '{folder}'" if folder else "any backup folder"
    raise RestoreError(f"No backup file found for domain '{domain}' in {where}")


def required_space_bytes(archive_size: int, minimum_gb: int = 2) -> int:
    """Archive size plus 1 GB of extraction overhead, never below ``minimum_gb``."""
    required_gb = max(minimum_gb, math.ceil(archive_size / GIGABYTE + 1))
    return required_gb * GIGABYTE


def match_ownership(install_dir: Path, target: Path) -> Optional[Tuple[int, int]]:
    """
    Give ``target`` (recursively) the owner of wp-admin, or of the install
    directory when wp-admin is missing.

    Returns:
        The (uid, gid) applied, or None when ownership already matches
    """
    reference = install_dir / 'wp-admin'
    if not reference.exists():
        reference = install_dir
    stat = reference.stat()
    owner = (stat.st_uid, stat.st_gid)

    current = target.stat()
    if (current.st_uid, current.st_gid) == owner:
        return None

    os.chown(target, *owner)
    for root, dirs, files in os.walk(target):
        for name in dirs + files:
            os.chown(os.path.join(root, name), *owner, follow_symlinks=False)
    return owner


class RestoreExecutor:
    """
    Restores one site from remote storage.
    """

    def __init__(
        self,
        domain: str,
        config,
        storage,
        wp_base_path: Optional[str] = None,
        folder: Optional[str] = None,
        drop_tables: bool = False,
        optimize: bool = True,
        dry_run: bool = False,
        today: Optional[date] = None
    ):
        """
        Initialize restore executor.

        Args:
            domain: Site domain (directory name under the web root)
            config: Configuration class
            storage: Remote storage (S3Storage or compatible)
            wp_base_path: Web root override (defaults to config.BASE_DIR)
            folder: Restore from this backup folder instead of the newest
            drop_tables: Drop existing tables before importing the dump
            optimize: Run mysqlcheck --optimize after the import
            dry_run: Only report what would be done
            today: Date used to name the restore directory
        """
        self.domain = domain
        self.config = config
        self.storage = storage
        self.install_dir = Path(wp_base_path or config.BASE_DIR) / domain
        self.folder = folder
        self.drop_tables = drop_tables
        self.optimize = optimize
        self.dry_run = dry_run
        self.today = today or today_in(config.TIMEZONE)
        self.restore_dir = self.install_dir / f"wprestore_{self.today:%m%d%Y}"
        self.temp_dir = None
        self.logs = []

    def execute(self) -> RestoreResult:
        """
        Run the restore.

        Returns:
            RestoreResult with status 'success' or 'failed'
        """
        result = RestoreResult(domain=self.domain)
        self._log(f"=== WordPress restore for {self.domain}{' (dry run)' if self.dry_run else ''} ===")

        try:
            self._execute_workflow(result)
            result.status = 'success'
            self._log("Restore process completed!")
            self._log(f"Please verify the site functionality at: https://{self.domain}")

        except (RestoreError, SourceError, DatabaseError, CompressionError, StorageError) as e:
            result.status = 'failed'
            result.error_message = str(e)
            self._log(f"Error: {e}", level=logging.ERROR)

        finally:
            self._cleanup()
            result.logs = list(self.logs)
            self._write_log()

        return result

    def _execute_workflow(self, result: RestoreResult):
        # Step 1: Installation and restore directory
        if not self.install_dir.is_dir():
            raise RestoreError(f"WordPress installation directory not found at {self.install_dir}")
        config_path = self.install_dir / 'wp-config.php'
        if not config_path.is_file():
            raise RestoreError(f"No WordPress installation found at {self.install_dir}")

        if not self.dry_run:
            self.restore_dir.mkdir(parents=True, exist_ok=True)
            (self.restore_dir / '.htaccess').write_text(HTACCESS_DENY_ALL)
            result.restore_dir = str(self.restore_dir)
        self._log(f"Install directory: {self.install_dir}")

        # Step 2: Storage and backup selection
        self.storage.test_connection()
        self._log("Storage connection verified")

        folder, archive_name = find_backup_archive(self.storage, self.domain, self.folder)
        result.folder = folder
        result.archive_name = archive_name
        key = self.storage.folder_key(folder, archive_name)
        self._log(f"Backup selected: {folder}/{archive_name}")

        credentials = read_database_credentials(config_path)
        self._log(f"Database: {credentials.name} (user {credentials.user}, password {credentials.masked_password})")

        if self.dry_run:
            self._log(f"[Dry run] Would download and extract {key}")
            self._log(f"[Dry run] Would restore database {credentials.name}")
            self._log(f"[Dry run] Would replace wp-content in {self.install_dir}")
            return

        # Step 3: Space check, download, extract
        os.makedirs(self.config.TEMP_DIR, exist_ok=True)
        archive_size = self.storage.get_object_size(key)
        required = required_space_bytes(archive_size, self.config.RESTORE_MIN_FREE_GB)
        available = shutil.disk_usage(self.config.TEMP_DIR).free
        if available < required:
            raise RestoreError(
                f"Insufficient disk space in {self.config.TEMP_DIR}. "
                f"Available: {available / GIGABYTE:.1f}GB, Required: {required / GIGABYTE:.0f}GB"
            )
        self._log(f"Disk space check passed ({available / GIGABYTE:.1f}GB available)")

        self.temp_dir = tempfile.mkdtemp(prefix='wprestore_', dir=self.config.TEMP_DIR)
        archive_path = os.path.join(self.temp_dir, archive_name)
        self._log(f"Downloading {key}...")
        self.storage.download(key, archive_path)
        extract_dir = os.path.join(self.temp_dir, 'extracted')
        os.makedirs(extract_dir)
        extract_archive(archive_path, extract_dir)
        self._log("Download and extraction completed")

        content_src = self._find_content_dir(Path(extract_dir))
        sql_file = self._find_sql_file(Path(extract_dir))
        self._log(f"Found wp-content at {content_src} and database dump {sql_file.name}")

        # Step 4: Database
        backup_prefix = detect_table_prefix(sql_file)
        if backup_prefix and backup_prefix != credentials.table_prefix:
            result.prefix_mismatch = (credentials.table_prefix, backup_prefix)
            self._log(
                f"TABLE PREFIX MISMATCH: wp-config.php uses '{credentials.table_prefix}', "
                f"backup uses '{backup_prefix}'. Change $table_prefix in {config_path} "
                f"or the site will not work.",
                level=logging.WARNING
            )

        mysql = MySQLClient(credentials)
        mysql.check_connection()
        existing_tables = mysql.list_tables()
        if existing_tables and self.drop_tables:
            self._log(f"Deleting {len(existing_tables)} existing tables...")
            mysql.drop_tables(existing_tables)
        elif existing_tables:
            self._log("Keeping existing tables, importing over them")

        self._log("Restoring database from backup...")
        mysql.import_dump(sql_file)
        self._log("Database restore completed successfully")

        # Step 5: wp-content
        current_content = self.install_dir / 'wp-content'
        if current_content.exists():
            aside = self.restore_dir / f"wp-content_backup_{datetime.now():%Y%m%d_%H%M%S}"
            shutil.move(str(current_content), str(aside))
            result.content_backup_dir = str(aside)
            self._log(f"Existing wp-content moved to {aside}")

        shutil.copytree(content_src, current_content, symlinks=True)
        self._log("wp-content directory restored successfully")
        try:
            owner = match_ownership(self.install_dir, current_content)
            if owner:
                self._log(f"Ownership set to {owner[0]}:{owner[1]}")
        except OSError as e:
            self._log(f"Warning: could not set ownership on wp-content: {e}", level=logging.WARNING)

        # Step 6: Optimize and tidy up
        if self.optimize and mysql.list_tables():
            self._log("Optimizing database tables...")
            mysql.optimize()

        shutil.move(archive_path, str(self.restore_dir / archive_name))
        self._log(f"Backup archive kept in {self.restore_dir}")

    def _find_content_dir(self, root: Path) -> Path:
        candidates = sorted(p for p in root.rglob('wp-content') if p.is_dir())
        if not candidates:
            raise RestoreError("wp-content directory not found in extracted backup")
        return candidates[0]

    def _find_sql_file(self, root: Path) -> Path:
        candidates = sorted((p for p in root.glob('*.sql') if p.is_file()), reverse=True)
        if not candidates:
            candidates = sorted(p for p in root.rglob('*.sql') if p.is_file())
        if not candidates:
            raise RestoreError("Database file (.sql) not found in extracted backup")
        return candidates[0]

    def _cleanup(self):
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
            except OSError as e:
                self._log(f"Warning: Failed to clean up temporary files at {self.temp_dir}: {e}", level=logging.WARNING)

    def _write_log(self):
        if self.dry_run or not self.restore_dir.is_dir():
            return
        try:
            with open(self.restore_dir / 'wprestore.log', 'a', encoding='utf-8') as f:
                f.write('\n'.join(self.logs) + '\n')
        except OSError as e:
            logger.warning(f"Could not write restore log: {e}")

    def _log(self, message: str, level: int = logging.INFO):
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
