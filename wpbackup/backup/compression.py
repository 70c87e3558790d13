"""
Archive handling for site backups.

Each site backup is one gzip tarball with, at its root:
- wp-content/
- wp-config.php
- the database dump ({domain_prefix}_db_{YYYY-MM-DD}.sql)
- the per-site backup log ({domain}_backup.log)
"""

import os
import re
import tarfile
from datetime import date
from pathlib import Path

from .sources import WordPressSite


ARCHIVE_EXTENSION = '.tar.gz'


class CompressionError(Exception):
    """Raised when archive creation or extraction fails."""
    pass


def generate_archive_filename(domain: str, day: date) -> str:
    """Format: {domain}_{YYYY-MM-DD}.tar.gz"""
    return f"{domain}_{day:%Y-%m-%d}{ARCHIVE_EXTENSION}"


def generate_dump_filename(domain_prefix: str, day: date) -> str:
    """Format: {domain_prefix}_db_{YYYY-MM-DD}.sql"""
    return f"{domain_prefix}_db_{day:%Y-%m-%d}.sql"


def generate_log_filename(domain: str) -> str:
    return f"{domain}_backup.log"


def archive_name_pattern(domain: str):
    """Regex matching archive names produced for ``domain``."""
    return re.compile(r'^' + re.escape(domain) + r'_(\d{4}-\d{2}-\d{2})\.tar\.gz$')


def create_site_archive(site: WordPressSite, database_dump: str, log_file: str, output_path: str) -> str:
    """
    Package a site's content, config, dump and log into one tarball.

    Args:
        site: Site being backed up
        database_dump: Path to the SQL dump
        log_file: Path to the per-site log
        output_path: Archive path to create

    Returns:
        output_path

    Raises:
        CompressionError: If any input is missing or writing fails
    """
    members = [
        (site.content_dir, 'wp-content'),
        (site.config_path, 'wp-config.php'),
        (Path(database_dump), os.path.basename(database_dump)),
        (Path(log_file), os.path.basename(log_file)),
    ]

    for source, _ in members:
        if not source.exists():
            raise CompressionError(f"Path does not exist: {source}")

    try:
        with tarfile.open(output_path, 'w:gz') as tar:
            for source, arcname in members:
                tar.add(str(source), arcname=arcname, recursive=True)
        return output_path
    except (OSError, tarfile.TarError) as e:
        # Clean up partial archive on failure
        if os.path.exists(output_path):
            try:
                os.remove(output_path)
            except OSError:
                pass
        raise CompressionError(f"Failed to create archive: {e}")


def extract_archive(archive_path: str, dest_dir: str) -> str:
    """
    Extract a backup archive.

    Members with absolute paths, parent-directory components or links
    pointing outside ``dest_dir`` are refused.

    Returns:
        dest_dir

    Raises:
        CompressionError: If the archive is unreadable or unsafe
    """
    dest = Path(dest_dir).resolve()

    try:
        with tarfile.open(archive_path, 'r:*') as tar:
            members = tar.getmembers()
            for member in members:
                target = (dest / member.name).resolve()
                if dest != target and dest not in target.parents:
                    raise CompressionError(f"Refusing to extract {member.name}: outside {dest_dir}")
                if member.issym() or member.islnk():
                    link_base = target.parent if member.issym() else dest
                    link_target = (link_base / member.linkname).resolve()
                    if dest not in link_target.parents:
                        raise CompressionError(f"Refusing to extract link {member.name} -> {member.linkname}")
            tar.extractall(str(dest), members=members)
        return dest_dir
    except (OSError, tarfile.TarError) as e:
        raise CompressionError(f"Failed to extract {archive_path}: {e}")


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
