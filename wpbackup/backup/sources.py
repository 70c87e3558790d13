"""
WordPress site discovery.

A site is any immediate subdirectory of the web root that holds a
``wp-config.php``. Database credentials are read from that file.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional


class SourceError(Exception):
    """Raised when a site cannot be read for backup or restore."""
    pass


def _define_pattern(key: str):
    return re.compile(r"define\s*\(\s*['\"]" + key + r"['\"]\s*,\s*['\"]([^'\"]*)['\"]")


DB_NAME_PATTERN = _define_pattern('DB_NAME')
DB_USER_PATTERN = _define_pattern('DB_USER')
DB_PASSWORD_PATTERN = _define_pattern('DB_PASSWORD')
DB_HOST_PATTERN = _define_pattern('DB_HOST')
TABLE_PREFIX_PATTERN = re.compile(r"\$table_prefix\s*=\s*['\"]([^'\"]+)['\"]\s*;")


@dataclass(frozen=True)
class DatabaseCredentials:
    name: str
    user: str
    password: str = ''
    host: str = 'localhost'
    table_prefix: str = 'wp_'

    @property
    def masked_password(self) -> str:
        """Password with everything but the last five characters hidden."""
        visible = self.password[-5:]
        return '*' * (len(self.password) - len(visible)) + visible


@dataclass(frozen=True)
class WordPressSite:
    domain: str
    path: Path

    @property
    def config_path(self) -> Path:
        return self.path / 'wp-config.php'

    @property
    def content_dir(self) -> Path:
        return self.path / 'wp-content'

    @property
    def domain_prefix(self) -> str:
        """Domain up to the first dot, used to name database dumps."""
        return self.domain.split('.', 1)[0]


def discover_sites(base_dir: str) -> List[WordPressSite]:
    """
    Find WordPress installations directly under ``base_dir``.

    Args:
        base_dir: Web root (e.g. /var/www)

    Returns:
        Sites sorted by domain

    Raises:
        SourceError: If base_dir does not exist
    """
    base = Path(base_dir)
    if not base.is_dir():
        raise SourceError(f"Base directory does not exist: {base_dir}")

    return [
        WordPressSite(domain=entry.name, path=entry)
        for entry in sorted(base.iterdir())
        if entry.is_dir() and (entry / 'wp-config.php').is_file()
    ]


def _first_match(pattern, text: str) -> Optional[str]:
    match = pattern.search(text)
    return match.group(1) if match else None


def read_database_credentials(config_path) -> DatabaseCredentials:
    """
    Extract database credentials from a wp-config.php file.

    Args:
        config_path: Path to wp-config.php

    Returns:
        DatabaseCredentials (host defaults to localhost, prefix to wp_)

    Raises:
        SourceError: If the file is unreadable or DB_NAME/DB_USER are missing
    """
    try:
        text = Path(config_path).read_text(encoding='utf-8', errors='replace')
    except OSError as e:
        raise SourceError(f"Cannot read {config_path}: {e}")

    name = _first_match(DB_NAME_PATTERN, text)
    user = _first_match(DB_USER_PATTERN, text)
    if not name or not user:
        raise SourceError(f"Failed to extract database credentials from {config_path}")

    return DatabaseCredentials(
        name=name,
        user=user,
        password=_first_match(DB_PASSWORD_PATTERN, text) or '',
        host=_first_match(DB_HOST_PATTERN, text) or 'localhost',
        table_prefix=_first_match(TABLE_PREFIX_PATTERN, text) or 'wp_'
    )
