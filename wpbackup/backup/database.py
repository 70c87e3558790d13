"""
Thin wrapper around the MySQL command-line clients.

The password is handed over through MYSQL_PWD so it never shows up in the
process list.
"""

import os
import re
import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from .sources import DatabaseCredentials


logger = logging.getLogger(__name__)

CREATE_TABLE_PATTERN = re.compile(r"CREATE TABLE `(\w+)`")
PREFIX_SCAN_LINES = 5000


class DatabaseError(Exception):
    """Raised when a MySQL client command fails."""
    pass


class MySQLClient:
    """Runs mysqldump, mysql and mysqlcheck for one database."""

    def __init__(self, credentials: DatabaseCredentials):
        self.credentials = credentials

    def _env(self):
        env = os.environ.copy()
        env['MYSQL_PWD'] = self.credentials.password
        return env

    def _base_args(self, program: str) -> List[str]:
        return [program, '-h', self.credentials.host, '-u', self.credentials.user]

    def _run(self, args: List[str], stdin=None, stdout=None) -> subprocess.CompletedProcess:
        logger.debug(f"Running {args[0]} for database {self.credentials.name}")
        try:
            result = subprocess.run(
                args,
                stdin=stdin,
                stdout=stdout if stdout is not None else subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._env(),
                text=stdout is None,
                check=False
            )
        except FileNotFoundError:
            raise DatabaseError(f"{args[0]} is not installed")
        except OSError as e:
            raise DatabaseError(f"Failed to run {args[0]}: {e}")

        if result.returncode != 0:
            stderr = result.stderr.decode(errors='replace') if isinstance(result.stderr, bytes) else result.stderr
            raise DatabaseError(f"{args[0]} exited with {result.returncode}: {(stderr or '').strip()}")
        return result

    def dump(self, output_path) -> str:
        """
        Dump the database to ``output_path``.

        Raises:
            DatabaseError: If mysqldump fails
        """
        args = self._base_args('mysqldump') + ['--no-tablespaces', self.credentials.name]
        with open(output_path, 'wb') as out:
            self._run(args, stdout=out)
        return str(output_path)

    def check_connection(self):
        self._run(self._base_args('mysql') + ['-e', f"USE `{self.credentials.name}`"])

    def list_tables(self) -> List[str]:
        result = self._run(self._base_args('mysql') + ['-N', '-e', 'SHOW TABLES', self.credentials.name])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def drop_tables(self, tables: List[str]):
        """Drop the given tables with foreign key checks disabled."""
        if not tables:
            return
        statements = ['SET FOREIGN_KEY_CHECKS=0;']
        statements += [f"DROP TABLE IF EXISTS `{table}`;" for table in tables]
        statements.append('SET FOREIGN_KEY_CHECKS=1;')
        self._run(self._base_args('mysql') + [self.credentials.name, '-e', ' '.join(statements)])

    def import_dump(self, sql_path):
        """
        Load a SQL dump into the database.

        Raises:
            DatabaseError: If mysql fails
        """
        with open(sql_path, 'rb') as sql_file:
            self._run(self._base_args('mysql') + [self.credentials.name], stdin=sql_file, stdout=subprocess.DEVNULL)

    def optimize(self) -> str:
        result = self._run(self._base_args('mysqlcheck') + ['--auto-repair', '--optimize', self.credentials.name])
        return result.stdout


def detect_table_prefix(sql_path) -> Optional[str]:
    """
    Guess the table prefix used in a WordPress dump.

    Looks for the core ``options`` table among the first CREATE TABLE
    statements and returns what precedes it (e.g. ``wp_``).
    """
    first_table = None
    with Path(sql_path).open('r', encoding='utf-8', errors='replace') as f:
        for line_number, line in enumerate(f):
            if line_number >= PREFIX_SCAN_LINES:
                break
            match = CREATE_TABLE_PATTERN.search(line)
            if not match:
                continue
            table = match.group(1)
            if table.endswith('options'):
                return table[:-len('options')]
            if first_table is None:
                first_table = table

    if first_table and '_' in first_table:
        return first_table.split('_', 1)[0] + '_'
    return None
