"""
Retention policy enforcement for remote backup folders.

Backup runs upload into one folder per day, named ``YYYYMMDD_Daily_Backup_Job``.
The folder name is the only state the retention pass relies on: every run lists
the remote folders, classifies each one against the tiered policy below and
deletes what no tier wants to keep.

Tiers, checked in order (first match wins):
- daily: anything younger than ``daily_window_days``
- weekly: Sundays younger than ``weekly_window_days``
- monthly: last day of a month aged between ``weekly_window_days`` and
  ``monthly_window_days``
- everything else is deleted
"""

import calendar
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from .storage import StorageError


logger = logging.getLogger(__name__)

FOLDER_SUFFIX = '_Daily_Backup_Job'
FOLDER_PATTERN = re.compile(r'^(\d{4})(\d{2})(\d{2})' + FOLDER_SUFFIX + '$')


class ParseError(ValueError):
    """Raised when a folder name does not carry a valid backup date."""

    def __init__(self, identifier: str, reason: str):
        super().__init__(f"Cannot parse backup folder '{identifier}': {reason}")
        self.identifier = identifier
        self.reason = reason


class Verdict(str, Enum):
    KEEP_DAILY = 'keep-daily'
    KEEP_WEEKLY = 'keep-weekly'
    KEEP_MONTHLY = 'keep-monthly'
    DELETE = 'delete'

    @property
    def keeps(self) -> bool:
        return self is not Verdict.DELETE


@dataclass(frozen=True)
class RetentionPolicy:
    """Tier windows, in days. Upper bounds are exclusive."""

    daily_window_days: int = 7
    weekly_window_days: int = 28
    monthly_window_days: int = 90

    def __post_init__(self):
        if not 0 <= self.daily_window_days <= self.weekly_window_days <= self.monthly_window_days:
            raise ValueError(
                "Retention windows must satisfy 0 <= daily <= weekly <= monthly, got "
                f"{self.daily_window_days}/{self.weekly_window_days}/{self.monthly_window_days}"
            )

    @classmethod
    def from_config(cls, config) -> 'RetentionPolicy':
        return cls(
            daily_window_days=config.RETENTION_DAILY_DAYS,
            weekly_window_days=config.RETENTION_WEEKLY_DAYS,
            monthly_window_days=config.RETENTION_MONTHLY_DAYS,
        )


DEFAULT_POLICY = RetentionPolicy()


@dataclass(frozen=True)
class BackupUnit:
    """One dated remote backup folder."""

    id: str
    date: date


@dataclass(frozen=True)
class RetentionDecision:
    unit: BackupUnit
    verdict: Verdict

    @property
    def id(self) -> str:
        return self.unit.id


# Calendar helpers

def folder_name_for(day: date) -> str:
    """Remote folder name for backups taken on ``day``."""
    return f"{day:%Y%m%d}{FOLDER_SUFFIX}"


def parse_backup_unit(identifier: str) -> BackupUnit:
    """
    Build a BackupUnit from a remote folder name.

    Directory listings often return names with a trailing slash; it is ignored.

    Raises:
        ParseError: If the name does not follow the dated folder pattern or
            the embedded date does not exist in the calendar
    """
    name = identifier.rstrip('/')
    match = FOLDER_PATTERN.match(name)
    if not match:
        raise ParseError(identifier, f"expected YYYYMMDD{FOLDER_SUFFIX}")

    year, month, day = (int(part) for part in match.groups())
    try:
        return BackupUnit(id=name, date=date(year, month, day))
    except ValueError as e:
        raise ParseError(identifier, str(e))


def is_sunday(day: date) -> bool:
    return day.weekday() == calendar.SUNDAY


def is_last_day_of_month(day: date) -> bool:
    """True for Jan 31, Apr 30, Feb 28 (or Feb 29 in leap years), ..."""
    return day.day == calendar.monthrange(day.year, day.month)[1]


def backup_age_days(day: date, today: date) -> int:
    """Whole calendar days between ``day`` and ``today`` (0 for today)."""
    return (today - day).days


def today_in(timezone_name: str = 'UTC') -> date:
    """Current calendar date in the given IANA timezone."""
    return datetime.now(ZoneInfo(timezone_name)).date()


class RetentionPlanner:
    """
    Classifies backup units against a RetentionPolicy.

    Classification is a pure function of ``(unit.date, today, policy)``:
    a unit's verdict never depends on which other units are in the catalogue,
    so the same input always yields the same decisions.
    """

    def __init__(self, policy: RetentionPolicy = DEFAULT_POLICY):
        self.policy = policy

    def classify(self, unit: BackupUnit, today: date) -> Verdict:
        age = backup_age_days(unit.date, today)

        if age < self.policy.daily_window_days:
            return Verdict.KEEP_DAILY
        if age < self.policy.weekly_window_days and is_sunday(unit.date):
            return Verdict.KEEP_WEEKLY
        # A month end still inside the weekly window is judged as weekly only
        if (self.policy.weekly_window_days <= age < self.policy.monthly_window_days
                and is_last_day_of_month(unit.date)):
            return Verdict.KEEP_MONTHLY
        return Verdict.DELETE

    def plan(self, units: Iterable[BackupUnit], today: date) -> List[RetentionDecision]:
        """
        Classify every unit.

        Args:
            units: Catalogue of backup units, in any order
            today: Reference date for age computation

        Returns:
            One decision per unit, in input order. Empty for an empty catalogue.
        """
        return [RetentionDecision(unit, self.classify(unit, today)) for unit in units]


@dataclass
class RetentionSummary:
    """Outcome of one retention pass."""

    retained: int = 0
    deleted: int = 0
    failed: int = 0
    parse_failures: List[str] = field(default_factory=list)
    decisions: List[RetentionDecision] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    dry_run: bool = False

    @property
    def is_noop(self) -> bool:
        """Nothing was listed, so nothing was classified."""
        return not self.decisions and not self.parse_failures

    def to_dict(self) -> dict:
        return {
            'retained': self.retained,
            'deleted': self.deleted,
            'failed': self.failed,
            'parse_failures': list(self.parse_failures),
            'errors': list(self.errors),
            'dry_run': self.dry_run,
            'noop': self.is_noop,
        }


class RetentionManager:
    """
    Runs a retention pass against remote storage.

    Storage access is injected as two callables so the pass can run against
    S3 or a test double:

    - ``list_folders()`` returns raw folder names
    - ``delete_folder(name)`` removes one folder; it signals failure by raising
      or by returning False. Any other return value counts as success.
    """

    def __init__(
        self,
        list_folders: Callable[[], List[str]],
        delete_folder: Callable[[str], object],
        policy: RetentionPolicy = DEFAULT_POLICY,
        dry_run: bool = False,
        max_workers: int = 1
    ):
        self.list_folders = list_folders
        self.delete_folder = delete_folder
        self.planner = RetentionPlanner(policy)
        self.dry_run = dry_run
        self.max_workers = max(1, max_workers)

    def enforce(self, today: date) -> RetentionSummary:
        """
        List, classify and delete.

        The listing is taken once and treated as a snapshot for the whole pass.

        Args:
            today: Reference date for the pass

        Returns:
            RetentionSummary with counts, decisions and parse failures

        Raises:
            StorageError: If the remote listing itself fails
        """
        logger.info("Starting backup retention management...")
        summary = RetentionSummary(dry_run=self.dry_run)

        identifiers = self.list_folders()
        if not identifiers:
            logger.info("No backup folders found for retention management (nothing to do)")
            return summary

        units = []
        for identifier in identifiers:
            try:
                units.append(parse_backup_unit(identifier))
            except ParseError as e:
                logger.warning(f"Skipping {identifier}: {e.reason}")
                summary.parse_failures.append(identifier)

        summary.decisions = self.planner.plan(units, today)

        # Sorted only so the log reads chronologically
        ordered = sorted(summary.decisions, key=lambda d: (d.unit.date, d.id))
        to_delete = []
        for decision in ordered:
            if decision.verdict.keeps:
                logger.info(f"Keeping {decision.id} ({decision.verdict.value})")
                summary.retained += 1
            else:
                to_delete.append(decision.id)

        if self.max_workers > 1 and len(to_delete) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                outcomes = list(pool.map(self._delete, to_delete))
        else:
            outcomes = [self._delete(folder) for folder in to_delete]

        for folder, error in zip(to_delete, outcomes):
            if error is None:
                summary.deleted += 1
            else:
                summary.failed += 1
                summary.errors.append(f"{folder}: {error}")

        logger.info(
            f"Backup retention complete{' (dry run)' if self.dry_run else ''}. "
            f"Retained: {summary.retained}, Deleted: {summary.deleted}, "
            f"Failed: {summary.failed}, Unparseable: {len(summary.parse_failures)}"
        )
        return summary

    def _delete(self, folder: str) -> Optional[str]:
        """Delete one folder. Returns an error message, or None on success."""
        if self.dry_run:
            logger.info(f"Would delete {folder} (doesn't match retention rules)")
            return None

        logger.info(f"Deleting {folder} (doesn't match retention rules)")
        try:
            result = self.delete_folder(folder)
        except StorageError as e:
            logger.error(f"Error deleting {folder}: {e}")
            return str(e)
        except Exception as e:
            logger.exception(f"Error deleting {folder}: {e}")
            return str(e) or e.__class__.__name__

        if result is False:
            logger.error(f"Error deleting {folder}: storage reported failure")
            return "storage reported failure"
        return None


def enforce_retention_policy(storage, config, today: Optional[date] = None, dry_run: bool = False) -> RetentionSummary:
    """
    Run one retention pass against ``storage`` using configured windows.

    Args:
        storage: Object exposing ``list_folders()`` and ``delete_folder(name)``
        config: Configuration class
        today: Reference date (defaults to today in config.TIMEZONE)
        dry_run: Log deletions without issuing them

    Returns:
        RetentionSummary for the pass
    """
    manager = RetentionManager(
        list_folders=storage.list_folders,
        delete_folder=storage.delete_folder,
        policy=RetentionPolicy.from_config(config),
        dry_run=dry_run,
        max_workers=config.RETENTION_DELETE_WORKERS
    )
    return manager.enforce(today or today_in(config.TIMEZONE))
