"""
Command-line interface for wpbackup.

    wpbackup backup [--dry-run] [--skip-retention]
    wpbackup retention [--dry-run]
    wpbackup restore example.com [--folder 20240115_Daily_Backup_Job] [--drop-tables]
    wpbackup cleanup example.com [--dry-run]
    wpbackup schedule
"""

import argparse
import logging
import sys
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wpbackup import configure_logging
from wpbackup.config import get_config
from wpbackup.backup.executor import BackupRun
from wpbackup.backup.retention import RetentionPolicy, enforce_retention_policy
from wpbackup.backup.storage import StorageError, create_s3_storage
from wpbackup.cleanup import SiteCleanup, CleanupError
from wpbackup.restore import RestoreExecutor


logger = logging.getLogger(__name__)


def backup_command(args, config) -> int:
    """Back up every site, then apply retention."""
    result = BackupRun(config, dry_run=args.dry_run, skip_retention=args.skip_retention).execute()

    for site in result.sites:
        if site.status == 'success':
            print(f"✓ {site.domain}: {site.remote_key or site.archive_name}")
        else:
            print(f"✗ {site.domain}: {site.error_message}")
    if result.retention is not None:
        _print_retention(result.retention)
    for error in result.errors:
        print(f"✗ {error}")

    return 0 if result.ok else 1


def retention_command(args, config) -> int:
    """Apply retention without taking a new backup."""
    summary = enforce_retention_policy(create_s3_storage(config), config, dry_run=args.dry_run)
    _print_retention(summary)
    return 1 if summary.failed else 0


def _print_retention(summary):
    if summary.is_noop:
        print("Retention: no backup folders found, nothing to do")
        return
    label = "Retention (dry run)" if summary.dry_run else "Retention"
    print(
        f"{label}: retained {summary.retained}, deleted {summary.deleted}, "
        f"failed {summary.failed}, unparseable {len(summary.parse_failures)}"
    )
    for identifier in summary.parse_failures:
        print(f"  ? {identifier} (not a dated backup folder)")
    for error in summary.errors:
        print(f"  ✗ {error}")


def restore_command(args, config) -> int:
    """Restore one site from remote storage."""
    executor = RestoreExecutor(
        args.domain,
        config,
        create_s3_storage(config),
        wp_base_path=args.wp_path,
        folder=args.folder,
        drop_tables=args.drop_tables,
        optimize=not args.no_optimize,
        dry_run=args.dry_run
    )
    result = executor.execute()

    if result.status != 'success':
        print(f"✗ Restore failed: {result.error_message}")
        return 1

    print(f"✓ Restored {args.domain} from {result.folder}/{result.archive_name}")
    if result.prefix_mismatch:
        current, required = result.prefix_mismatch
        print(f"⚠ Update $table_prefix in wp-config.php from '{current}' to '{required}'")
    if result.restore_dir:
        print(f"  Restore files are in {result.restore_dir} (protected by .htaccess)")
    return 0


def cleanup_command(args, config) -> int:
    """Remove a deleted site's files and local backups."""
    try:
        result = SiteCleanup(
            args.domain,
            base_dir=config.BASE_DIR,
            local_backup_dir=config.LOCAL_BACKUP_DIR,
            dry_run=args.dry_run
        ).execute()
    except CleanupError as e:
        print(f"✗ Cleanup failed: {e}")
        return 1

    verb = "Would remove" if result.dry_run else "Removed"
    print(f"{verb} {len(result.removed)} path(s) for {args.domain}")
    return 0


def schedule_command(args, config) -> int:
    """Run the backup on a cron schedule until interrupted."""
    from wpbackup.scheduler import run_scheduler
    run_scheduler(config)
    return 0


def check_config(config):
    """
    Validate settings that would otherwise fail deep inside a run.

    Raises:
        ValueError: If the retention windows are out of order
        ZoneInfoNotFoundError: If TIMEZONE is not a known IANA zone
    """
    RetentionPolicy.from_config(config)
    ZoneInfo(config.TIMEZONE)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='wpbackup',
        description='Back up and restore WordPress sites to S3-compatible storage'
    )
    parser.add_argument('--env', default=None, help='Configuration to use (development, production)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    backup_parser = subparsers.add_parser('backup', help='Back up all sites and apply retention')
    backup_parser.add_argument('--dry-run', action='store_true', help='Package only; no upload, copy or deletion')
    backup_parser.add_argument('--skip-retention', action='store_true', help='Do not run the retention pass')
    backup_parser.set_defaults(func=backup_command)

    retention_parser = subparsers.add_parser('retention', help='Apply the retention policy to remote folders')
    retention_parser.add_argument('--dry-run', action='store_true', help='Report deletions without issuing them')
    retention_parser.set_defaults(func=retention_command)

    restore_parser = subparsers.add_parser('restore', help='Restore a site from its latest backup')
    restore_parser.add_argument('domain', help='Site domain, e.g. example.com')
    restore_parser.add_argument('--wp-path', default=None, help='Web root holding the site (default: BASE_DIR)')
    restore_parser.add_argument('--folder', default=None, help='Backup folder to restore from (default: newest)')
    restore_parser.add_argument('--drop-tables', action='store_true', help='Drop existing tables before import')
    restore_parser.add_argument('--no-optimize', action='store_true', help='Skip table optimization')
    restore_parser.add_argument('--dry-run', action='store_true', help='Report the plan only')
    restore_parser.set_defaults(func=restore_command)

    cleanup_parser = subparsers.add_parser('cleanup', help="Remove a deleted site's files and local backups")
    cleanup_parser.add_argument('domain', help='Site domain, e.g. example.com')
    cleanup_parser.add_argument('--dry-run', action='store_true', help='Report what would be removed')
    cleanup_parser.set_defaults(func=cleanup_command)

    schedule_parser = subparsers.add_parser('schedule', help='Run backups on SCHEDULE_CRON until stopped')
    schedule_parser.set_defaults(func=schedule_command)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = get_config(args.env)
    except ValueError as e:
        parser.error(str(e))

    configure_logging(config, verbose=args.verbose)

    try:
        check_config(config)
    except (ValueError, ZoneInfoNotFoundError) as e:
        logger.error(f"Configuration error: {e}")
        print(f"✗ Configuration error: {e}")
        return 1

    try:
        return args.func(args, config)
    except StorageError as e:
        logger.error(f"Storage error: {e}")
        print(f"✗ Storage error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
