"""
APScheduler configuration for running wpbackup as a long-lived service.

Registers the nightly backup run (backup of every site followed by the
retention pass) under the configured cron expression.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from wpbackup.backup.executor import run_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'daily_backup'


def _backup_job(config):
    """
    Scheduled entry point. Errors are logged so a bad night does not stop
    the scheduler.
    """
    try:
        result = run_backup(config)
    except Exception:
        logger.exception("Scheduled backup run failed")
        return

    if result.ok:
        logger.info(f"Scheduled backup run {result.folder} completed")
    else:
        logger.warning(
            f"Scheduled backup run {result.folder} completed with problems: "
            f"{len(result.failed_sites)} failed site(s), {len(result.errors)} run error(s)"
        )


def create_scheduler(config) -> BlockingScheduler:
    """
    Build a scheduler with the backup job registered.

    Args:
        config: Configuration class (SCHEDULE_CRON, TIMEZONE)

    Returns:
        BlockingScheduler, not yet started
    """
    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup run at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone=config.TIMEZONE)
    scheduler.add_job(
        func=_backup_job,
        args=[config],
        trigger=CronTrigger.from_crontab(config.SCHEDULE_CRON, timezone=config.TIMEZONE),
        id=BACKUP_JOB_ID,
        name='Daily WordPress Backup',
        replace_existing=True
    )
    return scheduler


def run_scheduler(config):
    """Start the scheduler and block until interrupted."""
    scheduler = create_scheduler(config)
    logger.info(f"Scheduler starting: backups run on '{config.SCHEDULE_CRON}' ({config.TIMEZONE})")

    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
