"""
APScheduler configuration for running the backup pipeline periodically.

Used by 'backup schedule' as an alternative to a cron entry. The job is
limited to one running instance; missed runs are coalesced.

Jobs run in the scheduler's own (main) thread. SIGTERM therefore reaches a
running pipeline as RunInterrupted, which goes through the executor's
failure path (cleanup and notification) before the scheduler stops.
"""

import logging
import signal
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.debug import DebugExecutor
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from pvebackup.backup.commands import CommandRunner
from pvebackup.backup.errors import RunInterrupted
from pvebackup.backup.executor import run_backup
from pvebackup.config import BackupSettings


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'offsite_backup'


def scheduled_backup(settings: BackupSettings, runner: Optional[CommandRunner] = None):
    """
    Scheduler entry point for one backup run.

    Failures are already logged and notified by the executor; the scheduler
    keeps running for the next trigger.
    """
    report = run_backup(settings, runner=runner)
    if report.succeeded:
        logger.info(f"Scheduled backup {report.snapshot_name} completed")
    else:
        logger.error(f"Scheduled backup {report.snapshot_name} failed: {report.error_message}")
    return report


def create_scheduler(settings: BackupSettings, cron: str = '0 1 * * *',
                     timezone: Optional[str] = None,
                     runner: Optional[CommandRunner] = None) -> BlockingScheduler:
    """
    Create a blocking scheduler running the pipeline on a cron expression.

    Args:
        settings: Run configuration
        cron: Crontab expression (minute hour day month day_of_week)
        timezone: Scheduler timezone (default: local timezone, like cron)
        runner: Command runner for external tools

    Returns:
        Configured, not yet started, BlockingScheduler

    Raises:
        ValueError: If the cron expression is invalid
    """
    executors = {
        'default': DebugExecutor()  # Run jobs in the calling thread
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Never two pipeline runs at a time
        'misfire_grace_time': 3600  # 1 hour grace period for misfires
    }

    scheduler_options = {'executors': executors, 'job_defaults': job_defaults}
    if timezone:
        scheduler_options['timezone'] = timezone
    scheduler = BlockingScheduler(**scheduler_options)

    scheduler.add_job(
        func=scheduled_backup,
        trigger=CronTrigger.from_crontab(cron, timezone=timezone),
        args=[settings, runner],
        id=BACKUP_JOB_ID,
        name='Offsite Backup',
        replace_existing=True
    )

    logger.info(f"Offsite backup scheduled with cron '{cron}' ({timezone or 'local time'})")
    return scheduler


def run_scheduler(scheduler: BlockingScheduler) -> int:
    """
    Run the scheduler in the foreground until SIGTERM or SIGINT.

    A signal arriving during a backup interrupts that run; the run is
    cleaned up and notified like any other failure, then the scheduler stops.

    Args:
        scheduler: Scheduler from create_scheduler()

    Returns:
        Exit code: 1 if a running backup was interrupted, 0 otherwise
    """
    outcome = {'stopping': False, 'interrupted_run': False}

    def _handle_signal(signum, frame):
        # Later signals must not abort the cleanup of the interrupted run
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        signal.signal(signal.SIGINT, signal.SIG_IGN)
        outcome['stopping'] = True
        if scheduler.running:
            scheduler.shutdown(wait=False)
        raise RunInterrupted(f"Script terminated by {signal.Signals(signum).name}")

    def _record_run(event):
        if outcome['stopping'] and (event.exception is not None or not event.retval.succeeded):
            outcome['interrupted_run'] = True

    scheduler.add_listener(_record_run, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
    previous_handlers = {
        signum: signal.signal(signum, _handle_signal)
        for signum in (signal.SIGTERM, signal.SIGINT)
    }
    try:
        scheduler.start()
    except RunInterrupted as e:
        # Signal arrived between runs
        logger.info(f"Scheduler stopped: {e}")
    finally:
        for signum, handler in previous_handlers.items():
            signal.signal(signum, handler)

    return 1 if outcome['interrupted_run'] else 0
