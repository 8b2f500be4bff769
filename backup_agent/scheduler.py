"""
APScheduler configuration and job scheduling for the backup agent.

Manages:
- The scheduled backup run (cron expression from the settings)
- The config file watcher, which reloads settings and reschedules
- Manual "run now" triggers

At most one backup run executes at a time, whatever triggered it.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone as dt_timezone

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backup_agent import configure_logging
from backup_agent.backup.executor import execute_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'backup'
CONFIG_WATCH_JOB_ID = 'config_watch'

# Global scheduler instance and settings store reference
scheduler = None
settings_store = None
scheduler_timezone = 'UTC'

_run_lock = threading.Lock()
_last_run = None


def init_scheduler(store, timezone='UTC', poll_seconds=5):
    """
    Initialize and configure APScheduler.

    Args:
        store: SettingsStore holding the current settings snapshot
        timezone: Timezone for cron schedules
        poll_seconds: Config file polling interval
    """
    global scheduler, settings_store, scheduler_timezone

    if scheduler is not None:
        return scheduler

    settings_store = store
    scheduler_timezone = timezone

    executors = {
        # One slot for the backup, one for the config watcher
        'default': ThreadPoolExecutor(max_workers=2)
    }

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BackgroundScheduler(
        executors=executors,
        job_defaults=job_defaults,
        timezone=timezone
    )

    settings = store.current()
    scheduler.add_job(
        func=run_backup_job,
        trigger=CronTrigger.from_crontab(settings.schedule, timezone=timezone),
        id=BACKUP_JOB_ID,
        name='Scheduled Backup',
        replace_existing=True
    )
    logger.info(f"Scheduled backup job ({settings.schedule})")

    scheduler.add_job(
        func=check_config_changed,
        trigger=IntervalTrigger(seconds=poll_seconds),
        id=CONFIG_WATCH_JOB_ID,
        name='Config Watcher',
        replace_existing=True
    )

    return scheduler


def start_scheduler():
    """
    Start the APScheduler.

    Should be called after init_scheduler().
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    if not scheduler.running:
        scheduler.start()
        logger.info(f"APScheduler started (state={scheduler.state})")

        for job in scheduler.get_jobs():
            next_run = job.next_run_time.isoformat() if job.next_run_time else 'N/A'
            logger.info(f"  - {job.id}: {job.name} (next run: {next_run})")
    else:
        logger.info(f"Scheduler already running (state={scheduler.state})")


def stop_scheduler():
    """Stop the APScheduler."""
    if scheduler and scheduler.running:
        scheduler.shutdown()
        logger.info("APScheduler stopped")


def reschedule_backup(schedule: str) -> bool:
    """
    Point the backup job at a new cron expression.

    Returns:
        True if the job was rescheduled
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    try:
        trigger = CronTrigger.from_crontab(schedule, timezone=scheduler_timezone)
    except ValueError as e:
        logger.error(f"Invalid schedule {schedule!r}, keeping previous schedule: {e}")
        return False

    job = scheduler.get_job(BACKUP_JOB_ID)
    if job:
        job.reschedule(trigger=trigger)
    else:
        scheduler.add_job(
            func=run_backup_job,
            trigger=trigger,
            id=BACKUP_JOB_ID,
            name='Scheduled Backup',
            replace_existing=True
        )

    logger.info(f"Backup schedule set to: {schedule}")
    return True


def check_config_changed() -> bool:
    """
    Reload settings if the config file changed.

    The new snapshot only affects runs that start after this point.

    Returns:
        True if new settings were committed
    """
    new_settings = settings_store.reload_if_changed()
    if new_settings is None:
        return False

    configure_logging(new_settings.logging)
    reschedule_backup(new_settings.schedule)
    return True


def run_backup_job():
    """
    Execute one backup run with the current settings snapshot.

    Skips (and logs) if another run is still in progress. Never raises:
    a failed run is reported and the next scheduled run proceeds normally.

    Returns:
        Final RunState, or None if the run was skipped or crashed
    """
    global _last_run

    if not _run_lock.acquire(blocking=False):
        logger.warning("A backup run is already in progress, skipping this trigger")
        return None

    try:
        settings = settings_store.current()
        state = execute_backup(settings)
        _last_run = state.summary()
        logger.info(f"Backup run finished with status: {state.status.value}")
        return state
    except Exception as e:
        logger.exception(f"Scheduled backup failed: {e}")
        return None
    finally:
        _run_lock.release()


def trigger_backup_now():
    """
    Queue a backup run to start immediately.

    Returns:
        ID of the one-shot scheduler job
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized")

    now = datetime.now(dt_timezone.utc)
    job_id = f"manual_{int(now.timestamp())}"

    # 1 second delay to avoid racing the scheduler's wakeup
    scheduler.add_job(
        func=run_backup_job,
        trigger=DateTrigger(run_date=now + timedelta(seconds=1)),
        id=job_id,
        name='Manual Backup',
        replace_existing=True
    )

    logger.info("Manually triggered backup run")
    return job_id


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': job.next_run_time.isoformat() if job.next_run_time else None,
            'trigger': str(job.trigger)
        })

    return jobs


def is_scheduler_running() -> bool:
    return scheduler is not None and scheduler.running


def is_backup_running() -> bool:
    return _run_lock.locked()


def get_last_run():
    """Summary dict of the most recent finished run, or None."""
    return _last_run
