"""
Sync Scheduler Service

Drives the reconciler and housekeeping from APScheduler:
- sync_cycle: push then pull every SYNC_INTERVAL_SECONDS
- sync_push_eager: one-off push requested right after a local mutation
  (replace_existing collapses a burst of requests into one run)
- booking_status_update: no-show marking and waitlist expiry every minute

Jobs are plain functions, so AsyncIOScheduler runs them in its thread pool
and the blocking HTTP calls never stall the event loop.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..config import settings
from ..database import SessionLocal
from ..utils.clock import utcnow
from .booking_status_updater import run_status_updates
from .factory import build_reconciler

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None
_last_cycle_time: Optional[datetime] = None
_last_cycle_result: Optional[Dict] = None

EAGER_PUSH_JOB_ID = "sync_push_eager"


def _summarize(cycle) -> Dict:
    summary = {"skipped": cycle.skipped}
    if cycle.push is not None:
        summary["pushed"] = cycle.push.pushed
        summary["push_failed"] = cycle.push.failed
        summary["network_error"] = cycle.push.network_error
    if cycle.pull is not None:
        summary["pull_success"] = cycle.pull.success
        summary["merge"] = cycle.pull.decisions
        summary["conflicts_found"] = cycle.pull.conflicts_found
    return summary


def run_sync_cycle_job():
    """Creates a database session, runs one push/pull cycle, and cleans up."""
    global _last_cycle_time, _last_cycle_result

    db = SessionLocal()
    try:
        cycle = build_reconciler(db).run_cycle()
        _last_cycle_time = utcnow()
        _last_cycle_result = _summarize(cycle)
        logger.debug(f"Sync cycle result: {_last_cycle_result}")
    except Exception as e:
        logger.error(f"Scheduled sync cycle failed: {e}")
    finally:
        db.close()


def run_push_job():
    db = SessionLocal()
    try:
        build_reconciler(db).push()
    except Exception as e:
        logger.error(f"Eager push failed: {e}")
    finally:
        db.close()


def run_status_update_job():
    db = SessionLocal()
    try:
        run_status_updates(db, push_callback=request_eager_push)
    except Exception as e:
        logger.error(f"Booking status update job failed: {e}")
    finally:
        db.close()


def request_eager_push():
    """
    Ask for a push as soon as possible. Fire-and-forget: without a running
    scheduler the next periodic cycle (or the worker loop) picks it up.
    """
    if _scheduler is None or not _scheduler.running or not settings.remote_enabled:
        return
    _scheduler.add_job(
        run_push_job,
        id=EAGER_PUSH_JOB_ID,
        name="Eager push after local change",
        replace_existing=True
    )


def notify_connectivity(online: bool):
    """External connectivity signal; an offline -> online transition runs a cycle."""
    db = SessionLocal()
    try:
        build_reconciler(db).set_online(online)
    except Exception as e:
        logger.error(f"Connectivity change handling failed: {e}")
    finally:
        db.close()


def start_sync_scheduler() -> bool:
    """
    Start the sync scheduler.

    Returns:
        True if scheduler started successfully, False otherwise
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Sync scheduler is already running")
        return True

    try:
        _scheduler = AsyncIOScheduler()

        if settings.sync_enabled and settings.remote_enabled:
            _scheduler.add_job(
                run_sync_cycle_job,
                IntervalTrigger(seconds=settings.sync_interval_seconds),
                id="sync_cycle",
                name=f"Sync cycle every {settings.sync_interval_seconds}s",
                max_instances=1,
                coalesce=True,
                next_run_time=datetime.now(),
                replace_existing=True
            )
        else:
            logger.info("Remote sync disabled, running local-only")

        _scheduler.add_job(
            run_status_update_job,
            IntervalTrigger(minutes=1),
            id="booking_status_update",
            name="No-show marking and waitlist expiry",
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

        _scheduler.start()
        logger.info(f"Sync scheduler started (interval {settings.sync_interval_seconds}s)")
        return True

    except Exception as e:
        logger.error(f"Failed to start sync scheduler: {e}")
        return False


def stop_sync_scheduler() -> bool:
    """
    Stop the sync scheduler gracefully.

    Returns:
        True if scheduler stopped successfully, False otherwise
    """
    global _scheduler

    if _scheduler is None:
        return True

    try:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Sync scheduler stopped")
        return True
    except Exception as e:
        logger.error(f"Failed to stop sync scheduler: {e}")
        return False


def get_scheduler_status() -> Dict:
    status = {
        "running": False,
        "jobs": [],
        "last_cycle": _last_cycle_time.isoformat() if _last_cycle_time else None,
        "last_cycle_result": _last_cycle_result,
    }

    if _scheduler is not None and _scheduler.running:
        status["running"] = True
        for job in _scheduler.get_jobs():
            status["jobs"].append({
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return status
