#!/usr/bin/env python
"""
Sync Worker

Standalone process for terminals that run the API without the in-process
scheduler (or for a headless sync node). Each cycle:
1. Pushes the outbox and pulls the remote collections
2. Marks overdue bookings as no-shows and expires stale waitlist entries

Run with:
    python worker.py

Or with environment:
    SYNC_INTERVAL_SECONDS=10 python worker.py
"""

import sys
import time
import signal

from baybook.config import settings
from baybook.database import SessionLocal, create_tables
from baybook.services.booking_status_updater import run_status_updates
from baybook.services.factory import build_reconciler
from baybook.utils.logging_config import setup_logging, get_logger

logger = get_logger("baybook.worker")

POLL_INTERVAL = settings.sync_interval_seconds
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current cycle...")
    RUNNING = False


def sync_once(db):
    """One push/pull cycle; returns (pushed, failed, merged_from_remote)."""
    cycle = build_reconciler(db).run_cycle()
    if cycle.skipped:
        return 0, 0, 0

    pushed = cycle.push.pushed if cycle.push else 0
    failed = cycle.push.failed if cycle.push else 0
    merged = 0
    if cycle.pull is not None:
        merged = sum(
            count for decision, count in cycle.pull.decisions.items()
            if decision in ("remote_only_added", "remote_newer_wins")
        )
    return pushed, failed, merged


def run_worker():
    """Main worker loop"""
    logger.info("=" * 50)
    logger.info(f"Starting Sync Worker for terminal {settings.terminal_id}")
    logger.info(f"Poll interval: {POLL_INTERVAL}s")
    logger.info(f"Remote store: {'configured' if settings.remote_enabled else 'not configured'}")
    logger.info("=" * 50)

    create_tables()
    cycle = 0

    while RUNNING:
        cycle += 1
        start_time = time.time()

        db = SessionLocal()
        try:
            pushed, failed, merged = sync_once(db) if settings.remote_enabled else (0, 0, 0)
            housekeeping = run_status_updates(db)

            if pushed + failed + merged + housekeeping["no_shows"] + housekeeping["waitlist_expired"] > 0:
                duration = time.time() - start_time
                logger.info(
                    f"Cycle {cycle}: "
                    f"pushed {pushed}, failed {failed}, merged {merged} | "
                    f"no-shows {housekeeping['no_shows']}, "
                    f"waitlist expired {housekeeping['waitlist_expired']} | "
                    f"{duration:.2f}s"
                )

        except Exception as e:
            logger.error(f"Critical error in cycle {cycle}: {e}")

        finally:
            db.close()

        if RUNNING:
            time.sleep(POLL_INTERVAL)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    setup_logging(
        settings.log_level,
        json_format=settings.log_json,
        terminal_id=settings.terminal_id,
        include_uvicorn=False
    )

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
