"""
Health Check Endpoints

- /health/live - Liveness check (is process running)
- /health/ready - Readiness check (is the local cache reachable)
- /health/detailed - Component checks including sync state
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy import text
from datetime import datetime, timezone
import time

from ..database import get_db
from ..config import settings
from ..services.factory import build_reconciler
from ..services.sync_scheduler import get_scheduler_status

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": "postgresql" if "postgresql" in str(db.bind.url) else "sqlite"
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


def get_sync_health(db: Session) -> dict:
    if not settings.remote_enabled:
        return {"status": "disabled"}

    sync_status = build_reconciler(db).status()
    degraded = not sync_status["online"] or sync_status["failed_events"] or sync_status["open_conflicts"]
    return {
        "status": "degraded" if degraded else "up",
        "online": sync_status["online"],
        "pending": sync_status["pending_bookings"] + sync_status["pending_waitlist"],
        "failed_events": sync_status["failed_events"],
        "open_conflicts": sync_status["open_conflicts"],
    }


@router.get("/live")
@router.get("/live/")
def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
@router.get("/ready/")
def readiness_check(db: Session = Depends(get_db)):
    """
    Readiness check. Only the local cache matters: the terminal keeps
    taking bookings while the remote store is unreachable.
    """
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("/detailed")
@router.get("/detailed/")
def detailed_health_check(db: Session = Depends(get_db)):
    db_health = get_db_health(db)
    sync_health = get_sync_health(db) if db_health["status"] == "up" else {"status": "unknown"}

    checks = {
        "database": db_health,
        "sync": sync_health,
    }

    if db_health["status"] == "down":
        overall_status = "unhealthy"
    elif any(c.get("status") == "degraded" for c in checks.values()):
        overall_status = "degraded"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "environment": settings.environment,
        "terminal_id": settings.terminal_id,
        "checks": checks,
        "scheduler": get_scheduler_status(),
    }


@router.get("")
@router.get("/")
def simple_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION
    }
