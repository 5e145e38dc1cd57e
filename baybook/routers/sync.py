"""
Sync Endpoints

- /api/sync/status - connectivity, pending counts, scheduler jobs
- /api/sync/run - push then pull right now
- /api/sync/connectivity - external online/offline signal
- /api/sync/conflicts - operator queue of overlapping bookings
- /api/sync/outbox/failed - events that need a manual retry
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List, Optional

from ..schemas.sync import (
    ConflictListResponse, ConflictResolve, ConflictResponse,
    OutboxEventResponse, ConnectivityUpdate, SyncStatusResponse
)
from ..services.sync_reconciler import SyncReconciler
from ..services.sync_scheduler import get_scheduler_status
from ..utils.dependencies import get_reconciler, raise_for_result

router = APIRouter(prefix="/api/sync", tags=["Sync"])


def _status(reconciler: SyncReconciler) -> SyncStatusResponse:
    return SyncStatusResponse(**reconciler.status(), scheduler=get_scheduler_status())


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(reconciler: SyncReconciler = Depends(get_reconciler)):
    return _status(reconciler)


@router.post("/run")
def run_sync(reconciler: SyncReconciler = Depends(get_reconciler)):
    if reconciler.client is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Remote store is not configured"
        )

    cycle = reconciler.run_cycle()
    response = {"skipped": cycle.skipped, "push": None, "pull": None}
    if cycle.push is not None:
        response["push"] = {
            "pushed": cycle.push.pushed,
            "failed": cycle.push.failed,
            "deferred": cycle.push.skipped,
            "network_error": cycle.push.network_error,
            "errors": cycle.push.errors,
        }
    if cycle.pull is not None:
        response["pull"] = {
            "success": cycle.pull.success,
            "decisions": cycle.pull.decisions,
            "conflicts_found": cycle.pull.conflicts_found,
            "errors": cycle.pull.errors,
        }
    return response


@router.post("/connectivity", response_model=SyncStatusResponse)
def update_connectivity(data: ConnectivityUpdate, reconciler: SyncReconciler = Depends(get_reconciler)):
    """Going back online triggers a full sync cycle before the status is returned."""
    reconciler.set_online(data.online)
    return _status(reconciler)


@router.get("/conflicts", response_model=ConflictListResponse)
def list_conflicts(
    conflict_status: Optional[str] = Query(None, alias="status", description="open or resolved"),
    reconciler: SyncReconciler = Depends(get_reconciler)
):
    return ConflictListResponse(
        items=reconciler.list_conflicts(conflict_status),
        open_count=reconciler.open_conflict_count()
    )


@router.post("/conflicts/{conflict_id}/resolve", response_model=ConflictResponse)
def resolve_conflict(
    conflict_id: str,
    data: ConflictResolve,
    reconciler: SyncReconciler = Depends(get_reconciler)
):
    result = reconciler.resolve_conflict(conflict_id, data.note)
    raise_for_result(result)
    return result.entry


@router.get("/outbox/failed", response_model=List[OutboxEventResponse])
def list_failed_events(reconciler: SyncReconciler = Depends(get_reconciler)):
    if reconciler.outbox is None:
        return []
    return reconciler.outbox.get_failed_events()


@router.post("/outbox/{event_id}/retry")
def retry_failed_event(event_id: str, reconciler: SyncReconciler = Depends(get_reconciler)):
    if reconciler.outbox is None or not reconciler.outbox.retry_failed_event(event_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Failed event not found"
        )
    return {"status": "queued", "event_id": event_id}
