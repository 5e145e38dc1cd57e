"""FastAPI dependencies and ledger-result translation for the routers."""

from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import ERROR_HTTP_STATUS, LedgerResult
from ..services.booking_ledger import BookingLedger
from ..services.factory import build_ledger, build_reconciler, build_waitlist
from ..services.sync_reconciler import SyncReconciler
from ..services.sync_scheduler import request_eager_push
from ..services.waitlist_matcher import WaitlistMatcher


def get_ledger(db: Session = Depends(get_db)) -> BookingLedger:
    return build_ledger(db, push_callback=request_eager_push)


def get_waitlist(db: Session = Depends(get_db)) -> WaitlistMatcher:
    return build_waitlist(db, push_callback=request_eager_push)


def get_reconciler(db: Session = Depends(get_db)) -> SyncReconciler:
    return build_reconciler(db)


def raise_for_result(result: LedgerResult, extra: Optional[Dict[str, Any]] = None):
    """Translate a failed LedgerResult into an HTTPException."""
    if result.success:
        return
    detail = result.error.to_dict()
    if extra:
        detail.update(extra)
    raise HTTPException(
        status_code=ERROR_HTTP_STATUS.get(result.error.code, 400),
        detail=detail
    )
