from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date


class ConflictResponse(BaseModel):
    id: str
    booking_a_id: str
    booking_b_id: str
    resource_id: int
    date: date
    status: str
    detected_at: datetime
    resolved_at: Optional[datetime] = None
    resolution_note: Optional[str] = None

    class Config:
        from_attributes = True


class ConflictListResponse(BaseModel):
    items: List[ConflictResponse]
    open_count: int


class ConflictResolve(BaseModel):
    note: Optional[str] = Field(None, max_length=1000)


class OutboxEventResponse(BaseModel):
    id: str
    collection: str
    record_id: str
    operation: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    next_attempt_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ConnectivityUpdate(BaseModel):
    online: bool


class SyncStatusResponse(BaseModel):
    online: bool
    remote_configured: bool
    last_push_at: Optional[datetime] = None
    last_pull_at: Optional[datetime] = None
    pending_bookings: int
    pending_waitlist: int
    failed_events: int
    open_conflicts: int
    scheduler: Dict[str, Any] = {}
