from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime, date
from enum import Enum

from .booking import _strip_markup


class WaitlistStatus(str, Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    EXPIRED = "expired"


class WaitlistCreate(BaseModel):
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_id: Optional[str] = Field(None, max_length=64)
    contact: Optional[str] = Field(None, max_length=255, description="Email or phone for the notification")
    date: date
    preferred_resource_id: Optional[int] = None
    preferred_start_time: Optional[str] = Field(None, max_length=10)
    duration_units: int = Field(1, gt=0)

    @field_validator('customer_name', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)


class WaitlistBooked(BaseModel):
    booking_id: str = Field(..., min_length=1, max_length=36)


class WaitlistResponse(BaseModel):
    id: str
    customer_name: str
    customer_id: Optional[str] = None
    contact: Optional[str] = None
    date: date
    preferred_resource_id: Optional[int] = None
    preferred_start_time: Optional[str] = None
    duration_units: int
    status: WaitlistStatus
    notified_at: Optional[datetime] = None
    matched_resource_id: Optional[int] = None
    matched_start_time: Optional[str] = None
    booking_id: Optional[str] = None
    remote_key: Optional[str] = None
    pending_sync: bool = True
    created_at: datetime

    class Config:
        from_attributes = True
