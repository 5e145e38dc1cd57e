from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import datetime, date
from decimal import Decimal
from enum import Enum
import re


def _strip_markup(v):
    """Remove script tags and inline event handlers from free text."""
    if v is None or not isinstance(v, str):
        return v
    v = re.sub(r'<script[^>]*>.*?</script>', '', v, flags=re.IGNORECASE | re.DOTALL)
    v = re.sub(r'on\w+\s*=', '', v, flags=re.IGNORECASE)
    return v


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


class RecurrencePattern(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class BookingCreate(BaseModel):
    id: Optional[str] = Field(None, max_length=36, description="Client-generated id for offline creation")
    customer_name: str = Field(..., min_length=1, max_length=100)
    customer_id: Optional[str] = Field(None, max_length=64)
    resource_id: int
    date: date
    start_time: str = Field(..., max_length=10, description='"14:00" or "2:00 PM"')
    duration_units: int = Field(..., gt=0)
    players: int = Field(1, ge=1)
    member_tier: Optional[str] = Field(None, max_length=50)
    is_prepaid: bool = False
    payment_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)
    source: str = Field("pos", max_length=30)

    @field_validator('customer_name', 'notes', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)


class RecurringBookingCreate(BookingCreate):
    pattern: RecurrencePattern
    count: Optional[int] = Field(None, gt=0, le=52)
    end_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_series_bounds(self):
        if self.count is None and self.end_date is None:
            raise ValueError('Either count or end_date is required')
        if self.end_date is not None and self.end_date < self.date:
            raise ValueError('end_date must not be before the first occurrence')
        return self


class BookingUpdate(BaseModel):
    customer_name: Optional[str] = Field(None, min_length=1, max_length=100)
    customer_id: Optional[str] = Field(None, max_length=64)
    resource_id: Optional[int] = None
    date: Optional[date] = None
    start_time: Optional[str] = Field(None, max_length=10)
    duration_units: Optional[int] = Field(None, gt=0)
    players: Optional[int] = Field(None, ge=1)
    member_tier: Optional[str] = Field(None, max_length=50)
    is_prepaid: Optional[bool] = None
    payment_reference: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator('customer_name', 'notes', mode='before')
    @classmethod
    def sanitize_text_fields(cls, v):
        return _strip_markup(v)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

    @field_validator('reason', mode='before')
    @classmethod
    def sanitize_reason(cls, v):
        return _strip_markup(v)


class BookingResponse(BaseModel):
    id: str
    resource_id: int
    date: date
    start_time: str
    duration_units: int
    customer_name: str
    customer_id: Optional[str] = None
    players: Optional[int] = None
    base_price: Decimal = Decimal("0")
    peak_surcharge: Decimal = Decimal("0")
    member_discount: Decimal = Decimal("0")
    price: Decimal = Decimal("0")
    is_peak: bool = False
    member_tier: Optional[str] = None
    status: BookingStatus
    is_prepaid: bool = False
    payment_reference: Optional[str] = None
    refund_amount: Optional[Decimal] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    checked_in_at: Optional[datetime] = None
    checked_out_at: Optional[datetime] = None
    no_show_at: Optional[datetime] = None
    recurring_id: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    remote_key: Optional[str] = None
    pending_sync: bool = True
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class RecurringBookingResponse(BaseModel):
    recurring_id: str
    created: List[BookingResponse]
    skipped: List[Dict] = []


class SlotResponse(BaseModel):
    start_time: str
    available: bool
    is_peak: bool


class ResourceAvailability(BaseModel):
    resource_id: int
    label: str
    category: str
    capacity: int
    slots: List[SlotResponse]


class AvailabilityResponse(BaseModel):
    date: date
    duration_units: int
    resources: List[ResourceAvailability]


class PriceQuoteResponse(BaseModel):
    base: Decimal
    peak_surcharge: Decimal
    member_discount: Decimal
    final: Decimal
    is_peak: bool
    member_tier: Optional[str] = None
    currency: str
