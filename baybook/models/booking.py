import uuid
from sqlalchemy import Column, String, Date, Numeric, Text, DateTime, Index, Boolean, Integer
from sqlalchemy.orm import declared_attr
from ..database import Base
from ..utils.clock import utcnow
import enum


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = {
    BookingStatus.COMPLETED.value,
    BookingStatus.NO_SHOW.value,
    BookingStatus.CANCELLED.value,
}

# Statuses that still hold their slot (used for conflict detection after merge)
ACTIVE_STATUSES = {
    BookingStatus.PENDING.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.CHECKED_IN.value,
}


class SyncTrackedMixin:
    """
    Columns shared by every record the reconciler exchanges with the remote store.

    - remote_key: identifier assigned by the remote store (None until first push)
    - pending_sync: True while local changes are not confirmed by the remote store
    """

    @declared_attr
    def remote_key(cls):
        return Column(String(255), nullable=True, index=True)

    @declared_attr
    def pending_sync(cls):
        return Column(Boolean, default=True, nullable=False, index=True)

    @declared_attr
    def created_at(cls):
        return Column(DateTime, default=utcnow, nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime, default=utcnow, nullable=False)

    def touch(self):
        """Mark a local mutation: bump updated_at and flag for push."""
        self.updated_at = utcnow()
        self.pending_sync = True


class Booking(SyncTrackedMixin, Base):
    __tablename__ = "bookings"

    # Generated on the terminal so bookings can be created offline
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    resource_id = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)  # "HH:MM", 24-hour
    duration_units = Column(Integer, nullable=False)

    customer_name = Column(String(100), nullable=False)
    customer_id = Column(String(64), nullable=True)
    players = Column(Integer, default=1)

    # Pricing snapshot, immutable once charged
    base_price = Column(Numeric(10, 2), default=0)
    peak_surcharge = Column(Numeric(10, 2), default=0)
    member_discount = Column(Numeric(10, 2), default=0)
    price = Column(Numeric(10, 2), default=0)
    is_peak = Column(Boolean, default=False)
    member_tier = Column(String(50), nullable=True)

    status = Column(String(20), default=BookingStatus.CONFIRMED.value, nullable=False)

    # Payment is recorded only, the gateway is never called from here
    is_prepaid = Column(Boolean, default=False)
    payment_reference = Column(String(255), nullable=True)
    refund_amount = Column(Numeric(10, 2), nullable=True)

    cancel_reason = Column(Text, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    checked_in_at = Column(DateTime, nullable=True)
    checked_out_at = Column(DateTime, nullable=True)
    no_show_at = Column(DateTime, nullable=True)

    recurring_id = Column(String(36), nullable=True, index=True)
    source = Column(String(30), default="pos")
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_booking_resource_date", "resource_id", "date"),
        Index("ix_booking_status", "status"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<Booking {self.customer_name} - {self.date} {self.start_time} bay={self.resource_id}>"
