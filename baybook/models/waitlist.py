"""
Waitlist Model

Requests for sold-out slots. Entries are matched strictly in creation order:
the earliest waiting entry that fits a freed slot is notified first.
"""

import uuid
import enum
from sqlalchemy import Column, String, Date, DateTime, Integer, Index

from ..database import Base
from .booking import SyncTrackedMixin


class WaitlistStatus(str, enum.Enum):
    WAITING = "waiting"
    NOTIFIED = "notified"
    BOOKED = "booked"
    EXPIRED = "expired"


class WaitlistEntry(SyncTrackedMixin, Base):
    __tablename__ = "waitlist_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    customer_name = Column(String(100), nullable=False)
    customer_id = Column(String(64), nullable=True)
    contact = Column(String(255), nullable=True)  # email or phone for the notifier

    date = Column(Date, nullable=False)
    preferred_resource_id = Column(Integer, nullable=True)  # None = any bay
    preferred_start_time = Column(String(5), nullable=True)  # None = any time
    duration_units = Column(Integer, nullable=False, default=1)

    status = Column(String(20), default=WaitlistStatus.WAITING.value, nullable=False)
    notified_at = Column(DateTime, nullable=True)
    matched_resource_id = Column(Integer, nullable=True)
    matched_start_time = Column(String(5), nullable=True)
    booking_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("ix_waitlist_date_status", "date", "status"),
    )

    def __repr__(self):
        return f"<WaitlistEntry {self.customer_name} {self.date} status={self.status}>"
