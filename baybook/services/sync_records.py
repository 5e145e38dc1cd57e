"""
Conversion between local rows and the record shape exchanged with the
remote store.

Remote records carry every business column plus "key" (the remote
identifier). The local-only flags (remote_key, pending_sync) are never
sent. Dates and timestamps travel as ISO strings, money as numbers.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, Type

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric

from ..models.booking import Booking
from ..models.waitlist import WaitlistEntry
from ..utils.logging_config import get_logger
from .time_utils import normalize_time

BOOKINGS = "bookings"
WAITLIST = "waitlist"

COLLECTIONS: Dict[str, Type] = {
    BOOKINGS: Booking,
    WAITLIST: WaitlistEntry,
}

logger = get_logger(__name__)

LOCAL_ONLY_FIELDS = {"remote_key", "pending_sync"}


def collection_for(record) -> str:
    for name, model in COLLECTIONS.items():
        if isinstance(record, model):
            return name
    raise ValueError(f"No remote collection for {type(record).__name__}")


def _columns(model):
    return model.__table__.columns


def _parse_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _parse_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _coerce(column, value):
    if value is None:
        return None
    col_type = column.type
    if isinstance(col_type, DateTime):
        return _parse_datetime(value)
    if isinstance(col_type, Date):
        return _parse_date(value)
    if isinstance(col_type, Numeric):
        try:
            return Decimal(str(value))
        except InvalidOperation:
            return None
    if isinstance(col_type, Boolean):
        return bool(value)
    if isinstance(col_type, Integer):
        try:
            return int(value)
        except (TypeError, ValueError):
            return None
    return value


def to_local_dict(record) -> Dict[str, Any]:
    """Snapshot of a row as a plain dict (python types, local flags included)."""
    return {c.name: getattr(record, c.name) for c in _columns(type(record))}


def to_remote(record) -> Dict[str, Any]:
    """JSON-ready payload for create/update."""
    payload = {}
    for column in _columns(type(record)):
        if column.name in LOCAL_ONLY_FIELDS:
            continue
        value = getattr(record, column.name)
        if isinstance(value, (datetime, date)):
            value = value.isoformat()
        elif isinstance(value, Decimal):
            value = float(value)
        payload[column.name] = value
    return payload


TIME_COLUMNS = {"start_time", "preferred_start_time", "matched_start_time"}


def required_columns(model):
    """Business columns the row cannot be stored without (NOT NULL, no default)."""
    return [
        c.name for c in _columns(model)
        if not c.nullable and not c.primary_key and c.default is None and c.server_default is None
    ]


def from_remote(collection: str, raw: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Convert a remote record into the local dict shape.

    The remote "key" becomes remote_key and the copy counts as synced.
    Columns the remote record omits are left out so column defaults apply
    on insert. Returns None (and logs why) for records without a business
    id or with a required column missing or unparsable.
    """
    model = COLLECTIONS[collection]
    if not raw.get("id"):
        logger.record_rejected(collection, None, "no business id")
        return None

    local = {}
    for column in _columns(model):
        if column.name in LOCAL_ONLY_FIELDS or column.name not in raw:
            continue
        value = _coerce(column, raw[column.name])
        if column.name in TIME_COLUMNS and value is not None:
            value = normalize_time(str(value))
        local[column.name] = value
    local["id"] = str(raw["id"])

    missing = [name for name in required_columns(model) if local.get(name) is None]
    if missing:
        logger.record_rejected(collection, local["id"], f"missing or invalid {', '.join(missing)}")
        return None

    key = raw.get("key")
    local["remote_key"] = str(key) if key is not None else None
    local["pending_sync"] = False
    return local


def apply_dict(record, data: Dict[str, Any]):
    """Overwrite a row wholesale from a merged dict."""
    for column in _columns(type(record)):
        if column.name not in data:
            continue
        value = data[column.name]
        # Required columns keep their current value (or default) over a remote null
        if value is None and not column.nullable:
            continue
        setattr(record, column.name, value)
    return record


def business_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in data.items() if k not in LOCAL_ONLY_FIELDS}
