"""
Structured Logging Configuration

Every record carries the terminal it came from, so logs shipped from
several terminals can be told apart when a reconciliation conflict is
investigated. Records logged through the StructuredLogger helpers also
carry an "event" name plus its data:

    booking.created / booking.status_changed
    waitlist.notified
    sync.pushed / sync.push_failed / sync.record_rejected / sync.merged
    sync.conflict / sync.connectivity
    api.request
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log shipper."""

    def __init__(self, terminal_id: str = ""):
        super().__init__()
        self.terminal_id = terminal_id

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.terminal_id:
            log_data["terminal_id"] = self.terminal_id

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        event = getattr(record, "event", None)
        if event:
            log_data["event"] = event
            log_data["data"] = getattr(record, "event_data", {})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable development output; event data is appended as key=value."""

    def __init__(self, terminal_id: str = ""):
        prefix = f"[{terminal_id}] " if terminal_id else ""
        super().__init__(f"%(asctime)s - {prefix}%(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        data = getattr(record, "event_data", None)
        if data:
            line += " | " + " ".join(f"{k}={v}" for k, v in data.items())
        return line


class StructuredLogger(logging.LoggerAdapter):
    """
    Logger adapter with one helper per domain event. Plain .info()/.warning()
    calls still work as on a normal logger.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def event(self, level: int, event: str, msg: str, **data):
        self.log(level, msg, extra={"event": event, "event_data": data})

    # ---------- bookings ----------

    def booking_created(self, booking_id: str, customer_name: str, resource_id: int, price: float):
        self.event(
            logging.INFO,
            "booking.created",
            f"Booking created: {customer_name} on bay {resource_id}",
            booking_id=booking_id,
            resource_id=resource_id,
            price=price
        )

    def booking_status_changed(self, booking_id: str, old_status: str, new_status: str):
        self.event(
            logging.INFO,
            "booking.status_changed",
            f"Booking {booking_id}: {old_status} -> {new_status}",
            booking_id=booking_id,
            old_status=old_status,
            new_status=new_status
        )

    # ---------- waitlist ----------

    def waitlist_notified(self, entry_id: str, resource_id: int, start_time: str):
        self.event(
            logging.INFO,
            "waitlist.notified",
            f"Waitlist entry {entry_id} offered bay {resource_id} at {start_time}",
            entry_id=entry_id,
            resource_id=resource_id,
            start_time=start_time
        )

    # ---------- sync ----------

    def sync_event(self, event: str, msg: str, level: int = logging.INFO, **data):
        self.event(level, f"sync.{event}", msg, **data)

    def record_pushed(self, collection: str, record_id: str, remote_key: Optional[str], operation: str):
        self.sync_event(
            "pushed",
            f"Pushed {collection}/{record_id} ({operation})",
            level=logging.DEBUG,
            collection=collection,
            record_id=record_id,
            remote_key=remote_key,
            operation=operation
        )

    def push_failed(self, collection: str, record_id: str, attempts: int, error: str, final: bool):
        self.sync_event(
            "push_failed",
            f"Push of {collection}/{record_id} failed (attempt {attempts}): {error}",
            level=logging.ERROR if final else logging.WARNING,
            collection=collection,
            record_id=record_id,
            attempts=attempts,
            final=final
        )

    def record_rejected(self, collection: str, record_id: Optional[str], reason: str):
        self.sync_event(
            "record_rejected",
            f"Skipping remote {collection} record {record_id}: {reason}",
            level=logging.WARNING,
            collection=collection,
            record_id=record_id,
            reason=reason
        )

    def reconciliation_conflict(self, booking_a: str, booking_b: str, resource_id: int, on_date):
        self.sync_event(
            "conflict",
            f"Reconciliation conflict: bookings {booking_a} and {booking_b} overlap on bay {resource_id} {on_date}",
            level=logging.WARNING,
            booking_a=booking_a,
            booking_b=booking_b,
            resource_id=resource_id,
            date=on_date
        )

    def connectivity_changed(self, online: bool):
        self.sync_event(
            "connectivity",
            "Remote store reachable again" if online else "Remote store unreachable, working offline",
            level=logging.INFO if online else logging.WARNING,
            online=online
        )

    # ---------- api ----------

    def api_request(self, method: str, path: str, status_code: int, duration_ms: float):
        self.event(
            logging.INFO,
            "api.request",
            f"{method} {path} - {status_code}",
            method=method,
            path=path,
            status_code=status_code,
            duration_ms=duration_ms
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    terminal_id: str = "",
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        terminal_id: stamped on every record
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JSONFormatter(terminal_id) if json_format else TextFormatter(terminal_id))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("baybook").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logging.getLogger(logger_name).handlers = [handler]

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str):
    request_id_var.set(request_id)


def clear_request_context():
    request_id_var.set('')
