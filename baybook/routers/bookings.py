from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List, Optional
from datetime import date
import logging

from ..errors import ErrorCode
from ..schemas.booking import (
    BookingResponse, BookingCreate, BookingUpdate, BookingCancel,
    RecurringBookingCreate, RecurringBookingResponse,
    AvailabilityResponse, ResourceAvailability, SlotResponse, PriceQuoteResponse
)
from ..services.booking_ledger import BookingLedger, BookingRequest
from ..utils.dependencies import get_ledger, raise_for_result

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bookings", tags=["Bookings"])


def _availability(ledger: BookingLedger, check_date: date, duration_units: int = 1) -> AvailabilityResponse:
    slots = ledger.availability_for_date(check_date, duration_units)
    resources = []
    for resource in ledger.catalog.resources:
        resources.append(ResourceAvailability(
            resource_id=resource.id,
            label=resource.label,
            category=resource.category,
            capacity=resource.capacity,
            slots=[SlotResponse(**slot.to_dict()) for slot in slots.get(resource.id, [])]
        ))
    return AvailabilityResponse(date=check_date, duration_units=duration_units, resources=resources)


def _raise(result, ledger: BookingLedger, check_date: Optional[date] = None, duration_units: int = 1):
    """SlotUnavailable re-presents the day's availability so staff can pick another opening."""
    extra = None
    if result.error_code == ErrorCode.SLOT_UNAVAILABLE and check_date is not None:
        extra = {"availability": _availability(ledger, check_date, duration_units).model_dump(mode="json")}
    raise_for_result(result, extra)


def _request_from(data: BookingCreate) -> BookingRequest:
    return BookingRequest(
        customer_name=data.customer_name,
        customer_id=data.customer_id,
        resource_id=data.resource_id,
        date=data.date,
        start_time=data.start_time,
        duration_units=data.duration_units,
        players=data.players,
        member_tier=data.member_tier,
        is_prepaid=data.is_prepaid,
        payment_reference=data.payment_reference,
        notes=data.notes,
        source=data.source,
        booking_id=data.id,
    )


@router.get("", response_model=List[BookingResponse])
def list_bookings(
    date: date = Query(..., description="Calendar day"),
    resource_id: Optional[int] = Query(None),
    ledger: BookingLedger = Depends(get_ledger)
):
    return ledger.bookings_for_date(date, resource_id)


@router.get("/availability", response_model=AvailabilityResponse)
def get_availability(
    date: date = Query(...),
    duration_units: int = Query(1, gt=0),
    ledger: BookingLedger = Depends(get_ledger)
):
    """Day grid per bay with availability and peak flags."""
    return _availability(ledger, date, duration_units)


@router.get("/quote", response_model=PriceQuoteResponse)
def quote_price(
    date: date = Query(...),
    start_time: str = Query(...),
    duration_units: int = Query(..., gt=0),
    member_tier: Optional[str] = Query(None),
    ledger: BookingLedger = Depends(get_ledger)
):
    try:
        price = ledger.pricing.compute_price(duration_units, date, start_time, member_tier)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return PriceQuoteResponse(**price.__dict__)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, ledger: BookingLedger = Depends(get_ledger)):
    booking = ledger.get(booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(booking_data: BookingCreate, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.create(_request_from(booking_data))
    if not result.success:
        _raise(result, ledger, booking_data.date, booking_data.duration_units)
    return result.booking


@router.post("/recurring", response_model=RecurringBookingResponse, status_code=status.HTTP_201_CREATED)
def create_recurring_booking(series_data: RecurringBookingCreate, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.create_recurring(
        _request_from(series_data),
        series_data.pattern.value,
        count=series_data.count,
        end_date=series_data.end_date
    )
    raise_for_result(result)
    series = result.booking
    return RecurringBookingResponse(
        recurring_id=series.recurring_id,
        created=[BookingResponse.model_validate(b) for b in series.created],
        skipped=series.skipped
    )


@router.post("/recurring/{recurring_id}/cancel", response_model=List[BookingResponse])
def cancel_recurring_series(
    recurring_id: str,
    cancel_data: BookingCancel,
    from_date: Optional[date] = Query(None),
    ledger: BookingLedger = Depends(get_ledger)
):
    results = ledger.cancel_recurring_series(recurring_id, cancel_data.reason, from_date)
    return [r.booking for r in results if r.success]


@router.patch("/{booking_id}", response_model=BookingResponse)
def update_booking(booking_id: str, booking_data: BookingUpdate, ledger: BookingLedger = Depends(get_ledger)):
    changes = booking_data.model_dump(exclude_unset=True)
    result = ledger.update(booking_id, changes)
    if not result.success:
        current = ledger.get(booking_id)
        check_date = changes.get("date") or (current.date if current else None)
        duration = changes.get("duration_units") or (current.duration_units if current else 1)
        _raise(result, ledger, check_date, duration)
    return result.booking


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(booking_id: str, cancel_data: BookingCancel, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.cancel(booking_id, cancel_data.reason)
    raise_for_result(result)
    return result.booking


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
def check_in(booking_id: str, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.check_in(booking_id)
    raise_for_result(result)
    return result.booking


@router.post("/{booking_id}/check-out", response_model=BookingResponse)
def check_out(booking_id: str, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.check_out(booking_id)
    raise_for_result(result)
    return result.booking


@router.post("/{booking_id}/no-show", response_model=BookingResponse)
def mark_no_show(booking_id: str, ledger: BookingLedger = Depends(get_ledger)):
    result = ledger.mark_no_show(booking_id)
    raise_for_result(result)
    return result.booking


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
def purge_booking(booking_id: str, ledger: BookingLedger = Depends(get_ledger)):
    """Physically remove an already cancelled booking from the local cache."""
    result = ledger.purge(booking_id)
    raise_for_result(result)
    logger.info(f"Booking {booking_id} purged via API")
