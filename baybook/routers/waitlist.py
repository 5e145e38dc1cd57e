from fastapi import APIRouter, Depends, HTTPException, status, Query
from typing import List
from datetime import date

from ..schemas.waitlist import WaitlistCreate, WaitlistBooked, WaitlistResponse
from ..services.waitlist_matcher import WaitlistMatcher, WaitlistRequest
from ..utils.dependencies import get_waitlist, raise_for_result

router = APIRouter(prefix="/api/waitlist", tags=["Waitlist"])


@router.get("", response_model=List[WaitlistResponse])
@router.get("/", response_model=List[WaitlistResponse])
def list_entries(
    date: date = Query(..., description="Calendar day"),
    waitlist: WaitlistMatcher = Depends(get_waitlist)
):
    """Entries for a day in queue order"""
    return waitlist.entries_for_date(date)


@router.get("/{entry_id}", response_model=WaitlistResponse)
def get_entry(entry_id: str, waitlist: WaitlistMatcher = Depends(get_waitlist)):
    entry = waitlist.get(entry_id)
    if not entry:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Waitlist entry not found")
    return entry


@router.post("", response_model=WaitlistResponse, status_code=status.HTTP_201_CREATED)
def add_entry(entry_data: WaitlistCreate, waitlist: WaitlistMatcher = Depends(get_waitlist)):
    result = waitlist.add_entry(WaitlistRequest(**entry_data.model_dump()))
    raise_for_result(result)
    return result.entry


@router.post("/{entry_id}/booked", response_model=WaitlistResponse)
def mark_booked(entry_id: str, data: WaitlistBooked, waitlist: WaitlistMatcher = Depends(get_waitlist)):
    result = waitlist.mark_booked(entry_id, data.booking_id)
    raise_for_result(result)
    return result.entry


@router.post("/{entry_id}/expire", response_model=WaitlistResponse)
def expire_entry(entry_id: str, waitlist: WaitlistMatcher = Depends(get_waitlist)):
    result = waitlist.expire(entry_id)
    raise_for_result(result)
    return result.entry
