"""
Router for the per-day ledger view.
"""

from datetime import date, timedelta
from typing import Annotated, Optional

from fastapi import APIRouter, Depends

from tetrix.api import schemas
from tetrix.api.dependencies import get_scheduling_service
from tetrix.api.errors import http_error
from tetrix.scheduling.errors import SchedulingError
from tetrix.scheduling.service import SchedulingService

router = APIRouter()

DEFAULT_SPAN_DAYS = 13

@router.get("/{translator_id}", response_model=schemas.LedgerResponse)
def get_ledger(
    translator_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
    start: Optional[date] = None,
    end: Optional[date] = None,
):
    """Capacity, bookings and rows per day; defaults to the next two weeks."""
    start = start or service.clock().date()
    end = end or start + timedelta(days=DEFAULT_SPAN_DAYS)
    try:
        days = service.ledger_view(translator_id, start, end)
    except SchedulingError as e:
        raise http_error(e)
    return schemas.LedgerResponse(
        translator_id=translator_id,
        days=[
            schemas.LedgerDayResponse(
                date=day.date,
                capacity=day.capacity,
                booked=day.booked,
                available=day.available,
                entries=[schemas.EntryResponse.from_entry(e) for e in day.entries],
            )
            for day in days
        ],
    )
