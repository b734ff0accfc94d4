"""
Router for blocked time ranges.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from tetrix.api import schemas
from tetrix.api.dependencies import get_scheduling_service
from tetrix.api.errors import http_error
from tetrix.scheduling.errors import SchedulingError
from tetrix.scheduling.models import parse_hour
from tetrix.scheduling.service import SchedulingService

router = APIRouter()

@router.post("/", response_model=schemas.BlockReportResponse, status_code=status.HTTP_201_CREATED)
def create_block(
    request: schemas.BlockCreate,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """
    Block a time range. The block is always recorded; any conflict it
    causes is returned with suggestions.
    """
    try:
        report = service.add_block(
            request.translator_id,
            request.date,
            parse_hour(request.start),
            parse_hour(request.end),
            reason=request.reason,
        )
    except SchedulingError as e:
        raise http_error(e)
    return schemas.BlockReportResponse(
        block=schemas.EntryResponse.from_entry(report.block),
        conflicts=[schemas.ConflictSchema.from_conflict(c) for c in report.conflicts],
        suggestions=[schemas.SuggestionSchema.from_suggestion(s) for s in report.suggestions],
    )

@router.delete("/{entry_id}")
def delete_block(
    entry_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    try:
        removed = service.remove_block(entry_id)
    except SchedulingError as e:
        raise http_error(e)
    return {"deleted": removed.id}
