"""
Router for conflict detection and resolution suggestions.
"""

from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException

from tetrix.api import schemas
from tetrix.api.dependencies import get_scheduling_service
from tetrix.api.errors import http_error
from tetrix.platform.logging import get_logger
from tetrix.scheduling.errors import SchedulingError
from tetrix.scheduling.models import EntryType
from tetrix.scheduling.service import SchedulingService

logger = get_logger(__name__)

router = APIRouter()

def _conflicts(conflicts) -> schemas.ConflictListResponse:
    return schemas.ConflictListResponse(
        conflicts=[schemas.ConflictSchema.from_conflict(c) for c in conflicts]
    )

@router.get("/allocation/{entry_id}/full", response_model=schemas.AllocationReportResponse)
def analyze_allocation(
    entry_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """Conflicts involving one ledger row, with ranked suggestions."""
    try:
        report = service.analyze_allocation(entry_id)
    except SchedulingError as e:
        raise http_error(e)
    return schemas.AllocationReportResponse(
        entry=schemas.EntryResponse.from_entry(report.entry),
        conflicts=[schemas.ConflictSchema.from_conflict(c) for c in report.conflicts],
        suggestions=[schemas.SuggestionSchema.from_suggestion(s) for s in report.suggestions],
    )

@router.post("/detect/allocation/{entry_id}", response_model=schemas.ConflictListResponse)
def detect_for_allocation(
    entry_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    try:
        conflicts = service.detect_for_entry(entry_id)
    except SchedulingError as e:
        raise http_error(e)
    return _conflicts(conflicts)

@router.post("/detect/block/{entry_id}", response_model=schemas.ConflictListResponse)
def detect_for_block(
    entry_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    entry = service.ledger.get_entry(entry_id)
    if entry is None or entry.entry_type != EntryType.BLOCK:
        raise HTTPException(status_code=404, detail="Block not found")
    try:
        conflicts = service.detect_for_entry(entry_id)
    except SchedulingError as e:
        raise http_error(e)
    return _conflicts(conflicts)

@router.get("/translator/{translator_id}", response_model=schemas.ConflictListResponse)
def detect_for_translator(
    translator_id: str,
    start: date,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
    end: Optional[date] = None,
):
    """Scan a translator's ledger over an inclusive date range."""
    try:
        conflicts = service.detect(translator_id, start, end or start)
    except SchedulingError as e:
        raise http_error(e)
    return _conflicts(conflicts)

@router.post("/suggest", response_model=schemas.SuggestResponse)
def suggest_resolutions(
    request: schemas.SuggestRequest,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """
    Rank remedies for the given conflicts.

    `candidate_ids` restricts reassignment to those translators; unknown
    ids are ignored.
    """
    candidates = None
    if request.candidate_ids is not None:
        candidates = [
            t for t in (service.roster.get_translator(i) for i in request.candidate_ids)
            if t is not None
        ]
    try:
        suggestions = service.suggest(
            [c.to_conflict() for c in request.conflicts],
            candidates=candidates,
        )
    except SchedulingError as e:
        raise http_error(e)
    return schemas.SuggestResponse(
        suggestions=[schemas.SuggestionSchema.from_suggestion(s) for s in suggestions]
    )

@router.post("/apply", response_model=schemas.TaskWriteResponse)
def apply_suggestion(
    request: schemas.ApplySuggestionRequest,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    try:
        result = service.apply_suggestion(
            request.suggestion.to_suggestion(),
            expected_version=request.expected_version,
            force=request.force,
        )
    except SchedulingError as e:
        logger.info("suggestion_rejected", suggestion_id=request.suggestion.id, code=e.code)
        raise http_error(e)
    return schemas.write_response(result)
