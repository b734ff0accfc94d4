"""
Router for distribution previews.
"""

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends

from tetrix.api import schemas
from tetrix.api.dependencies import get_scheduling_service
from tetrix.api.errors import http_error
from tetrix.scheduling.errors import SchedulingError
from tetrix.scheduling.service import SchedulingService

router = APIRouter()

@router.post("/preview", response_model=schemas.DistributionResponse)
def preview_distribution(
    request: schemas.PreviewRequest,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """
    Compute a distribution without writing it.

    Past or overflow dates come back in `warning`; an INFEASIBLE outcome
    is returned as data with the unallocated hours.
    """
    task = request.to_task(request.id or f"preview-{uuid.uuid4()}")
    manual = [s.to_slice() for s in request.manual_allocation] if request.manual_allocation else None
    try:
        result = service.preview(task, manual=manual)
    except SchedulingError as e:
        raise http_error(e)
    return schemas.DistributionResponse.from_result(result)
