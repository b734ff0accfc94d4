"""
Router for task writes.
"""

import uuid
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, status

from tetrix.api import schemas
from tetrix.api.dependencies import get_scheduling_service
from tetrix.api.errors import http_error
from tetrix.platform.logging import get_logger
from tetrix.scheduling.errors import SchedulingError
from tetrix.scheduling.models import DistributionSlice
from tetrix.scheduling.service import SchedulingService

logger = get_logger(__name__)

router = APIRouter()

def _manual(
    auto_distribute: bool,
    lines: Optional[List[schemas.SliceSchema]],
) -> Optional[List[DistributionSlice]]:
    if auto_distribute and not lines:
        return None
    if not lines:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_INPUT", "message": "Manual distribution requires an allocation list"},
        )
    return [line.to_slice() for line in lines]

@router.post("/", response_model=schemas.TaskWriteResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    request: schemas.TaskCreate,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """
    Create a task and record its allocation.

    Without `confirm_past_dates`, a distribution touching past or overflow
    dates is not written; the response carries `requires_confirmation`.
    """
    task = request.to_task(request.id or str(uuid.uuid4()))
    manual = _manual(request.auto_distribute, request.manual_allocation)
    try:
        result = service.submit_task(
            task,
            manual=manual,
            force=request.force,
            confirm_past_dates=request.confirm_past_dates,
        )
    except SchedulingError as e:
        logger.info("task_rejected", task_id=task.id, code=e.code)
        raise http_error(e)
    return schemas.write_response(result)

@router.get("/{task_id}", response_model=schemas.TaskResponse)
def get_task(
    task_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    task = service.task_store.get(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return schemas.TaskResponse.from_task(task)

@router.put("/{task_id}", response_model=schemas.TaskWriteResponse)
def update_task(
    task_id: str,
    request: schemas.TaskUpdate,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    """Replace a task and its allocation (optimistic locking on expected_version)."""
    task = request.to_task(task_id, version=request.expected_version)
    manual = _manual(request.auto_distribute, request.manual_allocation)
    try:
        result = service.update_task(
            task,
            expected_version=request.expected_version,
            manual=manual,
            force=request.force,
            confirm_past_dates=request.confirm_past_dates,
        )
    except SchedulingError as e:
        logger.info("task_rejected", task_id=task_id, code=e.code)
        raise http_error(e)
    return schemas.write_response(result)

@router.delete("/{task_id}")
def delete_task(
    task_id: str,
    service: Annotated[SchedulingService, Depends(get_scheduling_service)],
):
    try:
        released = service.delete_task(task_id)
    except SchedulingError as e:
        raise http_error(e)
    return {"deleted": task_id, "released_entries": released}
