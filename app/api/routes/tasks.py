# app/api/routes/tasks.py
import logging
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException, status

from app import schemas
from app.api import deps
from app.services.task_service import TaskService

router = APIRouter()
logger = logging.getLogger(__name__)


def _with_sync(task, result) -> schemas.TaskWithSync:
    response = schemas.TaskWithSync.model_validate(task)
    response.calendar_sync = schemas.CalendarSyncResult(**result.as_dict())
    return response


@router.get("", response_model=List[schemas.Task])
def read_tasks(
    user_id: str = Depends(deps.get_current_user),
    task_service: TaskService = Depends(deps.get_task_service),
) -> Any:
    """Retrieve the user's tasks."""
    return task_service.get_tasks(user_id)


@router.post("", response_model=schemas.TaskWithSync, status_code=status.HTTP_201_CREATED)
def create_task(
    task_in: schemas.TaskCreate,
    user_id: str = Depends(deps.get_current_user),
    task_service: TaskService = Depends(deps.get_task_service),
) -> Any:
    """Create a task, mirroring it to the calendar when it opts in."""
    task, result = task_service.create_task(user_id, task_in)
    return _with_sync(task, result)


@router.patch("/{task_id}", response_model=schemas.TaskWithSync)
def update_task(
    task_id: int,
    task_in: schemas.TaskUpdate,
    user_id: str = Depends(deps.get_current_user),
    task_service: TaskService = Depends(deps.get_task_service),
) -> Any:
    """Update a task and its calendar event."""
    updated = task_service.update_task(user_id, task_id, task_in)
    if not updated:
        raise HTTPException(status_code=404, detail="Task not found")
    task, result = updated
    return _with_sync(task, result)


@router.delete("/{task_id}")
def delete_task(
    task_id: int,
    user_id: str = Depends(deps.get_current_user),
    task_service: TaskService = Depends(deps.get_task_service),
) -> Any:
    """Delete a task and its calendar event."""
    result = task_service.delete_task(user_id, task_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return {"success": True, "calendar_sync": result.as_dict()}
