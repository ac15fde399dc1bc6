# app/services/task_service.py
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from app import schemas
from app.models.task import Task
from app.repositories.task_repository import TaskRepository
from app.services.calendar_sync_service import CalendarSyncService, MirrorResult

import logging

logger = logging.getLogger(__name__)


class TaskService:
    """
    Task operations that carry a calendar side effect.

    The task write always succeeds on its own; the calendar mirror result is
    returned next to it so the caller can surface a warning.
    """

    def __init__(self, db: Session, sync_service: Optional[CalendarSyncService] = None):
        self.db = db
        self.repository = TaskRepository(db)
        self.sync_service = sync_service or CalendarSyncService(db)

    def get_tasks(self, user_id: str) -> List[Task]:
        return self.repository.list(user_id=user_id)

    def get_task(self, user_id: str, task_id: int) -> Optional[Task]:
        return self.repository.get_user_task_by_id(user_id, task_id)

    def create_task(
        self, user_id: str, task_data: schemas.TaskCreate
    ) -> Tuple[Task, MirrorResult]:
        """Create a task and mirror it if it opted into the calendar."""
        task = self.repository.create_task(user_id, task_data)
        result = self.sync_service.mirror_task(user_id, task)
        logger.info(f"Created task {task.id} (calendar: {result.status.value})")
        return task, result

    def update_task(
        self, user_id: str, task_id: int, update_data: schemas.TaskUpdate
    ) -> Optional[Tuple[Task, MirrorResult]]:
        task = self.repository.get_user_task_by_id(user_id, task_id)
        if not task:
            return None

        task = self.repository.update_task(task, update_data)
        result = self.sync_service.mirror_task(user_id, task)
        return task, result

    def delete_task(self, user_id: str, task_id: int) -> Optional[MirrorResult]:
        """Remove the remote event first, then the task. None if no such task."""
        task = self.repository.get_user_task_by_id(user_id, task_id)
        if not task:
            return None

        result = self.sync_service.unmirror_task(user_id, task_id)
        task = self.repository.get_user_task_by_id(user_id, task_id)
        if task:
            self.repository.delete_task(task)
        logger.info(f"Deleted task {task_id} (calendar: {result.status.value})")
        return result
