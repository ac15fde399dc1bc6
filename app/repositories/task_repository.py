# app/repositories/task_repository.py
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from app import schemas
from app.models.task import Task
from app.repositories.base_repository import BaseRepository


class TaskRepository(BaseRepository[Task]):
    """Repository for task operations."""

    def __init__(self, db: Session):
        super().__init__(Task, db)

    def get_user_task_by_id(self, user_id: str, task_id: int) -> Optional[Task]:
        """Get a specific task for a user."""
        return (
            self.db.query(Task)
            .filter(Task.id == task_id, Task.user_id == user_id)
            .first()
        )

    def create_task(self, user_id: str, task_data: schemas.TaskCreate) -> Task:
        task = Task(**task_data.model_dump(), user_id=user_id)
        return self.save(task)

    def update_task(self, task: Task, task_data: schemas.TaskUpdate) -> Task:
        for field, value in task_data.model_dump(exclude_unset=True).items():
            if hasattr(task, field):
                setattr(task, field, value)
        return self.save(task)

    def delete_task(self, task: Task) -> bool:
        self.db.delete(task)
        self.db.commit()
        return True

    def mark_completed(self, task: Task) -> Task:
        task.completed = True
        return self.save(task)

    def apply_remote_changes(
        self,
        task: Task,
        *,
        text: Optional[str] = None,
        due_date: Optional[date] = None,
        event_time: Optional[str] = None,
        event_duration: Optional[int] = None,
    ) -> Task:
        """Write fields received from the remote calendar onto the task."""
        if text:
            task.text = text
        if due_date is not None:
            task.due_date = due_date
        if event_time is not None:
            task.event_time = event_time
        if event_duration is not None:
            task.event_duration = event_duration
        return self.save(task)
