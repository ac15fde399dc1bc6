# app/schemas/task.py
from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

RECURRENCE_PATTERNS = ("DAILY", "WEEKLY", "MONTHLY", "YEARLY")
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class TaskBase(BaseModel):
    text: str = Field(..., min_length=1)
    due_date: Optional[date] = None
    completed: bool = False
    add_to_calendar: bool = False
    event_time: Optional[str] = Field(None, pattern=TIME_OF_DAY_PATTERN)
    event_duration: Optional[int] = Field(None, gt=0, le=24 * 60)
    reminder_minutes: Optional[int] = Field(None, ge=0)
    recurrence_pattern: Optional[str] = None
    recurrence_count: Optional[int] = Field(None, gt=0)
    recurrence_end_date: Optional[date] = None

    @field_validator("recurrence_pattern")
    def normalize_pattern(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.upper()
        if v not in RECURRENCE_PATTERNS:
            raise ValueError(f"recurrence_pattern must be one of {RECURRENCE_PATTERNS}")
        return v


class TaskCreate(TaskBase):
    pass


class TaskUpdate(TaskBase):
    text: Optional[str] = Field(None, min_length=1)
    completed: Optional[bool] = None
    add_to_calendar: Optional[bool] = None


class CalendarSyncResult(BaseModel):
    """Outcome of mirroring a task to the calendar; never fails the task call."""
    status: str
    event_id: Optional[str] = None
    warning: Optional[str] = None


class Task(TaskBase):
    id: int
    user_id: str
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class TaskWithSync(Task):
    calendar_sync: Optional[CalendarSyncResult] = None
