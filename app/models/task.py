from sqlalchemy import Boolean, Column, Date, DateTime, Integer, String, Text

from app.db.base import Base
from app.utils.clock import utcnow


class Task(Base):
    """
    Task record owned by the task collaborator.

    Only the calendar opt-in fields matter to the sync engine.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    text = Column(Text, nullable=False)
    due_date = Column(Date, nullable=True)
    completed = Column(Boolean, default=False, nullable=False)

    add_to_calendar = Column(Boolean, default=False, nullable=False)
    event_time = Column(String(5), nullable=True)  # HH:MM
    event_duration = Column(Integer, nullable=True)  # minutes
    reminder_minutes = Column(Integer, nullable=True)
    recurrence_pattern = Column(String, nullable=True)  # DAILY, WEEKLY, ...
    recurrence_count = Column(Integer, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
