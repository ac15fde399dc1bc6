from sqlalchemy import Column, Date, DateTime, Integer, String

from app.db.base import Base
from app.utils.clock import utcnow


class EventLink(Base):
    """
    Join record between a local task and its mirrored remote event.

    ``task_id`` is unique: a task has at most one active mirror.
    """
    __tablename__ = "event_links"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, nullable=False, unique=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    calendar_id = Column(String, nullable=False)
    event_id = Column(String, nullable=False, index=True)

    # Scheduling snapshot of what was last written to / read from the remote
    event_date = Column(Date, nullable=True)
    event_time = Column(String(5), nullable=True)  # HH:MM
    event_duration = Column(Integer, nullable=True)  # minutes
    reminder_minutes = Column(Integer, nullable=True)
    recurrence_pattern = Column(String, nullable=True)
    recurrence_count = Column(Integer, nullable=True)
    recurrence_end_date = Column(Date, nullable=True)

    remote_etag = Column(String, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
