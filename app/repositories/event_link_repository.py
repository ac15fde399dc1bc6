# app/repositories/event_link_repository.py
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.models.event_link import EventLink
from app.repositories.base_repository import BaseRepository
from app.utils.clock import utcnow


class EventLinkRepository(BaseRepository[EventLink]):
    """Repository for task to remote event links."""

    def __init__(self, db: Session):
        super().__init__(EventLink, db)

    def get_by_task_id(self, task_id: int) -> Optional[EventLink]:
        return self.get_by(task_id=task_id)

    def get_by_event_id(self, event_id: str, user_id: str = None) -> Optional[EventLink]:
        query = self.db.query(EventLink).filter(EventLink.event_id == event_id)
        if user_id is not None:
            query = query.filter(EventLink.user_id == user_id)
        return query.first()

    def upsert(
        self,
        *,
        task_id: int,
        user_id: str,
        calendar_id: str,
        event_id: str,
        fields: Dict[str, Any],
        remote_etag: Optional[str] = None,
    ) -> EventLink:
        """Create the task's link or repoint the existing one."""
        link = self.get_by_task_id(task_id)
        if link is None:
            link = EventLink(task_id=task_id, user_id=user_id)

        link.calendar_id = calendar_id
        link.event_id = event_id
        for key, value in fields.items():
            if hasattr(link, key):
                setattr(link, key, value)
        link.remote_etag = remote_etag
        link.last_synced_at = utcnow()
        return self.save(link)

    def delete_link(self, link: EventLink) -> None:
        self.db.delete(link)
        self.db.commit()

