# app/repositories/webhook_channel_repository.py
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session, joinedload

from app.models.calendar_integration import CalendarIntegration
from app.models.webhook_channel import WebhookChannel
from app.repositories.base_repository import BaseRepository


class WebhookChannelRepository(BaseRepository[WebhookChannel]):
    """Repository for push-notification channels."""

    def __init__(self, db: Session):
        super().__init__(WebhookChannel, db)

    def get_by_channel_id(self, channel_id: str) -> Optional[WebhookChannel]:
        return (
            self.db.query(WebhookChannel)
            .options(joinedload(WebhookChannel.integration))
            .filter(WebhookChannel.channel_id == channel_id)
            .first()
        )

    def list_expiring_before(self, cutoff: datetime) -> List[WebhookChannel]:
        return (
            self.db.query(WebhookChannel)
            .filter(WebhookChannel.expiration <= cutoff)
            .order_by(WebhookChannel.expiration)
            .all()
        )

    def list_by_user_id(self, user_id: str) -> List[WebhookChannel]:
        return (
            self.db.query(WebhookChannel)
            .join(CalendarIntegration)
            .filter(CalendarIntegration.user_id == user_id)
            .all()
        )

    def delete_by_channel_id(self, channel_id: str) -> bool:
        deleted = (
            self.db.query(WebhookChannel)
            .filter(WebhookChannel.channel_id == channel_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted > 0

    def mark_notified(self, channel: WebhookChannel, at: datetime) -> WebhookChannel:
        channel.last_notified_at = at
        return self.save(channel)
