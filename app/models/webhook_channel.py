from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.utils.clock import utcnow


class WebhookChannel(Base):
    """An active push-notification subscription on one remote calendar."""
    __tablename__ = "webhook_channels"

    id = Column(Integer, primary_key=True, index=True)
    channel_id = Column(String, nullable=False, unique=True, index=True)
    resource_id = Column(String, nullable=False)
    calendar_id = Column(String, nullable=False)
    expiration = Column(DateTime, nullable=False, index=True)  # naive UTC
    integration_id = Column(
        Integer,
        ForeignKey("calendar_integrations.id", ondelete="CASCADE"),
        nullable=False,
    )
    last_notified_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    integration = relationship("CalendarIntegration", back_populates="webhook_channels")
