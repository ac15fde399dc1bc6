from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.base import Base
from app.utils.clock import utcnow

GOOGLE_CALENDAR_PROVIDER = "google_calendar"


class ConnectionStatus:
    CONNECTED = "connected"
    REAUTH_REQUIRED = "reauth_required"
    DISCONNECTED = "disconnected"


class CalendarIntegration(Base):
    """
    A user's connection to the remote calendar provider.

    Tokens are stored Fernet-encrypted. Disconnecting only flips ``is_active``;
    rows are kept for audit and removed only with the owning account.
    """
    __tablename__ = "calendar_integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_integration_user_provider"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    provider = Column(String, nullable=False, default=GOOGLE_CALENDAR_PROVIDER)
    is_active = Column(Boolean, default=True, nullable=False)

    access_token = Column(Text, nullable=True)  # encrypted
    refresh_token = Column(Text, nullable=True)  # encrypted
    token_expiry = Column(DateTime, nullable=True)  # naive UTC
    scopes = Column(String, nullable=True)
    connection_status = Column(String, nullable=True)

    default_calendar_id = Column(String, nullable=False, default="primary")

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    webhook_channels = relationship(
        "WebhookChannel", back_populates="integration", cascade="all, delete-orphan"
    )
