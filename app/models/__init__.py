# app/models/__init__.py
from app.models.calendar_integration import (
    CalendarIntegration,
    ConnectionStatus,
    GOOGLE_CALENDAR_PROVIDER,
)
from app.models.event_link import EventLink
from app.models.webhook_channel import WebhookChannel
from app.models.task import Task
