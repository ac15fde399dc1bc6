# app/schemas/__init__.py
from app.schemas.token import TokenPayload
from app.schemas.task import (
    Task,
    TaskCreate,
    TaskUpdate,
    TaskWithSync,
    CalendarSyncResult,
)
from app.schemas.calendar import (
    AvailabilityResponse,
    IntegrationStatus,
    IntegrationUpdate,
    OAuthFinishRequest,
    OAuthFinishResponse,
    OAuthStartResponse,
    WebhookNotification,
)
