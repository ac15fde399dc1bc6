# app/core/monitoring.py
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("app.monitoring")


class CalendarEventType(str, enum.Enum):
    CONNECTED = "calendar_connected"
    DISCONNECTED = "calendar_disconnected"
    EVENT_CREATED = "calendar_event_created"
    EVENT_UPDATED = "calendar_event_updated"
    EVENT_DELETED = "calendar_event_deleted"
    EVENT_SYNCED = "calendar_event_synced"
    WEBHOOK_CREATED = "calendar_webhook_created"
    WEBHOOK_DELETED = "calendar_webhook_deleted"
    ERROR = "calendar_error"


def track_event(
    event_type: CalendarEventType,
    user_id: Optional[str],
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Record a calendar lifecycle event.

    Events are emitted as structured log records on the ``app.monitoring``
    logger; the JSON formatter picks up the ``extras`` mapping so operators
    can filter on ``event_type`` in production.

    Details must never contain event text or credentials.
    """
    record = {
        "event_type": event_type.value,
        "user_id": user_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": details or {},
    }
    level = logging.WARNING if event_type == CalendarEventType.ERROR else logging.INFO
    logger.log(level, f"[MONITORING] {event_type.value}", extra={"extras": record})
    return record
