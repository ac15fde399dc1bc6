# app/api/routes/webhooks.py
import json
import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request
from pydantic import ValidationError

from app import schemas
from app.core.exceptions import BusinessException
from app.core.logging import log_context
from app.db.session import session_scope
from app.services.calendar_sync_service import CalendarSyncService, PushNotification

router = APIRouter()
logger = logging.getLogger(__name__)


def process_calendar_notification(notification: PushNotification) -> None:
    """Apply a notification outside the request, on its own session."""
    with log_context(channel_id=notification.channel_id):
        try:
            with session_scope() as db:
                result = CalendarSyncService(db).handle_notification(notification)
            logger.info(
                f"Notification processed: outcome={result.outcome.value} "
                f"tasks={result.task_ids}"
            )
        except BusinessException as e:
            logger.warning(f"Notification processing failed: {e.code}")
        except Exception as e:
            logger.error(f"Error processing calendar webhook: {e}", exc_info=True)


async def _read_notification(request: Request) -> Optional[PushNotification]:
    headers = request.headers
    channel_id = headers.get("X-Goog-Channel-ID")
    if channel_id:
        return PushNotification(
            channel_id=channel_id,
            resource_id=headers.get("X-Goog-Resource-ID"),
            resource_state=headers.get("X-Goog-Resource-State"),
            channel_token=headers.get("X-Goog-Channel-Token"),
            message_number=headers.get("X-Goog-Message-Number"),
        )

    body = await request.body()
    if not body:
        return None
    try:
        payload = schemas.WebhookNotification.model_validate(json.loads(body))
    except (ValueError, ValidationError):
        logger.warning("Ignoring webhook with unreadable body")
        return None
    if not payload.channel_id:
        return None
    return PushNotification(
        channel_id=payload.channel_id,
        resource_id=payload.resource_id,
        resource_state=payload.resource_state,
        channel_token=payload.token,
        message_number=payload.message_number,
    )


@router.post("/google-calendar")
async def google_calendar_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Push notification receiver.

    Always acknowledged with 200 so the provider does not retry or disable
    the channel; the notification is processed after the response is sent.
    """
    notification = await _read_notification(request)
    if notification is None:
        logger.warning("Webhook request without a channel id")
    else:
        background_tasks.add_task(process_calendar_notification, notification)
    return {"success": True}
