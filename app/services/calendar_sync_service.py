# app/services/calendar_sync_service.py
import enum
import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    BusinessException,
    IntegrationMissing,
    RemoteRejected,
    UnknownChannel,
)
from app.core.monitoring import CalendarEventType, track_event
from app.core.security import verify_channel_token
from app.models.event_link import EventLink
from app.models.task import Task
from app.models.webhook_channel import WebhookChannel
from app.repositories.event_link_repository import EventLinkRepository
from app.repositories.integration_repository import IntegrationRepository
from app.repositories.task_repository import TaskRepository
from app.repositories.webhook_channel_repository import WebhookChannelRepository
from app.utils.clock import utcnow
from app.utils.recurrence import build_recurrence_rule

logger = logging.getLogger(__name__)

# Calendar-level notifications without a previous one look back this far
DEFAULT_CHANGE_WINDOW = timedelta(hours=1)


class MirrorStatus(str, enum.Enum):
    SYNCED = "synced"
    REMOVED = "removed"
    SKIPPED = "skipped"
    NOT_CONNECTED = "not_connected"
    DEGRADED = "degraded"


@dataclass
class MirrorResult:
    status: MirrorStatus
    event_id: Optional[str] = None
    warning: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "event_id": self.event_id,
            "warning": self.warning,
        }


@dataclass
class PushNotification:
    """A push notification as delivered by the provider."""

    channel_id: str
    resource_id: Optional[str]
    resource_state: Optional[str]
    channel_token: Optional[str] = None
    message_number: Optional[str] = None


class NotificationOutcome(str, enum.Enum):
    IGNORED = "ignored"
    NOOP = "noop"
    SYNCED = "synced"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class NotificationResult:
    outcome: NotificationOutcome
    task_ids: List[int] = field(default_factory=list)
    reason: Optional[str] = None


def compute_event_window(
    due_date: date, event_time: Optional[str], duration_minutes: Optional[int]
) -> Tuple[datetime, datetime]:
    """Start and end of the event in the calendar's wall-clock time."""
    hours, minutes = (event_time or settings.DEFAULT_EVENT_TIME).split(":")
    start = datetime.combine(due_date, datetime.min.time()).replace(
        hour=int(hours), minute=int(minutes)
    )
    end = start + timedelta(minutes=duration_minutes or settings.DEFAULT_EVENT_DURATION)
    return start, end


def build_event_body(task: Task) -> Dict[str, Any]:
    """
    Event resource for a task.

    Raises:
        ValidationException: the task carries an unsupported recurrence pattern
    """
    start, end = compute_event_window(
        task.due_date, task.event_time, task.event_duration
    )
    time_zone = settings.CALENDAR_TIME_ZONE
    reminder_minutes = (
        task.reminder_minutes
        if task.reminder_minutes is not None
        else settings.DEFAULT_REMINDER_MINUTES
    )

    body: Dict[str, Any] = {
        "summary": task.text,
        "description": "Created from your task list",
        "start": {"dateTime": start.isoformat(), "timeZone": time_zone},
        "end": {"dateTime": end.isoformat(), "timeZone": time_zone},
        "reminders": {
            "useDefault": False,
            "overrides": (
                [{"method": "popup", "minutes": reminder_minutes}]
                if reminder_minutes > 0
                else []
            ),
        },
        "extendedProperties": {"private": {"taskId": str(task.id)}},
    }
    if task.recurrence_pattern:
        body["recurrence"] = [
            build_recurrence_rule(
                task.recurrence_pattern,
                task.recurrence_count,
                task.recurrence_end_date,
            )
        ]
    return body


def _link_fields(task: Task) -> Dict[str, Any]:
    return {
        "event_date": task.due_date,
        "event_time": task.event_time or settings.DEFAULT_EVENT_TIME,
        "event_duration": task.event_duration or settings.DEFAULT_EVENT_DURATION,
        "reminder_minutes": task.reminder_minutes,
        "recurrence_pattern": task.recurrence_pattern,
        "recurrence_count": task.recurrence_count,
        "recurrence_end_date": task.recurrence_end_date,
    }


def parse_event_schedule(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Extract due date, time of day and duration from an event resource.

    Timed events are converted to the calendar time zone. All-day events only
    yield a date.
    """
    start = event.get("start") or {}
    end = event.get("end") or {}
    if start.get("dateTime"):
        zone = ZoneInfo(settings.CALENDAR_TIME_ZONE)
        start_at = _parse_rfc3339(start["dateTime"]).astimezone(zone)
        schedule = {
            "due_date": start_at.date(),
            "event_time": start_at.strftime("%H:%M"),
            "event_duration": None,
        }
        if end.get("dateTime"):
            end_at = _parse_rfc3339(end["dateTime"]).astimezone(zone)
            minutes = int((end_at - start_at).total_seconds() // 60)
            if minutes > 0:
                schedule["event_duration"] = minutes
        return schedule
    if start.get("date"):
        return {
            "due_date": date.fromisoformat(start["date"]),
            "event_time": None,
            "event_duration": None,
        }
    return {"due_date": None, "event_time": None, "event_duration": None}


def _parse_rfc3339(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(settings.CALENDAR_TIME_ZONE))
    return parsed


class CalendarSyncService:
    """
    Keeps tasks and their remote calendar events in step.

    Both directions run under the per-task lock, so a local edit and a
    webhook for the same task never interleave. Remote-originated changes are
    written through the task repository and never mirrored back.
    """

    def __init__(self, db: Session, gateway=None, task_locks=None):
        if gateway is None:
            from app.integrations.google.calendar import CalendarGateway

            gateway = CalendarGateway(db)
        if task_locks is None:
            from app.services import get_task_locks

            task_locks = get_task_locks()
        self.db = db
        self.gateway = gateway
        self.task_locks = task_locks
        self.links = EventLinkRepository(db)
        self.tasks = TaskRepository(db)
        self.integrations = IntegrationRepository(db)
        self.channels = WebhookChannelRepository(db)

    # Task to remote

    def mirror_task(
        self,
        user_id: str,
        task: Task,
        cancel_event: Optional[threading.Event] = None,
    ) -> MirrorResult:
        """
        Bring the remote event in line with the task's calendar fields.

        Never raises: failures come back as ``degraded`` or ``not_connected``.
        """
        task_id = task.id
        with self.task_locks.hold(task_id):
            self.db.expire_all()
            try:
                return self._mirror(user_id, task, cancel_event)
            except IntegrationMissing as e:
                logger.info(f"Task {task_id} not mirrored: {e.message}")
                return MirrorResult(MirrorStatus.NOT_CONNECTED, warning=e.message)
            except BusinessException as e:
                return self._degraded(user_id, task_id, "mirror_task", e)
            except Exception as e:
                logger.error(
                    f"Unexpected error mirroring task {task_id}: {e}", exc_info=True
                )
                return self._degraded(user_id, task_id, "mirror_task", e)

    def unmirror_task(
        self,
        user_id: str,
        task_id: int,
        cancel_event: Optional[threading.Event] = None,
    ) -> MirrorResult:
        """
        Remove the task's remote event and its link ahead of a task deletion.

        The link is removed even when the remote delete fails.
        """
        with self.task_locks.hold(task_id):
            self.db.expire_all()
            link = self.links.get_by_task_id(task_id)
            if link is None:
                return MirrorResult(MirrorStatus.SKIPPED)

            event_id = link.event_id
            failure: Optional[BusinessException] = None
            try:
                self.gateway.delete_event(
                    user_id, link.calendar_id, event_id, cancel_event=cancel_event
                )
            except BusinessException as e:
                failure = e
            self.links.delete_link(link)

            if failure is not None:
                result = self._degraded(user_id, task_id, "unmirror_task", failure)
                result.event_id = event_id
                return result
            track_event(
                CalendarEventType.EVENT_DELETED,
                user_id,
                {"task_id": task_id, "event_id": event_id},
            )
            return MirrorResult(MirrorStatus.REMOVED, event_id=event_id)

    def _mirror(
        self, user_id: str, task: Task, cancel_event: Optional[threading.Event]
    ) -> MirrorResult:
        link = self.links.get_by_task_id(task.id)

        if task.add_to_calendar and task.due_date is not None:
            integration = self.integrations.get_active_by_user_id(user_id)
            if integration is None:
                raise IntegrationMissing("Google Calendar is not connected")

            body = build_event_body(task)
            event = None
            event_type = CalendarEventType.EVENT_CREATED
            calendar_id = integration.default_calendar_id or "primary"

            if link is not None:
                try:
                    event = self.gateway.update_event(
                        user_id,
                        link.calendar_id,
                        link.event_id,
                        body,
                        cancel_event=cancel_event,
                    )
                    calendar_id = link.calendar_id
                    event_type = CalendarEventType.EVENT_UPDATED
                except RemoteRejected as e:
                    if not e.is_not_found:
                        raise
                    logger.info(
                        f"Event {link.event_id} for task {task.id} is gone, recreating"
                    )

            if event is None:
                event = self.gateway.create_event(
                    user_id, calendar_id, body, cancel_event=cancel_event
                )

            self.links.upsert(
                task_id=task.id,
                user_id=user_id,
                calendar_id=calendar_id,
                event_id=event["id"],
                fields=_link_fields(task),
                remote_etag=event.get("etag"),
            )
            track_event(
                event_type, user_id, {"task_id": task.id, "event_id": event["id"]}
            )
            return MirrorResult(MirrorStatus.SYNCED, event_id=event["id"])

        if link is not None:
            event_id = link.event_id
            # A failed delete keeps the link so the next edit retries it
            self.gateway.delete_event(
                user_id, link.calendar_id, event_id, cancel_event=cancel_event
            )
            self.links.delete_link(link)
            track_event(
                CalendarEventType.EVENT_DELETED,
                user_id,
                {"task_id": task.id, "event_id": event_id},
            )
            return MirrorResult(MirrorStatus.REMOVED, event_id=event_id)

        return MirrorResult(MirrorStatus.SKIPPED)

    def _degraded(
        self, user_id: str, task_id: int, operation: str, error: Exception
    ) -> MirrorResult:
        message = getattr(error, "message", None) or "Calendar sync failed"
        logger.warning(
            f"{operation} degraded for task {task_id}: {type(error).__name__}"
        )
        track_event(
            CalendarEventType.ERROR,
            user_id,
            {
                "operation": operation,
                "task_id": task_id,
                "error": getattr(error, "code", type(error).__name__),
            },
        )
        return MirrorResult(MirrorStatus.DEGRADED, warning=message)

    # Remote to task

    def handle_notification(
        self,
        notification: PushNotification,
        cancel_event: Optional[threading.Event] = None,
    ) -> NotificationResult:
        """
        Apply a push notification to the linked task(s).

        Failures are logged and reported in the result; the caller always
        acknowledges the delivery.
        """
        try:
            channel = self._resolve_channel(notification.channel_id)
        except UnknownChannel as e:
            logger.warning(e.message)
            return NotificationResult(NotificationOutcome.IGNORED, reason="unknown_channel")

        integration = channel.integration
        user_id = integration.user_id
        if settings.WEBHOOK_REQUIRE_TOKEN and not verify_channel_token(
            notification.channel_token, channel.channel_id, user_id
        ):
            logger.warning(
                f"Rejected notification for channel {channel.channel_id}: bad token"
            )
            return NotificationResult(NotificationOutcome.IGNORED, reason="invalid_token")
        if not integration.is_active:
            return NotificationResult(
                NotificationOutcome.IGNORED, reason="integration_inactive"
            )

        state = (notification.resource_state or "").lower()
        logger.info(
            f"Notification on channel {channel.channel_id}: state={state} "
            f"message={notification.message_number}"
        )
        try:
            if state == "sync":
                return NotificationResult(NotificationOutcome.IGNORED, reason="sync")
            if state == "exists":
                if (
                    not notification.resource_id
                    or notification.resource_id == channel.resource_id
                ):
                    return self._sync_changed_events(user_id, channel, cancel_event)
                return self._sync_event(
                    user_id, channel, notification.resource_id, cancel_event
                )
            if state == "not_exists":
                return self._handle_removed(user_id, notification.resource_id)
            return NotificationResult(
                NotificationOutcome.IGNORED, reason=f"unhandled_state:{state}"
            )
        except BusinessException as e:
            logger.warning(
                f"Failed to process notification on channel {channel.channel_id}: "
                f"{e.code}"
            )
            track_event(
                CalendarEventType.ERROR,
                user_id,
                {"operation": "handle_notification", "error": e.code},
            )
            return NotificationResult(NotificationOutcome.FAILED, reason=e.code)

    def _resolve_channel(self, channel_id: Optional[str]) -> WebhookChannel:
        channel = self.channels.get_by_channel_id(channel_id) if channel_id else None
        if channel is None:
            raise UnknownChannel(f"Notification for unknown channel {channel_id}")
        return channel

    def _sync_changed_events(
        self,
        user_id: str,
        channel: WebhookChannel,
        cancel_event: Optional[threading.Event],
    ) -> NotificationResult:
        now = utcnow()
        since = channel.last_notified_at or now - DEFAULT_CHANGE_WINDOW
        events = self.gateway.list_events(
            user_id,
            channel.calendar_id,
            updated_min=since,
            show_deleted=True,
            single_events=False,
            cancel_event=cancel_event,
        )
        self.channels.mark_notified(channel, now)

        touched: List[int] = []
        for event in events:
            task_id = self._reconcile_event(user_id, event)
            if task_id is not None:
                touched.append(task_id)
        outcome = NotificationOutcome.SYNCED if touched else NotificationOutcome.NOOP
        return NotificationResult(outcome, task_ids=touched)

    def _sync_event(
        self,
        user_id: str,
        channel: WebhookChannel,
        event_id: str,
        cancel_event: Optional[threading.Event],
    ) -> NotificationResult:
        if self.links.get_by_event_id(event_id, user_id) is None:
            return NotificationResult(NotificationOutcome.NOOP)
        try:
            event = self.gateway.get_event(
                user_id, channel.calendar_id, event_id, cancel_event=cancel_event
            )
        except RemoteRejected as e:
            if not e.is_not_found:
                raise
            return self._handle_removed(user_id, event_id)
        self.channels.mark_notified(channel, utcnow())

        task_id = self._reconcile_event(user_id, event)
        if task_id is None:
            return NotificationResult(NotificationOutcome.NOOP)
        return NotificationResult(NotificationOutcome.SYNCED, task_ids=[task_id])

    def _reconcile_event(self, user_id: str, event: Dict[str, Any]) -> Optional[int]:
        """Apply one remote event to its linked task. Returns the task id if changed."""
        event_id = event.get("id")
        link = self.links.get_by_event_id(event_id, user_id) if event_id else None
        if link is None:
            return None

        task_id = link.task_id
        with self.task_locks.hold(task_id):
            self.db.expire_all()
            link = self.links.get_by_event_id(event_id, user_id)
            if link is None:
                return None

            if event.get("status") == "cancelled":
                self._complete_and_unlink(user_id, link, action="cancelled")
                return task_id

            if event.get("etag") and event.get("etag") == link.remote_etag:
                logger.debug(f"Skipping echo of own write for event {event_id}")
                return None

            task = self.tasks.get_user_task_by_id(user_id, task_id)
            if task is None:
                logger.info(f"Dropping link for deleted task {task_id}")
                self.links.delete_link(link)
                return None

            schedule = parse_event_schedule(event)
            self.tasks.apply_remote_changes(
                task,
                text=event.get("summary"),
                due_date=schedule["due_date"],
                event_time=schedule["event_time"],
                event_duration=schedule["event_duration"],
            )

            if schedule["due_date"] is not None:
                link.event_date = schedule["due_date"]
            if schedule["event_time"] is not None:
                link.event_time = schedule["event_time"]
            if schedule["event_duration"] is not None:
                link.event_duration = schedule["event_duration"]
            link.remote_etag = event.get("etag")
            link.last_synced_at = utcnow()
            self.links.save(link)

            track_event(
                CalendarEventType.EVENT_SYNCED,
                user_id,
                {"task_id": task_id, "event_id": event_id, "action": "updated"},
            )
            return task_id

    def _handle_removed(self, user_id: str, event_id: Optional[str]) -> NotificationResult:
        link = self.links.get_by_event_id(event_id, user_id) if event_id else None
        if link is None:
            return NotificationResult(NotificationOutcome.NOOP)

        task_id = link.task_id
        with self.task_locks.hold(task_id):
            self.db.expire_all()
            link = self.links.get_by_event_id(event_id, user_id)
            if link is None:
                return NotificationResult(NotificationOutcome.NOOP)
            self._complete_and_unlink(user_id, link, action="deleted")
        return NotificationResult(NotificationOutcome.COMPLETED, task_ids=[task_id])

    def _complete_and_unlink(self, user_id: str, link: EventLink, action: str) -> None:
        task_id = link.task_id
        event_id = link.event_id
        task = self.tasks.get_user_task_by_id(user_id, task_id)
        if task is not None and not task.completed:
            self.tasks.mark_completed(task)
        self.links.delete_link(link)
        track_event(
            CalendarEventType.EVENT_SYNCED,
            user_id,
            {"task_id": task_id, "event_id": event_id, "action": action},
        )
