# app/services/availability_service.py
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import IntegrationMissing, ValidationException
from app.repositories.integration_repository import IntegrationRepository

logger = logging.getLogger(__name__)

CANDIDATE_STARTS = ("09:00", "10:00", "11:00", "13:00", "14:00", "15:00", "16:00")

Interval = Tuple[datetime, datetime]


@dataclass
class AvailabilityResult:
    available: bool
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    suggested_times: List[str] = field(default_factory=list)


def overlaps(a: Interval, b: Interval) -> bool:
    """Half-open overlap: touching intervals do not conflict."""
    return a[0] < b[1] and b[0] < a[1]


def suggest_times(
    day: date,
    duration_minutes: int,
    busy: Iterable[Interval],
    limit: int = 3,
) -> List[str]:
    """Free candidate start times (HH:MM) on ``day`` for a slot of the given length."""
    busy = list(busy)
    suggestions: List[str] = []
    for candidate in CANDIDATE_STARTS:
        start = datetime.combine(day, time.fromisoformat(candidate))
        slot = (start, start + timedelta(minutes=duration_minutes))
        if not any(overlaps(slot, interval) for interval in busy):
            suggestions.append(candidate)
            if len(suggestions) >= limit:
                break
    return suggestions


def _parse_hhmm(value: str, name: str) -> time:
    try:
        return time.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise ValidationException(f"Invalid {name}: {value}", details={name: value}) from e


class AvailabilityService:
    """Answers "is this slot free?" against the user's default calendar."""

    def __init__(self, db: Session, gateway=None):
        if gateway is None:
            from app.integrations.google.calendar import CalendarGateway

            gateway = CalendarGateway(db)
        self.db = db
        self.gateway = gateway
        self.integrations = IntegrationRepository(db)

    def check_availability(
        self, user_id: str, day: date, start_time: str, end_time: str
    ) -> AvailabilityResult:
        start = datetime.combine(day, _parse_hhmm(start_time, "start_time"))
        end = datetime.combine(day, _parse_hhmm(end_time, "end_time"))
        if start >= end:
            raise ValidationException("start_time must be before end_time")

        integration = self.integrations.get_active_by_user_id(user_id)
        if integration is None:
            raise IntegrationMissing("Google Calendar is not connected")

        zone = ZoneInfo(settings.CALENDAR_TIME_ZONE)
        day_start = datetime.combine(day, time.min)
        events = self.gateway.list_events(
            user_id,
            integration.default_calendar_id or "primary",
            time_min=day_start.replace(tzinfo=zone),
            time_max=(day_start + timedelta(days=1)).replace(tzinfo=zone),
        )

        busy: List[Interval] = []
        conflicts: List[Dict[str, Any]] = []
        for event in events:
            if event.get("status") == "cancelled" or event.get("transparency") == "transparent":
                continue
            interval = self._event_interval(event, zone)
            if interval is None:
                continue
            busy.append(interval)
            if overlaps((start, end), interval):
                conflicts.append(
                    {
                        "id": event.get("id"),
                        "summary": event.get("summary"),
                        "start": interval[0].isoformat(),
                        "end": interval[1].isoformat(),
                    }
                )

        if not conflicts:
            return AvailabilityResult(available=True)

        duration = int((end - start).total_seconds() // 60)
        logger.info(
            f"Slot {start_time}-{end_time} on {day} busy for user {user_id}: "
            f"{len(conflicts)} conflict(s)"
        )
        return AvailabilityResult(
            available=False,
            conflicts=conflicts,
            suggested_times=suggest_times(day, duration, busy),
        )

    @staticmethod
    def _event_interval(event: Dict[str, Any], zone: ZoneInfo) -> Optional[Interval]:
        start = event.get("start") or {}
        end = event.get("end") or {}
        if start.get("dateTime") and end.get("dateTime"):
            return (
                _to_local(start["dateTime"], zone),
                _to_local(end["dateTime"], zone),
            )
        if start.get("date"):
            # All-day events block their whole span of days
            first = date.fromisoformat(start["date"])
            last = date.fromisoformat(end["date"]) if end.get("date") else first + timedelta(days=1)
            return datetime.combine(first, time.min), datetime.combine(last, time.min)
        return None


def _to_local(value: str, zone: ZoneInfo) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed
    return parsed.astimezone(zone).replace(tzinfo=None)
