# app/integrations/google/calendar.py
import json
import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import (
    ExternalServiceException,
    ReauthRequired,
    RemoteRejected,
    RemoteTransient,
)
from app.integrations.google.retry import RetryPolicy

logger = logging.getLogger(__name__)

RATE_LIMIT_REASONS = {"rateLimitExceeded", "userRateLimitExceeded"}


def build_calendar_service(credentials: Credentials, timeout: Optional[int] = None):
    """Calendar v3 resource whose HTTP requests carry a socket timeout."""
    http = AuthorizedHttp(
        credentials,
        http=httplib2.Http(timeout=timeout or settings.GOOGLE_API_TIMEOUT_SECONDS),
    )
    return build("calendar", "v3", http=http, cache_discovery=False)


def to_rfc3339(value: datetime) -> str:
    """Format a datetime for the API; naive values are taken as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _error_reason(error: HttpError) -> Optional[str]:
    try:
        payload = json.loads(error.content.decode("utf-8"))
        errors = payload.get("error", {}).get("errors") or []
        if errors:
            return errors[0].get("reason")
        return payload.get("error", {}).get("status")
    except (ValueError, AttributeError):
        return None


class _AuthorizationFailure(ExternalServiceException):
    """401 from the API; handled inside the gateway by a forced refresh."""


class CalendarGateway:
    """
    Typed wrapper around the Google Calendar API.

    Every call goes through ``_execute``, which obtains a client from the
    TokenManager, applies the retry policy and translates provider errors
    into the service's exception taxonomy. Request bodies are never logged.
    """

    def __init__(
        self,
        db: Session,
        token_manager=None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        if token_manager is None:
            from app.services import get_token_manager

            token_manager = get_token_manager()
        self.db = db
        self.token_manager = token_manager
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    # Events

    def create_event(
        self,
        user_id: str,
        calendar_id: str,
        body: Dict[str, Any],
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        event = self._execute(
            "create_event",
            user_id,
            lambda service: service.events().insert(calendarId=calendar_id, body=body),
            cancel_event,
        )
        logger.info(f"Created event {event.get('id')} in calendar {calendar_id}")
        return event

    def update_event(
        self,
        user_id: str,
        calendar_id: str,
        event_id: str,
        body: Dict[str, Any],
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        event = self._execute(
            "update_event",
            user_id,
            lambda service: service.events().patch(
                calendarId=calendar_id, eventId=event_id, body=body
            ),
            cancel_event,
        )
        logger.info(f"Updated event {event_id} in calendar {calendar_id}")
        return event

    def delete_event(
        self,
        user_id: str,
        calendar_id: str,
        event_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> bool:
        """Delete an event. Returns False if it was already gone."""
        try:
            self._execute(
                "delete_event",
                user_id,
                lambda service: service.events().delete(
                    calendarId=calendar_id, eventId=event_id
                ),
                cancel_event,
            )
        except RemoteRejected as e:
            if e.is_not_found:
                logger.info(f"Event {event_id} already absent from {calendar_id}")
                return False
            raise
        logger.info(f"Deleted event {event_id} from calendar {calendar_id}")
        return True

    def get_event(
        self,
        user_id: str,
        calendar_id: str,
        event_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        return self._execute(
            "get_event",
            user_id,
            lambda service: service.events().get(calendarId=calendar_id, eventId=event_id),
            cancel_event,
        )

    def list_events(
        self,
        user_id: str,
        calendar_id: str,
        time_min: Optional[datetime] = None,
        time_max: Optional[datetime] = None,
        updated_min: Optional[datetime] = None,
        show_deleted: bool = False,
        single_events: bool = True,
        max_results: int = 250,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Dict[str, Any]]:
        """List events, following pagination.

        With ``single_events`` recurring events are expanded into instances;
        change feeds (``updated_min``) want the series masters instead.
        """
        params: Dict[str, Any] = {
            "calendarId": calendar_id,
            "singleEvents": single_events,
            "showDeleted": show_deleted,
            "maxResults": max_results,
        }
        if time_min is not None:
            params["timeMin"] = to_rfc3339(time_min)
        if time_max is not None:
            params["timeMax"] = to_rfc3339(time_max)
        if updated_min is not None:
            params["updatedMin"] = to_rfc3339(updated_min)
        if single_events and time_min is not None and updated_min is None:
            params["orderBy"] = "startTime"

        items: List[Dict[str, Any]] = []
        page_token = None
        while True:
            page_params = dict(params, pageToken=page_token) if page_token else params
            page = self._execute(
                "list_events",
                user_id,
                lambda service: service.events().list(**page_params),
                cancel_event,
            )
            items.extend(page.get("items", []))
            page_token = page.get("nextPageToken")
            if not page_token:
                return items

    # Calendars

    def list_calendars(
        self, user_id: str, cancel_event: Optional[threading.Event] = None
    ) -> List[Dict[str, Any]]:
        result = self._execute(
            "list_calendars",
            user_id,
            lambda service: service.calendarList().list(maxResults=100),
            cancel_event,
        )
        return result.get("items", [])

    def get_calendar(
        self,
        user_id: str,
        calendar_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        return self._execute(
            "get_calendar",
            user_id,
            lambda service: service.calendarList().get(calendarId=calendar_id),
            cancel_event,
        )

    # Push notifications

    def watch(
        self,
        user_id: str,
        calendar_id: str,
        channel_id: str,
        callback_url: str,
        token: str,
        ttl_seconds: Optional[int] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, Any]:
        """Open a push channel on a calendar's events collection."""
        body: Dict[str, Any] = {
            "id": channel_id,
            "type": "web_hook",
            "address": callback_url,
            "token": token,
        }
        if ttl_seconds:
            body["params"] = {"ttl": str(ttl_seconds)}
        channel = self._execute(
            "watch",
            user_id,
            lambda service: service.events().watch(calendarId=calendar_id, body=body),
            cancel_event,
        )
        logger.info(f"Opened channel {channel_id} on calendar {calendar_id}")
        return channel

    def stop_watch(
        self,
        user_id: str,
        channel_id: str,
        resource_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._execute(
            "stop_watch",
            user_id,
            lambda service: service.channels().stop(
                body={"id": channel_id, "resourceId": resource_id}
            ),
            cancel_event,
        )
        logger.info(f"Stopped channel {channel_id}")

    # Internals

    def _execute(
        self,
        operation: str,
        user_id: str,
        make_request: Callable[[Any], Any],
        cancel_event: Optional[threading.Event] = None,
    ) -> Any:
        # One deadline covers the first pass and the pass after a forced refresh
        started = self.retry_policy.now()
        try:
            return self._run(operation, user_id, make_request, cancel_event, started)
        except _AuthorizationFailure:
            logger.info(f"{operation} unauthorized for user {user_id}, forcing token refresh")

        self.token_manager.invalidate(user_id)
        self.token_manager.get_client(user_id, self.db, force_refresh=True)
        try:
            return self._run(operation, user_id, make_request, cancel_event, started)
        except _AuthorizationFailure:
            logger.warning(
                f"Calendar API still unauthorized after refresh: "
                f"operation={operation} user={user_id}"
            )
        self.token_manager.mark_reauth_required(user_id, self.db)
        raise ReauthRequired("Google Calendar access was revoked, please reconnect")

    def _run(
        self,
        operation: str,
        user_id: str,
        make_request: Callable[[Any], Any],
        cancel_event: Optional[threading.Event],
        started: float,
    ) -> Any:
        def attempt():
            service = self.token_manager.get_client(user_id, self.db)
            return self._call(operation, user_id, make_request(service))

        return self.retry_policy.run(
            attempt,
            is_retryable=lambda exc: isinstance(exc, RemoteTransient),
            cancel_event=cancel_event,
            description=f"{operation} for user {user_id}",
            started=started,
        )

    def _call(self, operation: str, user_id: str, request) -> Any:
        try:
            return request.execute(num_retries=0)
        except HttpError as e:
            raise self._classify(operation, user_id, e) from e
        except RefreshError as e:
            # Credentials carry no refresh token, so an expired token lands here
            raise _AuthorizationFailure(
                "Access token expired", provider_status=401
            ) from e
        except (TransportError, httplib2.HttpLib2Error, OSError) as e:
            logger.warning(
                f"Calendar API transport failure: operation={operation} "
                f"user={user_id} error={type(e).__name__}"
            )
            raise RemoteTransient(
                f"Could not reach Google Calendar during {operation}"
            ) from e

    @staticmethod
    def _classify(operation: str, user_id: str, error: HttpError) -> ExternalServiceException:
        status_code = error.resp.status
        reason = _error_reason(error)
        logger.warning(
            f"Calendar API error: operation={operation} user={user_id} "
            f"status={status_code} reason={reason}",
            extra={
                "extras": {
                    "operation": operation,
                    "user_id": user_id,
                    "provider_status": status_code,
                    "provider_reason": reason,
                }
            },
        )
        kwargs = {"provider_status": status_code, "provider_reason": reason}
        if status_code == 401:
            return _AuthorizationFailure("Google Calendar rejected the credentials", **kwargs)
        if (
            status_code >= 500
            or status_code == 429
            or (status_code == 403 and reason in RATE_LIMIT_REASONS)
        ):
            return RemoteTransient(f"Google Calendar {operation} failed temporarily", **kwargs)
        return RemoteRejected(
            f"Google Calendar rejected {operation} ({status_code})", **kwargs
        )
