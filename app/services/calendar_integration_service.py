# app/services/calendar_integration_service.py
import hmac
import logging
from typing import Any, Dict, List, Optional

from google.auth.exceptions import GoogleAuthError
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from sqlalchemy.orm import Session

from app.core.exceptions import (
    AuthenticationException,
    BusinessException,
    IntegrationMissing,
    RemoteRejected,
    ValidationException,
)
from app.core.monitoring import CalendarEventType, track_event
from app.integrations.google import get_oauth_client
from app.integrations.google.oauth import GoogleOAuthClient
from app.models.calendar_integration import CalendarIntegration
from app.repositories.integration_repository import IntegrationRepository

logger = logging.getLogger(__name__)

WRITABLE_ACCESS_ROLES = ("owner", "writer")


def format_calendars(
    calendars: List[Dict[str, Any]], selected_id: Optional[str]
) -> List[Dict[str, Any]]:
    """Calendars the user can write to, shaped for the settings page."""
    result = []
    for calendar in calendars:
        access_role = calendar.get("accessRole", "")
        if access_role not in WRITABLE_ACCESS_ROLES:
            continue
        calendar_id = calendar.get("id")
        is_primary = calendar.get("primary", False)
        result.append(
            {
                "id": calendar_id,
                "summary": calendar.get("summary", "Unnamed Calendar"),
                "primary": is_primary,
                "selected": calendar_id == selected_id
                or (selected_id == "primary" and is_primary),
                "color": calendar.get("backgroundColor", "#9FC6E7"),
                "accessRole": access_role,
            }
        )
    return result


class CalendarIntegrationService:
    """OAuth connection lifecycle and integration settings."""

    def __init__(
        self,
        db: Session,
        oauth_client: Optional[GoogleOAuthClient] = None,
        token_manager=None,
        gateway=None,
        webhooks=None,
    ):
        if token_manager is None:
            from app.services import get_token_manager

            token_manager = get_token_manager()
        if gateway is None:
            from app.integrations.google.calendar import CalendarGateway

            gateway = CalendarGateway(db, token_manager=token_manager)
        if webhooks is None:
            from app.services.webhook_subscription_service import (
                WebhookSubscriptionService,
            )

            webhooks = WebhookSubscriptionService(db, gateway=gateway)
        self.db = db
        self.oauth_client = oauth_client or get_oauth_client()
        self.token_manager = token_manager
        self.gateway = gateway
        self.webhooks = webhooks
        self.repository = IntegrationRepository(db)

    def start_oauth_flow(self, user_id: str) -> str:
        """Consent URL; the user id travels as the OAuth state."""
        return self.oauth_client.authorization_url(state=user_id)

    def complete_oauth_flow(
        self, user_id: str, code: str, state: str
    ) -> List[Dict[str, Any]]:
        """
        Exchange the code, store the credentials and open a push channel.

        Returns the user's writable calendars (empty if listing fails).
        """
        if not hmac.compare_digest(state or "", user_id):
            logger.warning(f"OAuth state mismatch for user {user_id}")
            raise AuthenticationException("Invalid OAuth state")

        try:
            credentials = self.oauth_client.exchange_code(code)
        except (OAuth2Error, GoogleAuthError, ValueError) as e:
            logger.warning(f"OAuth code exchange failed for user {user_id}: {e}")
            raise ValidationException("Failed to complete Google authorization") from e

        integration = self.repository.upsert_tokens(
            user_id,
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            token_expiry=self.oauth_client.parse_expiry(credentials.expiry),
            scopes=" ".join(credentials.scopes or self.oauth_client.scopes),
        )
        self.token_manager.invalidate(user_id)
        logger.info(f"Google Calendar connected for user {user_id}")
        track_event(CalendarEventType.CONNECTED, user_id)

        self._resubscribe(user_id)
        return self._list_calendars_quietly(user_id, integration)

    def get_status(self, user_id: str) -> Dict[str, Any]:
        integration = self.repository.get_by_user_id(user_id)
        if integration is None or not integration.is_active:
            return {
                "connected": False,
                "status": integration.connection_status if integration else None,
                "default_calendar_id": (
                    integration.default_calendar_id if integration else "primary"
                ),
                "calendars": [],
            }
        return {
            "connected": True,
            "status": integration.connection_status,
            "default_calendar_id": integration.default_calendar_id,
            "calendars": self._list_calendars_quietly(user_id, integration),
        }

    def set_default_calendar(self, user_id: str, calendar_id: str) -> CalendarIntegration:
        """Point new events at another calendar after checking it exists remotely."""
        integration = self._require_active(user_id)
        try:
            self.gateway.get_calendar(user_id, calendar_id)
        except RemoteRejected as e:
            if e.is_not_found:
                raise ValidationException(
                    f"Calendar {calendar_id} not found or not accessible"
                ) from e
            raise

        integration = self.repository.set_default_calendar(integration, calendar_id)
        logger.info(f"User {user_id} default calendar set to {calendar_id}")
        self._resubscribe(user_id)
        return integration

    def disconnect(self, user_id: str) -> bool:
        """Soft disconnect: stop channels, then deactivate. Credentials stay stored."""
        integration = self.repository.get_active_by_user_id(user_id)
        if integration is None:
            return False

        self.webhooks.unsubscribe_user(user_id)
        self.repository.deactivate(integration)
        self.token_manager.invalidate(user_id)
        track_event(CalendarEventType.DISCONNECTED, user_id)
        logger.info(f"Google Calendar disconnected for user {user_id}")
        return True

    def _require_active(self, user_id: str) -> CalendarIntegration:
        integration = self.repository.get_active_by_user_id(user_id)
        if integration is None:
            raise IntegrationMissing("Google Calendar is not connected")
        return integration

    def _resubscribe(self, user_id: str) -> None:
        """Replace the user's channels with one on the current default calendar."""
        try:
            self.webhooks.unsubscribe_user(user_id)
            self.webhooks.subscribe(user_id)
        except BusinessException as e:
            logger.warning(f"Webhook subscription failed for user {user_id}: {e.code}")
            track_event(
                CalendarEventType.ERROR,
                user_id,
                {"operation": "subscribe", "error": e.code},
            )

    def _list_calendars_quietly(
        self, user_id: str, integration: CalendarIntegration
    ) -> List[Dict[str, Any]]:
        try:
            calendars = self.gateway.list_calendars(user_id)
        except BusinessException as e:
            logger.warning(f"Could not list calendars for user {user_id}: {e.code}")
            return []
        return format_calendars(calendars, integration.default_calendar_id)
