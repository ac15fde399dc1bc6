# app/services/token_manager.py
import logging
import threading
import time
from datetime import timedelta
from typing import Any, Callable, Dict, Optional

from google.auth.exceptions import RefreshError, TransportError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import IntegrationMissing, ReauthRequired, RemoteTransient
from app.core.monitoring import CalendarEventType, track_event
from app.integrations.google.calendar import build_calendar_service
from app.integrations.google import get_oauth_client
from app.integrations.google.oauth import GoogleOAuthClient
from app.models.calendar_integration import CalendarIntegration
from app.repositories.integration_repository import IntegrationRepository
from app.utils.clock import utcnow
from app.utils.locks import SingleFlight

logger = logging.getLogger(__name__)


class _CachedClient:
    __slots__ = ("service", "expires_at")

    def __init__(self, service: Any, expires_at: float):
        self.service = service
        self.expires_at = expires_at


class TokenManager:
    """
    Hands out live Calendar API handles, one refresh per user at a time.

    Lifecycle: entries are populated lazily by ``get_client``; an entry lives
    for ``cache_ttl`` seconds or until the stored token is about to expire,
    whichever comes first, and is dropped by ``invalidate``. A refresh for a
    user is collapsed with any concurrent refresh for the same user; other
    users never wait on it.
    """

    def __init__(
        self,
        oauth_client: Optional[GoogleOAuthClient] = None,
        service_builder: Callable[..., Any] = build_calendar_service,
        cache_ttl: Optional[int] = None,
        refresh_margin: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.oauth_client = oauth_client or get_oauth_client()
        self.service_builder = service_builder
        self.cache_ttl = (
            cache_ttl if cache_ttl is not None else settings.CLIENT_CACHE_TTL_SECONDS
        )
        self.refresh_margin = timedelta(
            seconds=refresh_margin
            if refresh_margin is not None
            else settings.TOKEN_REFRESH_MARGIN_SECONDS
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._cache: Dict[str, _CachedClient] = {}
        self._refreshes = SingleFlight(wait_timeout=settings.RETRY_DEADLINE_SECONDS)

    def get_client(self, user_id: str, db: Session, force_refresh: bool = False) -> Any:
        """
        Return a Calendar API resource for the user.

        Raises:
            IntegrationMissing: no active integration for the user
            ReauthRequired: the stored refresh token was rejected
            RemoteTransient: the token endpoint could not be reached
        """
        if not force_refresh:
            cached = self._cached(user_id)
            if cached is not None:
                return cached

        repository = IntegrationRepository(db)
        integration = repository.get_active_by_user_id(user_id)
        if integration is None:
            raise IntegrationMissing("Google Calendar is not connected")

        if force_refresh or self._needs_refresh(integration):
            return self._refreshes.do(
                user_id,
                lambda: self._refresh(user_id, repository, force_refresh),
            )

        access_token, _ = repository.get_decrypted_tokens(integration)
        return self._store(user_id, access_token, integration)

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._cache.pop(user_id, None)

    def mark_reauth_required(self, user_id: str, db: Session) -> None:
        """Deactivate the user's integration after the provider revoked access."""
        self.invalidate(user_id)
        repository = IntegrationRepository(db)
        integration = repository.get_by_user_id(user_id)
        if integration is not None and integration.is_active:
            repository.mark_reauth_required(integration)
            logger.warning(f"Calendar integration for user {user_id} needs reauthorization")
            track_event(
                CalendarEventType.ERROR,
                user_id,
                {"reason": "reauth_required"},
            )

    def _cached(self, user_id: str) -> Optional[Any]:
        with self._lock:
            entry = self._cache.get(user_id)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._cache[user_id]
                return None
            return entry.service

    def _needs_refresh(self, integration: CalendarIntegration) -> bool:
        if not integration.token_expiry or not integration.access_token:
            return True
        return integration.token_expiry - self.refresh_margin <= utcnow()

    def _refresh(
        self, user_id: str, repository: IntegrationRepository, forced: bool
    ) -> Any:
        # Another caller may have refreshed while this one was queued
        if not forced:
            cached = self._cached(user_id)
            if cached is not None:
                return cached

        self.invalidate(user_id)
        integration = repository.get_active_by_user_id(user_id)
        if integration is None:
            raise IntegrationMissing("Google Calendar is not connected")
        repository.db.refresh(integration)
        if not forced and not self._needs_refresh(integration):
            access_token, _ = repository.get_decrypted_tokens(integration)
            return self._store(user_id, access_token, integration)

        _, refresh_token = repository.get_decrypted_tokens(integration)
        if not refresh_token:
            self.mark_reauth_required(user_id, repository.db)
            raise ReauthRequired("No refresh token stored, please reconnect")

        logger.info(f"Refreshing Google Calendar token for user {user_id}")
        try:
            credentials = self.oauth_client.refresh(refresh_token)
        except RefreshError as e:
            if getattr(e, "retryable", False):
                raise RemoteTransient("Token refresh failed temporarily") from e
            logger.warning(f"Token refresh rejected for user {user_id}: {e}")
            self.mark_reauth_required(user_id, repository.db)
            raise ReauthRequired(
                "Google Calendar access was revoked, please reconnect"
            ) from e
        except TransportError as e:
            logger.warning(f"Token endpoint unreachable for user {user_id}: {e}")
            raise RemoteTransient("Could not reach the Google token endpoint") from e

        # Rotated refresh tokens replace the stored one; otherwise keep it
        new_refresh = (
            credentials.refresh_token
            if credentials.refresh_token and credentials.refresh_token != refresh_token
            else None
        )
        integration = repository.update_tokens(
            integration,
            access_token=credentials.token,
            refresh_token=new_refresh,
            token_expiry=self.oauth_client.parse_expiry(credentials.expiry),
        )
        return self._store(user_id, credentials.token, integration)

    def _store(
        self, user_id: str, access_token: str, integration: CalendarIntegration
    ) -> Any:
        credentials = self.oauth_client.build_credentials(access_token)
        service = self.service_builder(credentials)

        ttl = float(self.cache_ttl)
        if integration.token_expiry:
            remaining = (
                integration.token_expiry - self.refresh_margin - utcnow()
            ).total_seconds()
            ttl = min(ttl, max(remaining, 0.0))

        with self._lock:
            self._cache[user_id] = _CachedClient(service, self._clock() + ttl)
        return service
