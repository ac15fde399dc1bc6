# app/repositories/integration_repository.py
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm import Session

from app.core.encryption import decrypt_value, encrypt_value
from app.models.calendar_integration import (
    CalendarIntegration,
    ConnectionStatus,
    GOOGLE_CALENDAR_PROVIDER,
)
from app.repositories.base_repository import BaseRepository


class IntegrationRepository(BaseRepository[CalendarIntegration]):
    """
    Credential store for calendar integrations.

    Tokens go in encrypted and only come out decrypted through
    ``get_decrypted_tokens``.
    """

    def __init__(self, db: Session, provider: str = GOOGLE_CALENDAR_PROVIDER):
        super().__init__(CalendarIntegration, db)
        self.provider = provider

    def get_by_user_id(self, user_id: str) -> Optional[CalendarIntegration]:
        """Get the integration for a user, active or not."""
        return self.get_by(user_id=user_id, provider=self.provider)

    def get_active_by_user_id(self, user_id: str) -> Optional[CalendarIntegration]:
        """Get the integration for a user only if it is active."""
        return (
            self.db.query(CalendarIntegration)
            .filter(
                CalendarIntegration.user_id == user_id,
                CalendarIntegration.provider == self.provider,
                CalendarIntegration.is_active.is_(True),
            )
            .first()
        )

    def upsert_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expiry: Optional[datetime],
        scopes: Optional[str] = None,
    ) -> CalendarIntegration:
        """Create or reactivate the integration after a successful code exchange."""
        integration = self.get_by_user_id(user_id)
        if integration is None:
            integration = CalendarIntegration(
                user_id=user_id,
                provider=self.provider,
                default_calendar_id="primary",
            )

        integration.access_token = encrypt_value(access_token)
        # Google only returns a refresh token on first consent
        if refresh_token:
            integration.refresh_token = encrypt_value(refresh_token)
        integration.token_expiry = token_expiry
        integration.scopes = scopes
        integration.is_active = True
        integration.connection_status = ConnectionStatus.CONNECTED
        return self.save(integration)

    def update_tokens(
        self,
        integration: CalendarIntegration,
        access_token: str,
        refresh_token: Optional[str] = None,
        token_expiry: Optional[datetime] = None,
    ) -> CalendarIntegration:
        """Persist a refreshed credential triple."""
        integration.access_token = encrypt_value(access_token)
        if refresh_token:
            integration.refresh_token = encrypt_value(refresh_token)
        integration.token_expiry = token_expiry
        integration.connection_status = ConnectionStatus.CONNECTED
        return self.save(integration)

    def get_decrypted_tokens(
        self, integration: CalendarIntegration
    ) -> Tuple[str, str]:
        """Return (access_token, refresh_token) in plaintext."""
        return (
            decrypt_value(integration.access_token),
            decrypt_value(integration.refresh_token),
        )

    def mark_reauth_required(self, integration: CalendarIntegration) -> CalendarIntegration:
        integration.is_active = False
        integration.connection_status = ConnectionStatus.REAUTH_REQUIRED
        return self.save(integration)

    def deactivate(self, integration: CalendarIntegration) -> CalendarIntegration:
        """Soft disconnect. Credentials stay in place, marked inactive."""
        integration.is_active = False
        integration.connection_status = ConnectionStatus.DISCONNECTED
        return self.save(integration)

    def set_default_calendar(
        self, integration: CalendarIntegration, calendar_id: str
    ) -> CalendarIntegration:
        integration.default_calendar_id = calendar_id
        return self.save(integration)
