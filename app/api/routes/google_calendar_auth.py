# app/api/routes/google_calendar_auth.py
import logging
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from app import schemas
from app.api import deps
from app.core.config import settings
from app.services.calendar_integration_service import CalendarIntegrationService

router = APIRouter()
logger = logging.getLogger(__name__)

INTEGRATION_NAME = "google_calendar"


def _settings_redirect(**params) -> RedirectResponse:
    query = urlencode({k: v for k, v in params.items() if v is not None})
    return RedirectResponse(url=f"{settings.FRONTEND_URL}/settings?{query}")


@router.get("", response_model=schemas.OAuthStartResponse)
def start_google_calendar_auth(
    user_id: str = Depends(deps.get_current_user),
    integration_service: CalendarIntegrationService = Depends(
        deps.get_integration_service
    ),
):
    """Start the Google OAuth flow."""
    return schemas.OAuthStartResponse(
        auth_url=integration_service.start_oauth_flow(user_id)
    )


@router.post("", response_model=schemas.OAuthFinishResponse)
def finish_google_calendar_auth(
    payload: schemas.OAuthFinishRequest,
    user_id: str = Depends(deps.get_current_user),
    integration_service: CalendarIntegrationService = Depends(
        deps.get_integration_service
    ),
):
    """Complete the OAuth flow by exchanging the code for tokens."""
    calendars = integration_service.complete_oauth_flow(
        user_id, code=payload.code, state=payload.state
    )
    return schemas.OAuthFinishResponse(success=True, calendars=calendars)


@router.get("/callback")
def google_calendar_auth_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """
    Public OAuth callback endpoint - receives Google's redirect.

    The settings page posts code and state back to ``POST /auth/google-calendar``
    with the user's bearer token.
    """
    if error:
        logger.info(f"Google Calendar authorization denied: {error}")
        return _settings_redirect(error=error, integration=INTEGRATION_NAME)
    if not code or not state:
        return _settings_redirect(
            error="missing_parameters", integration=INTEGRATION_NAME
        )
    return _settings_redirect(code=code, state=state, integration=INTEGRATION_NAME)
