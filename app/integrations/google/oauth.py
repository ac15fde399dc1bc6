# app/integrations/google/oauth.py
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from app.core.config import settings
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"


class GoogleOAuthClient:
    """Client for the Google OAuth authorization-code and refresh flows."""

    def __init__(
        self,
        client_id: str = None,
        client_secret: str = None,
        redirect_uri: str = None,
        scopes: Optional[List[str]] = None,
        token_uri: str = None,
    ):
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self.scopes = scopes or list(settings.GOOGLE_CALENDAR_SCOPES)
        self.token_uri = token_uri or settings.GOOGLE_TOKEN_URI

    def _client_config(self) -> Dict[str, Dict]:
        if not self.client_id or not self.client_secret:
            logger.error("Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET")
            raise ValueError("Google OAuth client credentials are not configured")
        return {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "auth_uri": AUTH_URI,
                "token_uri": self.token_uri,
                "redirect_uris": [self.redirect_uri],
            }
        }

    def create_flow(self) -> Flow:
        """Create an OAuth flow for Google Calendar."""
        # Start and finish run on different Flow instances, so no PKCE verifier
        return Flow.from_client_config(
            self._client_config(),
            scopes=self.scopes,
            redirect_uri=self.redirect_uri,
            autogenerate_code_verifier=False,
        )

    def authorization_url(self, state: str) -> str:
        """Consent URL requesting offline access so a refresh token is issued."""
        url, _ = self.create_flow().authorization_url(
            access_type="offline",
            include_granted_scopes="true",
            prompt="consent",
            state=state,
        )
        return url

    def exchange_code(self, code: str) -> Credentials:
        """Exchange authorization code for tokens."""
        flow = self.create_flow()
        flow.fetch_token(code=code)
        return flow.credentials

    def build_credentials(self, access_token: str) -> Credentials:
        """
        Credentials for API calls.

        No refresh token is attached: refreshing is owned by the TokenManager,
        so an expired token surfaces as an auth failure instead of being
        refreshed silently inside the HTTP layer.
        """
        return Credentials(
            token=access_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes,
        )

    def refresh(self, refresh_token: str) -> Credentials:
        """
        Trade a refresh token for a new access token.

        Raises:
            google.auth.exceptions.RefreshError: consent revoked or token invalid
            google.auth.exceptions.TransportError: network failure
        """
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.token_uri,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=self.scopes,
        )
        credentials.refresh(Request())
        return credentials

    @staticmethod
    def parse_expiry(expiry) -> datetime:
        """Normalize a credential expiry to naive UTC."""
        if isinstance(expiry, datetime):
            return to_naive_utc(expiry)
        elif isinstance(expiry, (int, float)):
            # google-auth style epoch seconds
            return to_naive_utc(datetime.fromtimestamp(expiry).astimezone())
        else:
            logger.warning(f"Unexpected type for expiry: {type(expiry)}")
            return utcnow() + timedelta(hours=1)
