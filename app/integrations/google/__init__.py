from app.integrations.google.oauth import GoogleOAuthClient


def get_oauth_client() -> GoogleOAuthClient:
    """
    Provides a GoogleOAuthClient configured from settings.
    """
    return GoogleOAuthClient()
