# app/api/deps.py
from fastapi import HTTPException, Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import jwt
from pydantic import ValidationError

from app.core import security
from app.core.config import settings
from app.schemas.token import TokenPayload
from app.services.availability_service import AvailabilityService
from app.services.calendar_integration_service import CalendarIntegrationService
from app.services.task_service import TaskService
from app.utils.dependencies import get_service

# Bearer tokens are issued by the upstream auth service; only verified here
oauth2_scheme = OAuth2PasswordBearer(
    tokenUrl=f"{settings.API_V1_STR}/login/access-token"
)


# Service dependencies. Module-level so tests can target them in
# app.dependency_overrides.
get_task_service = get_service(TaskService)
get_integration_service = get_service(CalendarIntegrationService)
get_availability_service = get_service(AvailabilityService)


def get_current_user(token: str = Depends(oauth2_scheme)) -> str:
    """
    Get the id of the authenticated user.

    Args:
        token: JWT token from the request

    Returns:
        The opaque user id carried in the token subject

    Raises:
        HTTPException: If authentication fails
    """
    try:
        payload = security.decode_access_token(token)
        token_data = TokenPayload(**payload)
    except (jwt.JWTError, ValidationError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )

    if not token_data.sub:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return token_data.sub
