# app/core/exceptions.py
from typing import Dict, Any, Optional, Type
from fastapi import HTTPException, status


class BusinessException(Exception):
    """Base exception for business rule violations."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = "business_error"

    def __init__(
        self, message: str, code: str = None, details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        """Convert this exception to an HTTPException"""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "error": self.code,
                "message": self.message,
                **({"details": self.details} if self.details else {}),
            },
        )


# Resource-related exceptions
class ResourceNotFoundException(BusinessException):
    """Exception raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "resource_not_found"


class ValidationException(BusinessException):
    """Exception raised when input validation fails."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    error_code = "validation_error"


# Authentication and Authorization exceptions
class AuthenticationException(BusinessException):
    """Exception raised for authentication failures."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "authentication_error"


# Calendar integration exceptions
class IntegrationMissing(BusinessException):
    """The user has no connected (active) calendar integration."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "integration_missing"


class ReauthRequired(BusinessException):
    """Stored consent is no longer valid; the user has to reconnect."""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "reauth_required"


class CredentialDecryptionError(BusinessException):
    """A stored credential could not be decrypted with the configured key."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code = "credential_decryption_error"


# External Service exceptions
class ExternalServiceException(BusinessException):
    """Exception raised when an external service call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "external_service_error"

    def __init__(
        self,
        message: str,
        code: str = None,
        details: Optional[Dict[str, Any]] = None,
        provider_status: Optional[int] = None,
        provider_reason: Optional[str] = None,
    ):
        super().__init__(message, code=code, details=details)
        self.provider_status = provider_status
        self.provider_reason = provider_reason


class RemoteTransient(ExternalServiceException):
    """Network failure, 5xx or rate limit. Retried automatically."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = "remote_transient"


class RemoteRejected(ExternalServiceException):
    """The provider rejected the request (4xx other than auth). Not retried."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "remote_rejected"

    @property
    def is_not_found(self) -> bool:
        return self.provider_status in (404, 410)


class ServiceTimeoutException(BusinessException):
    """Exception raised when an external service times out."""

    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    error_code = "service_timeout"


class OperationCancelled(ServiceTimeoutException):
    """The caller cancelled the operation while it was waiting on a retry."""

    error_code = "operation_cancelled"


class UnknownChannel(BusinessException):
    """A push notification arrived for a channel this service does not track."""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = "unknown_channel"


# Map exception classes to HTTP status codes
EXCEPTION_STATUS_CODES: Dict[Type[BusinessException], int] = {
    ResourceNotFoundException: status.HTTP_404_NOT_FOUND,
    ValidationException: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthenticationException: status.HTTP_401_UNAUTHORIZED,
    IntegrationMissing: status.HTTP_404_NOT_FOUND,
    ReauthRequired: status.HTTP_401_UNAUTHORIZED,
    CredentialDecryptionError: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ExternalServiceException: status.HTTP_502_BAD_GATEWAY,
    RemoteTransient: status.HTTP_503_SERVICE_UNAVAILABLE,
    RemoteRejected: status.HTTP_502_BAD_GATEWAY,
    ServiceTimeoutException: status.HTTP_504_GATEWAY_TIMEOUT,
    OperationCancelled: status.HTTP_504_GATEWAY_TIMEOUT,
    UnknownChannel: status.HTTP_404_NOT_FOUND,
    BusinessException: status.HTTP_400_BAD_REQUEST,
}
