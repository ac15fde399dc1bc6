import logging
import time
import uuid

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from app.core.logging import request_context

# Set up logger
logger = logging.getLogger(__name__)

# Provider headers worth carrying into every log line of a webhook request
NOTIFICATION_HEADERS = {
    "X-Goog-Channel-ID": "channel_id",
    "X-Goog-Resource-State": "resource_state",
    "X-Goog-Message-Number": "message_number",
}


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds a unique request ID to each request.

    This allows for tracking requests through the system and correlating logs.
    The request ID is added to the request state and as a response header.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-ID"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self.header_name) or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as exc:
            self._log_exception(request, exc, start_time)
            raise

        response.headers[self.header_name] = request_id
        self._log_request(request, response, start_time)
        return response

    @staticmethod
    def _url(request: Request) -> str:
        # Query strings can carry OAuth codes; log the path only
        return request.url.path

    def _log_request(
        self, request: Request, response: Response, start_time: float
    ) -> None:
        """Log details about the request and response."""
        status_code = response.status_code
        log_dict = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "url": self._url(request),
            "status_code": status_code,
            "process_time_ms": round((time.time() - start_time) * 1000, 2),
            "client_host": request.client.host if request.client else "unknown",
        }

        # Choose log level based on status code
        if status_code >= 500:
            logger.error(f"Request failed: {log_dict}")
        elif status_code >= 400:
            logger.warning(f"Request error: {log_dict}")
        else:
            logger.info(f"Request completed: {log_dict}")

    def _log_exception(
        self, request: Request, exc: Exception, start_time: float
    ) -> None:
        """Log unhandled exceptions."""
        log_dict = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "url": self._url(request),
            "process_time_ms": round((time.time() - start_time) * 1000, 2),
            "client_host": request.client.host if request.client else "unknown",
            "exception": str(exc),
        }

        logger.error(f"Unhandled exception during request: {log_dict}", exc_info=True)


class LogContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that adds request information to log records.

    Sets the contextvar read by the logging filter and JSON formatter, so
    every record created while the request is handled carries its request id
    and, for push notifications, the channel it arrived on.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        log_context = {
            "request_id": getattr(request.state, "request_id", "unknown"),
            "method": request.method,
            "path": request.url.path,
            "client_host": request.client.host if request.client else "unknown",
        }
        for header, key in NOTIFICATION_HEADERS.items():
            value = request.headers.get(header)
            if value:
                log_context[key] = value

        token = request_context.set(log_context)
        try:
            return await call_next(request)
        finally:
            request_context.reset(token)


def register_middlewares(app: FastAPI) -> None:
    """
    Register all middlewares with the FastAPI app.

    Note: Middleware is executed in reverse order of registration
    (last registered is executed first), so the request id exists before
    the log context is built.

    Args:
        app: The FastAPI application instance
    """
    app.add_middleware(LogContextMiddleware)
    app.add_middleware(RequestIdMiddleware, header_name="X-Request-ID")
