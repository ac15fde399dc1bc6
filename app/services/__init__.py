"""
Service registry module.

This module registers all services with the dependency injection system and
owns the process-wide calendar state: the TokenManager (credential and client
cache) and the per-task lock table. Both are created lazily on first use and
can be replaced with ``set_token_manager`` / ``set_task_locks`` (tests do).
"""
import threading
from typing import Optional

# Avoid circular imports by importing service classes inside the functions

_state_lock = threading.Lock()
_token_manager = None
_task_locks = None


def get_token_manager():
    global _token_manager
    with _state_lock:
        if _token_manager is None:
            from app.services.token_manager import TokenManager

            _token_manager = TokenManager()
        return _token_manager


def set_token_manager(token_manager) -> None:
    global _token_manager
    with _state_lock:
        _token_manager = token_manager


def get_task_locks():
    global _task_locks
    with _state_lock:
        if _task_locks is None:
            from app.utils.locks import KeyedLock

            _task_locks = KeyedLock()
        return _task_locks


def set_task_locks(task_locks: Optional[object]) -> None:
    global _task_locks
    with _state_lock:
        _task_locks = task_locks


def register_services():
    """Register all services with the dependency injection system."""
    from app.utils.dependencies import register_service
    from app.services.availability_service import AvailabilityService
    from app.services.calendar_integration_service import CalendarIntegrationService
    from app.services.calendar_sync_service import CalendarSyncService
    from app.services.task_service import TaskService
    from app.services.webhook_subscription_service import WebhookSubscriptionService

    # Register each service with its factory function
    register_service(TaskService, lambda db: TaskService(db))
    register_service(CalendarSyncService, lambda db: CalendarSyncService(db))
    register_service(AvailabilityService, lambda db: AvailabilityService(db))
    register_service(
        CalendarIntegrationService, lambda db: CalendarIntegrationService(db)
    )
    register_service(
        WebhookSubscriptionService, lambda db: WebhookSubscriptionService(db)
    )
