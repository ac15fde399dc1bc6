# app/integrations/google/retry.py
import logging
import threading
import time
from typing import Callable, Optional, TypeVar

from app.core.config import settings
from app.core.exceptions import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded exponential backoff for remote calls.

    With the defaults an operation is tried once and retried up to three
    times after 1s, 2s and 4s. A retry whose delay would push the operation
    past ``deadline`` seconds is not attempted; the last error is raised
    instead. ``sleep`` and ``clock`` are injectable so tests run without
    real delays.

    The deadline bounds when an attempt may start, not how long it runs: an
    attempt started inside the budget can still take one full socket timeout
    (``GOOGLE_API_TIMEOUT_SECONDS``), so the worst case is about
    ``deadline + GOOGLE_API_TIMEOUT_SECONDS``. Callers making several passes
    share one budget by passing the same ``started``.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        multiplier: float = 2.0,
        deadline: Optional[float] = 15.0,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.deadline = deadline
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.RETRY_MAX_RETRIES,
            initial_delay=settings.RETRY_INITIAL_DELAY_SECONDS,
            deadline=settings.RETRY_DEADLINE_SECONDS,
        )

    def now(self) -> float:
        return self._clock()

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        return self.initial_delay * (self.multiplier ** (retry_number - 1))

    def run(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[Exception], bool],
        cancel_event: Optional[threading.Event] = None,
        description: str = "operation",
        started: Optional[float] = None,
    ) -> T:
        if started is None:
            started = self._clock()
        retries = 0
        while True:
            self._check_cancelled(cancel_event, description)
            try:
                return operation()
            except Exception as exc:
                if not is_retryable(exc) or retries >= self.max_retries:
                    raise
                delay = self.delay_for(retries + 1)
                if (
                    self.deadline is not None
                    and self._clock() - started + delay > self.deadline
                ):
                    logger.warning(
                        f"{description}: retry budget of {self.deadline}s exhausted"
                    )
                    raise
                retries += 1
                logger.info(
                    f"{description} failed, retrying in {delay}s "
                    f"(retry {retries}/{self.max_retries})"
                )
                self._wait(delay, cancel_event, description)

    def _wait(
        self,
        delay: float,
        cancel_event: Optional[threading.Event],
        description: str,
    ) -> None:
        if cancel_event is not None and self._sleep is None:
            # Event.wait returns as soon as the caller cancels
            if cancel_event.wait(delay):
                raise OperationCancelled(f"{description} was cancelled")
            return
        (self._sleep or time.sleep)(delay)

    @staticmethod
    def _check_cancelled(
        cancel_event: Optional[threading.Event], description: str
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelled(f"{description} was cancelled")
