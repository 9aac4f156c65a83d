"""
Centralised retry policy for calls to external services.

Wraps a callable with a bounded number of retries and exponential backoff
``min(base * 2**attempt, max_delay)``. A classifier decides which failures
are transient; anything else propagates on the first attempt. When retries
run out the last exception is re-raised unchanged.
"""
import time
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import is_retryable
from .log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Bounded exponential backoff around a single operation.

    Retries are sequential; one policy instance can be shared between
    threads because every call builds its own tenacity controller.
    """

    def __init__(
        self,
        max_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 5.0,
        classifier: Callable[[BaseException], bool] = is_retryable,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            max_retries: Attempts beyond the first try
            base_delay: Delay before the first retry, in seconds
            max_delay: Upper bound for any single delay
            classifier: Returns True for failures worth another attempt
            sleep: Sleep function (injected in tests)
        """
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.classifier = classifier
        self._sleep = sleep

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            **kwargs,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _log_retry(self, operation: str) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.warning(
                "retrying_operation",
                operation=operation,
                attempt=state.attempt_number,
                max_retries=self.max_retries,
                delay=round(state.next_action.sleep, 3) if state.next_action else None,
                error=str(error),
            )
        return before_sleep

    def call(self, fn: Callable[..., T], *args: Any, operation: Optional[str] = None, **kwargs: Any) -> T:
        """
        Run ``fn(*args, **kwargs)`` under the policy.

        Args:
            fn: Operation to run
            operation: Name used in retry log events

        Returns:
            Whatever ``fn`` returns
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay, min=0, max=self.max_delay),
            retry=retry_if_exception(self.classifier),
            before_sleep=self._log_retry(operation or getattr(fn, "__name__", "operation")),
            sleep=self._sleep,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

