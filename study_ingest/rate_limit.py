"""
Call pacing for rate-limited providers.

A ``CallPacer`` keeps a minimum gap between the end of one paced call and
the start of the next. The first call goes straight through. Calls are
never reordered or overlapped.
"""
import threading
import time
from typing import Any, Callable, Optional, TypeVar

T = TypeVar("T")


class CallPacer:
    """
    Strictly sequential pacing with per-call spacing.

    Args:
        clock: Monotonic time source
        sleep: Sleep function; tests inject a fake that advances the clock
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_end: Optional[float] = None
        self.total_waited = 0.0

    def _wait(self, interval: float) -> float:
        if self._last_end is None or interval <= 0:
            return 0.0
        remaining = self._last_end + interval - self._clock()
        if remaining <= 0:
            return 0.0
        self._sleep(remaining)
        self.total_waited += remaining
        return remaining

    def run(self, interval: float, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """
        Run ``fn`` once ``interval`` seconds have passed since the previous paced call ended.

        Args:
            interval: Minimum gap in seconds
            fn: Operation to run

        Returns:
            Whatever ``fn`` returns
        """
        with self._lock:
            self._wait(interval)
            try:
                return fn(*args, **kwargs)
            finally:
                self._last_end = self._clock()

    def reset(self) -> None:
        with self._lock:
            self._last_end = None
