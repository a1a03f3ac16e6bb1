"""
Circuit breaker and exponential backoff around the permission profile fetch.

States:
- CLOSED: normal operation, calls pass through
- OPEN: failure threshold reached, calls rejected until the reset timeout elapses
- HALF_OPEN: probing; three consecutive successes close the circuit, one failure reopens it
"""
import logging
import random
import threading
import time
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitOpenError(Exception):
    """Raised when the circuit is OPEN and blocking calls."""

    def __init__(self, circuit_name: str, retry_after_seconds: float):
        self.circuit_name = circuit_name
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            f"Circuit '{circuit_name}' is OPEN. Retry after {retry_after_seconds:.0f} seconds."
        )


class CircuitBreaker:
    """Thread-safe: state reads and transitions happen under one lock, the wrapped call runs outside it."""

    FAILURE_THRESHOLD = 5
    RESET_TIMEOUT = 60
    HALF_OPEN_SUCCESSES = 3

    def __init__(
        self,
        name: str,
        failure_threshold: Optional[int] = None,
        reset_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold or self.FAILURE_THRESHOLD
        self.reset_timeout = reset_timeout or self.RESET_TIMEOUT
        self._clock = clock
        self._lock = threading.RLock()
        self.reset()

    def reset(self):
        with self._lock:
            self.state = CircuitState.CLOSED
            self.failure_count = 0
            self.consecutive_successes = 0
            self.last_failure_time = 0.0
            self.next_attempt_time = 0.0

    def _before_call(self):
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            now = self._clock()
            if now >= self.next_attempt_time:
                self.state = CircuitState.HALF_OPEN
                self.consecutive_successes = 0
                logger.info(f"[CircuitBreaker:{self.name}] transitioning to HALF_OPEN")
                return
            retry_after = max(0.0, self.next_attempt_time - now)
        raise CircuitOpenError(self.name, retry_after)

    def call(self, func: Callable, *args, **kwargs) -> Any:
        self._before_call()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.consecutive_successes += 1
                if self.consecutive_successes >= self.HALF_OPEN_SUCCESSES:
                    self.reset()
                    logger.info(f"[CircuitBreaker:{self.name}] CLOSED after successful recoveries")
            else:
                self.reset()

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()
            if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self._open()

    def _open(self):
        # caller holds the lock
        self.state = CircuitState.OPEN
        self.next_attempt_time = self._clock() + self.reset_timeout
        logger.warning(f"[CircuitBreaker:{self.name}] OPENED after {self.failure_count} failures")

    def get_status(self) -> dict:
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
                "next_attempt_time": self.next_attempt_time,
                "is_open": self.state == CircuitState.OPEN,
            }


class ExponentialBackoff:
    def __init__(
        self,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_retries: int = 5,
        jitter: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.max_retries = max_retries
        self.jitter = jitter
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        if not self.jitter:
            return delay
        # +/-20% spread so concurrent retries do not line up
        spread = delay * 0.2
        return max(0.0, delay + random.uniform(-spread, spread))

    def execute(self, func: Callable, name: str = "operation") -> Any:
        """Run func, retrying on failure. CircuitOpenError is never retried."""
        attempt = 0
        while True:
            try:
                return func()
            except CircuitOpenError:
                raise
            except Exception as e:
                if attempt >= self.max_retries:
                    logger.error(f"[{name}] Max retries ({self.max_retries}) exceeded")
                    raise
                delay = self.calculate_delay(attempt)
                logger.warning(f"[{name}] Attempt {attempt + 1} failed, retrying in {delay:.2f}s: {e}")
                self._sleep(delay)
                attempt += 1
