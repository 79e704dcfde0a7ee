"""Circuit breaker for the cache backend.

After repeated failures the store is skipped and reads fall through to
fresh computation. A single retry is let through once the cool-down ends.
"""

import time
from enum import Enum
from typing import Any, Dict, Optional

from fulfillment_metrics.core.logger import setup_logger

logger = setup_logger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CacheCircuitBreaker:

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.failure_count = 0
        self.state = BreakerState.CLOSED
        self.opened_at: Optional[float] = None

    def _trip(self, reason: str) -> None:
        self.state = BreakerState.OPEN
        self.opened_at = time.time()
        logger.error(f"Cache circuit open: {reason}")

    def record_success(self):
        if self.state is not BreakerState.CLOSED:
            logger.info(f"Cache backend recovered after {self.failure_count} failures")

        self.failure_count = 0
        self.state = BreakerState.CLOSED
        self.opened_at = None

    def record_failure(self):
        self.failure_count += 1
        logger.warning(f"Cache backend failure {self.failure_count}/{self.threshold}")

        if self.state is BreakerState.HALF_OPEN:
            self._trip("retry failed")
        elif self.state is BreakerState.CLOSED and self.failure_count >= self.threshold:
            self._trip(f"{self.failure_count} consecutive failures")

    def should_attempt(self) -> bool:
        """False while the circuit is open and the cool-down has not elapsed."""
        if self.state is BreakerState.OPEN:
            if time.time() - self.opened_at <= self.timeout:
                return False
            self.state = BreakerState.HALF_OPEN
            logger.info(f"Cache circuit half-open after {self.timeout}s, retrying")

        return True

    def get_state(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "threshold": self.threshold,
            "opened_at": self.opened_at,
            "timeout": self.timeout,
        }
