"""Abstract sources for order and pack error records."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from fulfillment_metrics.models.order import Order, PackErrorEvent


class OrderSourceError(Exception):
    """Raised when the order store cannot be queried."""


class OrderSource(ABC):
    """Abstract order store.

    This allows easy swapping between storage backends
    (Firestore, in-memory fixtures, etc.)
    """

    @abstractmethod
    async def get_orders_allocated_since(
        self,
        threshold: datetime,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """Get orders allocated at or after threshold.

        Args:
            threshold: Earliest allocation time (aware UTC)
            limit: Optional result-count ceiling

        Returns:
            Orders ordered by allocation time, newest first

        Raises:
            OrderSourceError: If the store cannot be queried
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the store is accessible."""


class PackErrorSource(ABC):
    """Abstract store of packing error events."""

    @abstractmethod
    async def get_pack_errors_between(
        self,
        start: datetime,
        end: datetime,
    ) -> List[PackErrorEvent]:
        """Get pack errors received within [start, end], newest first.

        Raises:
            OrderSourceError: If the store cannot be queried
        """
