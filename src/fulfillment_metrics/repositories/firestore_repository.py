"""Firestore repository implementation."""

from datetime import datetime, timezone
from typing import List, Optional

from google.api_core import exceptions as google_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from google.oauth2 import service_account
from pydantic import ValidationError

from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.models.order import Order, PackErrorEvent
from fulfillment_metrics.repositories.base import (
    OrderSource,
    OrderSourceError,
    PackErrorSource,
)

logger = setup_logger(__name__)

# ============================================================================
# CONSTANTS - Document Fields
# ============================================================================

FIELD_ALLOCATED_AT = "allocated_at"
FIELD_RECEIVED_AT = "receivedAt"

# allocated_at is stored as a naive UTC ISO string, e.g. '2025-07-28T17:18:42'
ALLOCATED_AT_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Google Cloud scopes for service account credentials
FIRESTORE_SCOPES = ["https://www.googleapis.com/auth/datastore"]

# ============================================================================


class FirestoreRepository(OrderSource, PackErrorSource):
    """Firestore storage implementation for orders and pack errors."""

    def __init__(
        self,
        credentials_path: Optional[str] = None,
        project_id: Optional[str] = None,
        orders_collection: str = "orders",
        pack_errors_collection: str = "pack_errors",
        client: Optional[firestore.AsyncClient] = None,
    ):
        """Initialize Firestore client.

        Args:
            credentials_path: Path to a service account JSON file. Uses
                application default credentials when omitted.
            project_id: Google Cloud project ID
            orders_collection: Collection holding allocated orders
            pack_errors_collection: Collection holding pack error events
            client: Pre-built AsyncClient (skips credential loading)
        """
        self.orders_collection = orders_collection
        self.pack_errors_collection = pack_errors_collection

        if client is None:
            credentials = None
            if credentials_path:
                credentials = service_account.Credentials.from_service_account_file(
                    credentials_path, scopes=FIRESTORE_SCOPES
                )
                project_id = project_id or credentials.project_id
            client = firestore.AsyncClient(project=project_id, credentials=credentials)
            logger.info(f"Initialized Firestore repository: project={project_id}")

        self.client = client

    async def get_orders_allocated_since(
        self,
        threshold: datetime,
        limit: Optional[int] = None,
    ) -> List[Order]:
        """Get orders allocated at or after threshold, newest first.

        allocated_at is a string field, so the threshold is compared in the
        same naive UTC ISO format.
        """
        threshold_str = threshold.astimezone(timezone.utc).strftime(ALLOCATED_AT_FORMAT)
        logger.info(f"Querying {self.orders_collection} allocated since {threshold_str}")

        query = (
            self.client.collection(self.orders_collection)
            .where(filter=FieldFilter(FIELD_ALLOCATED_AT, ">=", threshold_str))
            .order_by(FIELD_ALLOCATED_AT, direction=firestore.Query.DESCENDING)
        )
        if limit:
            query = query.limit(limit)

        orders = []
        try:
            async for doc in query.stream():
                data = doc.to_dict() or {}
                try:
                    orders.append(Order.model_validate({"id": doc.id, **data}))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed order document {doc.id}: {e}")
        except google_exceptions.GoogleAPIError as e:
            raise OrderSourceError(f"Order query failed: {e}") from e

        logger.info(f"Fetched {len(orders)} orders from Firestore")
        return orders

    async def get_pack_errors_between(
        self,
        start: datetime,
        end: datetime,
    ) -> List[PackErrorEvent]:
        """Get pack errors received within [start, end], newest first."""
        query = (
            self.client.collection(self.pack_errors_collection)
            .where(filter=FieldFilter(FIELD_RECEIVED_AT, ">=", start))
            .where(filter=FieldFilter(FIELD_RECEIVED_AT, "<=", end))
            .order_by(FIELD_RECEIVED_AT, direction=firestore.Query.DESCENDING)
        )

        events = []
        try:
            async for doc in query.stream():
                data = doc.to_dict() or {}
                try:
                    events.append(PackErrorEvent.model_validate({"id": doc.id, **data}))
                except ValidationError as e:
                    logger.warning(f"Skipping malformed pack error document {doc.id}: {e}")
        except google_exceptions.GoogleAPIError as e:
            raise OrderSourceError(f"Pack error query failed: {e}") from e

        return events

    async def health_check(self) -> bool:
        """Check Firestore connectivity with a single-document read."""
        try:
            query = self.client.collection(self.orders_collection).limit(1)
            async for _ in query.stream():
                break
            return True
        except Exception as e:
            logger.error(f"Firestore health check failed: {e}")
            return False

    async def close(self):
        """Close the Firestore client."""
        try:
            self.client.close()
        except Exception as e:
            logger.error(f"Error closing Firestore client: {e}")
