"""Pydantic models for orders and computed metrics."""

from fulfillment_metrics.models.metrics import (
    DailyMetric,
    FillRateSnapshot,
    MetricsSummary,
    ProblemOrdersReport,
)
from fulfillment_metrics.models.order import Order, PackErrorEvent

__all__ = [
    "DailyMetric",
    "FillRateSnapshot",
    "MetricsSummary",
    "Order",
    "PackErrorEvent",
    "ProblemOrdersReport",
]
