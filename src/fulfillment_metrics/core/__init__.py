"""Core module - Logging, monitoring, business calendar and SLA rules."""

from fulfillment_metrics.core.logger import setup_logger

__all__ = ["setup_logger"]
