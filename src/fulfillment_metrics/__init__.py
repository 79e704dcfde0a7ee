"""SLA, fill rate and pack success metrics for the fulfillment dashboard."""

__version__ = "1.0.0"
