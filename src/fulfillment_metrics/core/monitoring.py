"""
GlitchTip Error Monitoring Utilities

Initialization plus helpers for error tracking and context management.
"""

import logging
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from fulfillment_metrics.core.logger import setup_logger

logger = setup_logger(__name__)


def init_monitoring(dsn: Optional[str], environment: str) -> bool:
    """
    Initialize GlitchTip (Sentry-compatible) error monitoring.

    Returns:
        True if monitoring was initialized, False if disabled or failed
    """
    if not dsn:
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            integrations=[
                FastApiIntegration(transaction_style="endpoint"),
                LoggingIntegration(
                    level=None,  # Capture all log levels as breadcrumbs
                    event_level=logging.ERROR  # Send ERROR logs as events
                ),
            ],
            traces_sample_rate=0.1,
            profiles_sample_rate=0.0,
            send_default_pii=False,
        )
        logger.info("GlitchTip error monitoring initialized")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize GlitchTip: {e}")
        return False


def set_refresh_context(
    trigger: str,
    metric_date: Optional[str] = None,
    **extra_tags
) -> None:
    """
    Set metrics-refresh context for error tracking.

    Args:
        trigger: What started the refresh ("request", "forced", "scheduled", "backfill")
        metric_date: Eastern calendar date being computed
        **extra_tags: Additional tags to add
    """
    try:
        sentry_sdk.set_tag("refresh.trigger", trigger)
        if metric_date:
            sentry_sdk.set_tag("refresh.date", metric_date)

        for key, value in extra_tags.items():
            sentry_sdk.set_tag(key, value)

        context_data = {"trigger": trigger, "metric_date": metric_date}
        context_data.update(extra_tags)
        sentry_sdk.set_context("refresh", context_data)

    except Exception as e:
        logger.warning(f"Failed to set refresh context: {e}")


def capture_exception(
    error: Exception,
    context: Optional[Dict[str, Any]] = None,
    level: str = "error"
) -> None:
    """
    Capture an exception and send to GlitchTip.

    Args:
        error: The exception to capture
        context: Additional context data
        level: Error level (error, warning, info)
    """
    try:
        if context:
            with sentry_sdk.new_scope() as scope:
                scope.set_context("custom", context)
                scope.set_level(level)
                sentry_sdk.capture_exception(error)
        else:
            sentry_sdk.capture_exception(error)

    except Exception as e:
        logger.warning(f"Failed to capture exception in GlitchTip: {e}")
