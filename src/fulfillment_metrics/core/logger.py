"""Logging configuration and setup."""

import json
import logging
import os
import sys
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from fulfillment_metrics.config.constants import EASTERN_TIMEZONE

# Get log level from environment
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Create logs directory
log_dir = Path(os.getenv("LOG_DIR", "logs"))
log_dir.mkdir(parents=True, exist_ok=True)

EASTERN_TZ = ZoneInfo(EASTERN_TIMEZONE)

# Generate session ID (for distinguishing multiple app starts on same day)
SESSION_ID = str(uuid.uuid4())[:8]

# Create date-based log filename with session ID (Eastern time)
LOG_DATE = datetime.now(EASTERN_TZ).strftime("%Y-%m-%d")
LOG_FILENAME = f"metrics_{LOG_DATE}_{SESSION_ID}.log"


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON (Eastern timezone)."""
        log_data = {
            "timestamp": datetime.now(EASTERN_TZ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, "metric_date"):
            log_data["metric_date"] = record.metric_date

        return json.dumps(log_data, default=str)


# Configure root logger once
root_logger = logging.getLogger()
root_logger.setLevel(logging.DEBUG)

# Skip if already configured
if not root_logger.handlers:
    file_handler = logging.FileHandler(log_dir / LOG_FILENAME)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(JSONFormatter())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    console_handler.setFormatter(JSONFormatter())

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)


def setup_logger(name: str) -> logging.Logger:
    """Get logger for a module."""
    logger = logging.getLogger(name)
    logger.propagate = True
    return logger
