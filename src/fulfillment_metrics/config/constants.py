"""
Centralized business constants.

Single point of truth for the SLA rules, rolling-window sizes and cache
keys shared by the calendar, aggregation and refresh services.
"""

# ==============================================================================
# REGIONAL SETTINGS
# ==============================================================================

# Warehouse operates on US Eastern time
EASTERN_TIMEZONE = "America/New_York"

# ==============================================================================
# SLA RULES
# ==============================================================================

# Allocation cutoff (8:00 AM Eastern) expressed in UTC hours
CUTOFF_HOUR_UTC_DST = 12
CUTOFF_HOUR_UTC_STANDARD = 13

# Required ship time (4:00 PM Eastern) expressed in UTC hours
SHIP_HOUR_UTC_DST = 20
SHIP_HOUR_UTC_STANDARD = 21

# Order statuses excluded from SLA and fill rate
CANCELED_STATUS = "canceled"

# ==============================================================================
# ROLLING WINDOW
# ==============================================================================

# Business days shown on the dashboard (today excluded)
TARGET_BUSINESS_DAYS = 30

# Hard cap on calendar days walked back while collecting business days
MAX_DAYS_BACK = 60

# ==============================================================================
# PACK SUCCESS BACKFILL
# ==============================================================================

PACK_BACKFILL_BUSINESS_DAYS = 10
PACK_BACKFILL_MAX_DAYS_BACK = 20

# Pause between per-day pack error queries (seconds)
PACK_BACKFILL_PAUSE_SECONDS = 0.05

# Delay before the first backfill after orders load (seconds)
PACK_BACKFILL_STARTUP_DELAY_SECONDS = 3.0

# Cached pack rates older than this are recomputed
PACK_CACHE_MAX_AGE_HOURS = 24

# ==============================================================================
# DAILY REFRESH
# ==============================================================================

# Local Eastern wall-clock time of the daily cache invalidation
DAILY_REFRESH_HOUR = 0
DAILY_REFRESH_MINUTE = 30

# ==============================================================================
# CACHE KEYS
# ==============================================================================

METRICS_CACHE_KEY = "sla_metrics_data"
METRICS_CACHE_DATE_KEY = "sla_metrics_date"
FILL_RATE_KEY_PREFIX = "fill_rate_"
PACK_SUCCESS_KEY_PREFIX = "pack_success_rate_"
