"""Fill rate endpoint client."""

from .fill_rate_client import FillRateClient, FillRateError
