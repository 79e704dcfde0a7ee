"""
Authentication Middleware

Simple API key authentication for dashboard endpoints.
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from fulfillment_metrics.config.settings import settings


async def verify_api_key(
    x_api_key: Optional[str] = Header(default=None, description="Dashboard API key"),
):
    """
    Verify API key from X-API-Key header.

    Raises:
        HTTPException: 503 if no key is configured, 401 if the header is
            missing or does not match

    Returns:
        True if authentication successful
    """
    expected_key = settings.dashboard_api_key

    if not expected_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Dashboard not configured (DASHBOARD_API_KEY not set in environment)"
        )

    if x_api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key",
            headers={"WWW-Authenticate": "ApiKey"}
        )

    return True
