"""Client for the remote fill rate (problem orders) endpoint."""

from typing import Optional

import httpx
from pydantic import ValidationError

from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.models.metrics import ProblemOrdersReport

logger = setup_logger(__name__)


class FillRateError(Exception):
    """Raised when the fill rate endpoint fails or reports an error."""


class FillRateClient:
    """Async HTTP client for the fill rate endpoint.

    The endpoint takes an empty JSON body and answers
    {"success": bool, "data": {"problemOrdersCount": int, ...}}.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize client.

        Args:
            url: Fill rate endpoint URL
            timeout: Request timeout in seconds
            client: Pre-built AsyncClient (e.g. with a mock transport)
        """
        self.url = url
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def fetch_problem_orders(self) -> ProblemOrdersReport:
        """
        Fetch the current problem order counts.

        Returns:
            Parsed report

        Raises:
            FillRateError: On timeout, transport error, non-2xx status,
                success=false or a malformed body
        """
        logger.info(f"Calling fill rate endpoint: {self.url}")

        try:
            response = await self.client.post(self.url, json={})
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            raise FillRateError(f"Fill rate request timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise FillRateError(f"Fill rate endpoint returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise FillRateError(f"Fill rate request failed: {e}") from e
        except ValueError as e:
            raise FillRateError(f"Fill rate response is not JSON: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else body
            raise FillRateError(f"Fill rate endpoint returned error: {error}")

        try:
            report = ProblemOrdersReport.model_validate(body.get("data") or {})
        except ValidationError as e:
            raise FillRateError(f"Fill rate response missing fields: {e}") from e

        logger.info(
            f"Fill rate endpoint: {report.problem_orders_count} new problem orders, "
            f"{report.tracked_issues_count} tracked issues"
        )
        return report

    async def close(self):
        await self.client.aclose()
