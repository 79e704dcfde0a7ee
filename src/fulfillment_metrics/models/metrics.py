"""Pydantic models for computed dashboard metrics."""

from datetime import date as Date, datetime
from typing import Optional

from pydantic import BaseModel, Field


class DailyMetric(BaseModel):
    """Metrics for one business day, keyed by its Eastern calendar date."""

    date: Date
    date_formatted: str
    day_name: str
    day_of_week: int  # 0 = Sunday
    order_count: int = 0
    sla_met_count: int = 0
    sla_percentage: float = 0.0
    fill_rate_percentage: float = 0.0
    backordered_count: int = 0
    fill_rate_calculated: bool = False
    pack_success_percentage: float = 100.0


class FillRateSnapshot(BaseModel):
    """Fill rate figure stored per Eastern calendar date."""

    fill_rate: float = 0.0
    backordered_count: int = 0
    new_backordered_count: Optional[int] = None
    tracked_issues_count: Optional[int] = None
    total_orders_today: int = 0
    calculated: bool = False
    last_updated: Optional[datetime] = None


class ProblemOrdersReport(BaseModel):
    """`data` block of the fill rate endpoint response."""

    problem_orders_count: int = Field(alias="problemOrdersCount")
    tracked_issues_count: int = Field(default=0, alias="trackedIssuesCount")
    total_active_issues: Optional[int] = Field(default=None, alias="totalActiveIssues")

    class Config:
        extra = "allow"
        populate_by_name = True

    @property
    def active_issues(self) -> int:
        """New plus tracked issues; falls back to the new-issue count."""
        return self.total_active_issues or self.problem_orders_count


class MetricsSummary(BaseModel):
    """Averages across the rolling window."""

    average_sla: float = 0.0
    average_fill_rate: float = 0.0
    average_pack_success: float = 0.0
    current_sla: float = 0.0
    total_orders: int = 0
    business_days: int = 0
