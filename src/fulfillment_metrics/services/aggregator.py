"""
Daily Aggregator.

Groups orders by required-ship business day (Eastern) and rolls them up
into a fixed-length window of DailyMetric entries, oldest first.

Steps:
1. Evaluate every order once: its required ship day and SLA outcome, or
   the reason it is skipped.
2. Walk back from yesterday collecting business days (bounded search).
3. For each day, look up its pre-grouped orders and the cached fill rate
   and pack success figures.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Union

from fulfillment_metrics.config.constants import (
    CANCELED_STATUS,
    MAX_DAYS_BACK,
    TARGET_BUSINESS_DAYS,
)
from fulfillment_metrics.core.business_calendar import recent_business_days
from fulfillment_metrics.core.logger import setup_logger
from fulfillment_metrics.core.sla import (
    InvalidTimestampError,
    required_ship_day,
    sla_met,
)
from fulfillment_metrics.models.metrics import (
    DailyMetric,
    FillRateSnapshot,
    MetricsSummary,
)
from fulfillment_metrics.models.order import Order

logger = setup_logger(__name__)


class SkipReason(str, Enum):
    """Why an order was left out of the metrics."""

    CANCELED = "canceled"
    NOT_READY_TO_SHIP = "not_ready_to_ship"
    NOT_ALLOCATED = "not_allocated"
    INVALID_TIMESTAMP = "invalid_timestamp"
    PROCESSING_ERROR = "processing_error"


@dataclass
class OrderOutcome:
    """SLA evaluation of one order."""
    order_number: Optional[str]
    ship_day: date
    met_sla: bool


@dataclass
class GroupingReport:
    """Orders grouped by Eastern required-ship day, plus skip counts."""
    groups: Dict[date, List[OrderOutcome]] = field(default_factory=dict)
    processed: int = 0
    skipped: Counter = field(default_factory=Counter)

    def order_counts(self) -> Dict[date, int]:
        return {day: len(outcomes) for day, outcomes in self.groups.items()}

    def skipped_summary(self) -> Dict[str, int]:
        return {reason.value: count for reason, count in self.skipped.items()}

    @property
    def total_skipped(self) -> int:
        return sum(self.skipped.values())


@dataclass
class AggregationResult:
    """Output of one aggregation run."""
    metrics: List[DailyMetric]
    report: GroupingReport
    derived_fill_rates: Dict[date, FillRateSnapshot] = field(default_factory=dict)


def round_percentage(numerator: float, denominator: float) -> float:
    """numerator / denominator * 100, rounded half-up to one decimal."""
    value = Decimal(str(numerator)) * 100 / Decimal(str(denominator))
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def round_average(values: List[float]) -> float:
    if not values:
        return 0.0
    value = Decimal(str(sum(values))) / len(values)
    return float(value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def pack_success_percentage(order_count: int, error_count: int) -> float:
    """Share of due orders without a pack error; 100 when nothing was due."""
    if order_count <= 0:
        return 100.0
    return round_percentage(order_count - error_count, order_count)


def eligibility_skip_reason(order: Order) -> Optional[SkipReason]:
    """Reason an order never counts toward SLA or fill rate, if any."""
    if order.status == CANCELED_STATUS:
        return SkipReason.CANCELED
    if order.ready_to_ship is False:
        return SkipReason.NOT_READY_TO_SHIP
    if not order.allocated_at:
        return SkipReason.NOT_ALLOCATED
    return None


def evaluate_order(order: Order, now: Optional[datetime] = None) -> Union[OrderOutcome, SkipReason]:
    """Required ship day and SLA outcome for one order, or why it is skipped."""
    reason = eligibility_skip_reason(order)
    if reason:
        return reason

    try:
        ship_day = required_ship_day(order, now)
        if ship_day is None:
            return SkipReason.NOT_ALLOCATED
        met = sla_met(order.shipped_at, order, now) if order.shipped_at else False
    except InvalidTimestampError:
        return SkipReason.INVALID_TIMESTAMP

    order_number = str(order.order_number) if order.order_number is not None else None
    return OrderOutcome(order_number=order_number, ship_day=ship_day, met_sla=met)


def group_orders_by_ship_date(orders: Iterable[Order], now: Optional[datetime] = None) -> GroupingReport:
    """Evaluate every order once and group outcomes by required ship day."""
    report = GroupingReport()

    for order in orders:
        try:
            outcome = evaluate_order(order, now)
        except Exception as e:
            logger.debug(f"Skipping order {order.order_number}: {e}")
            outcome = SkipReason.PROCESSING_ERROR

        if isinstance(outcome, SkipReason):
            report.skipped[outcome] += 1
            continue

        report.groups.setdefault(outcome.ship_day, []).append(outcome)
        report.processed += 1

    logger.info(
        f"Processed {report.processed} orders, skipped {report.total_skipped} "
        f"{report.skipped_summary()} across {len(report.groups)} ship dates"
    )
    return report


def derive_backordered(snapshot: FillRateSnapshot, order_count: int) -> Optional[FillRateSnapshot]:
    """
    Backfill a historical backordered count from its fill rate.

    Returns:
        New snapshot flagged as calculated, or None if nothing to derive
    """
    if snapshot.backordered_count or snapshot.fill_rate >= 100 or order_count <= 0:
        return None

    missing = Decimal(order_count) * (1 - Decimal(str(snapshot.fill_rate)) / 100)
    backordered = int(missing.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return snapshot.model_copy(update={
        "backordered_count": backordered,
        "total_orders_today": order_count,
        "calculated": True,
    })


def build_daily_metric(
    day: date,
    outcomes: List[OrderOutcome],
    fill_rate: Optional[FillRateSnapshot],
    pack_success: Optional[float],
) -> DailyMetric:
    order_count = len(outcomes)
    met_count = sum(1 for outcome in outcomes if outcome.met_sla)

    return DailyMetric(
        date=day,
        date_formatted=f"{day:%b} {day.day}",
        day_name=f"{day:%a}",
        day_of_week=(day.weekday() + 1) % 7,
        order_count=order_count,
        sla_met_count=met_count,
        sla_percentage=round_percentage(met_count, order_count) if order_count else 0.0,
        fill_rate_percentage=fill_rate.fill_rate if fill_rate else 0.0,
        backordered_count=fill_rate.backordered_count if fill_rate else 0,
        fill_rate_calculated=fill_rate.calculated if fill_rate else False,
        pack_success_percentage=100.0 if pack_success is None else pack_success,
    )


def summarize(metrics: List[DailyMetric]) -> MetricsSummary:
    """Window averages and the newest day's SLA."""
    if not metrics:
        return MetricsSummary()

    return MetricsSummary(
        average_sla=round_average([m.sla_percentage for m in metrics]),
        average_fill_rate=round_average([m.fill_rate_percentage for m in metrics]),
        average_pack_success=round_average([m.pack_success_percentage for m in metrics]),
        current_sla=metrics[-1].sla_percentage,
        total_orders=sum(m.order_count for m in metrics),
        business_days=len(metrics),
    )


class DailyAggregator:
    """Builds the rolling window of daily metrics."""

    def __init__(
        self,
        target_business_days: int = TARGET_BUSINESS_DAYS,
        max_days_back: int = MAX_DAYS_BACK,
    ):
        """
        Args:
            target_business_days: Business days to collect
            max_days_back: Calendar days examined before giving up
        """
        self.target_business_days = target_business_days
        self.max_days_back = max_days_back

    def window(self, today: date) -> List[date]:
        """Business days covered by the window ending yesterday, oldest first."""
        return recent_business_days(today, self.target_business_days, self.max_days_back)

    def build(
        self,
        report: GroupingReport,
        today: date,
        fill_rates: Optional[Mapping[date, FillRateSnapshot]] = None,
        pack_rates: Optional[Mapping[date, float]] = None,
    ) -> AggregationResult:
        """
        Roll grouped orders up into daily metrics.

        Args:
            report: Output of group_orders_by_ship_date
            today: Eastern calendar date of the computation (excluded)
            fill_rates: Cached fill rate snapshots by day
            pack_rates: Cached pack success percentages by day

        Returns:
            AggregationResult with metrics oldest first
        """
        fill_rates = fill_rates or {}
        pack_rates = pack_rates or {}

        metrics = []
        derived = {}
        for day in self.window(today):
            outcomes = report.groups.get(day, [])
            snapshot = fill_rates.get(day)

            if snapshot is not None:
                calculated = derive_backordered(snapshot, len(outcomes))
                if calculated is not None:
                    derived[day] = calculated
                    snapshot = calculated

            metrics.append(build_daily_metric(day, outcomes, snapshot, pack_rates.get(day)))

        logger.info(f"Generated metrics for {len(metrics)} business days ending before {today}")
        return AggregationResult(metrics=metrics, report=report, derived_fill_rates=derived)

    def aggregate(
        self,
        orders: Iterable[Order],
        today: date,
        now: Optional[datetime] = None,
        fill_rates: Optional[Mapping[date, FillRateSnapshot]] = None,
        pack_rates: Optional[Mapping[date, float]] = None,
    ) -> AggregationResult:
        """Group orders and build the window in one call."""
        report = group_orders_by_ship_date(orders, now)
        return self.build(report, today, fill_rates, pack_rates)
