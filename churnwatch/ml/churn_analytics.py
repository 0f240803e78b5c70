"""
Churn Analytics

Partner segmentation, benchmark-relative churn scoring, risk trajectory,
monthly cohort retention and segment portraits. Everything is computed
on the fly from PartnerStats and order records.
"""
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from churnwatch.models.stats import PartnerStats
from churnwatch.ml.partner_stats import dated_orders, resolve_direction
from churnwatch.utils.helpers import days_between, mean
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()

# ---------------------------------------------------------------------------
# Segment definitions
# ---------------------------------------------------------------------------
SEGMENT_DEFINITIONS = {
    "small": {
        "label": "Small",
        "max_score": 50,
        "description": "Few orders through one or two warehouses.",
    },
    "medium": {
        "label": "Medium",
        "max_score": 200,
        "description": "Regular volume, moderate warehouse footprint.",
    },
    "large": {
        "label": "Large",
        "max_score": None,
        "description": "High volume spread across several warehouses.",
    },
}

# Retention checkpoints: days after the cohort month start
RETENTION_WINDOWS = (
    ("month1", 30, 60),
    ("month2", 60, 90),
    ("month3", 90, 120),
)


@dataclass(frozen=True)
class PartnerSegment:
    size: str
    label: str


@dataclass(frozen=True)
class ChurnBenchmark:
    """Reference values a partner's churn score is measured against"""
    avg_interval: float
    avg_volatility: float
    avg_sku: float
    avg_warehouses: float


@dataclass(frozen=True)
class RiskTrajectory:
    current: float
    previous: float
    trend: str  # improving / stable / degrading
    change: float


@dataclass(frozen=True)
class SegmentedPartner:
    stats: PartnerStats
    segment: PartnerSegment
    churn_score: float
    risk_trend: str
    risk_change: float


@dataclass(frozen=True)
class CohortData:
    cohort_month: str  # YYYY-MM
    start_date: datetime
    partners_count: int
    retention: Dict[str, float]


@dataclass(frozen=True)
class SegmentPortrait:
    segment: str
    direction: str
    partners_count: int
    churn_rate: float
    avg_orders: float
    avg_sku: float
    avg_warehouses: float
    avg_interval: float
    avg_volatility: float
    avg_churn_score: float


def get_partner_segment(partner: PartnerStats) -> PartnerSegment:
    """Size segment from a weighted mix of orders (60%) and warehouses (40%)"""
    score = partner.total_orders * 0.6 + partner.unique_warehouses * 50 * 0.4

    for size, definition in SEGMENT_DEFINITIONS.items():
        if definition["max_score"] is None or score < definition["max_score"]:
            return PartnerSegment(size=size, label=definition["label"])


def calculate_churn_score(partner: PartnerStats, benchmark: ChurnBenchmark) -> float:
    """
    Churn score (0-100) relative to a peer benchmark.

    Longer intervals (up to 40 points) and higher volatility (up to 30) add
    risk; fewer SKUs (up to 20) and fewer warehouses (up to 10) than the
    benchmark add risk too. Churned partners score 100.
    """
    if partner.is_churned:
        return 100.0

    score = 0.0
    if benchmark.avg_interval > 0:
        score += min(40.0, partner.order_frequency / benchmark.avg_interval * 40)
    if benchmark.avg_volatility > 0:
        score += min(30.0, partner.volatility / benchmark.avg_volatility * 30)
    if benchmark.avg_sku > 0:
        score += max(0.0, 20 - partner.unique_skus / benchmark.avg_sku * 20)
    if benchmark.avg_warehouses > 0:
        score += max(0.0, 10 - partner.unique_warehouses / benchmark.avg_warehouses * 10)

    return min(100.0, max(0.0, score))


def build_churn_benchmark(partners: Iterable[PartnerStats]) -> ChurnBenchmark:
    """
    Peer benchmark over the non-churned partners.

    Falls back to neutral reference values when no partner is active so
    that scores stay defined.
    """
    partners = list(partners)
    active = [p for p in partners if not p.is_churned]

    avg_sku = mean(p.unique_skus for p in partners)
    avg_warehouses = mean(p.unique_warehouses for p in partners)
    return ChurnBenchmark(
        avg_interval=mean(p.order_frequency for p in active) if active else 1.0,
        avg_volatility=mean(p.volatility for p in active) if active else 0.5,
        avg_sku=avg_sku or 1.0,
        avg_warehouses=avg_warehouses or 1.0,
    )


def calculate_risk_trajectory(
    records: Iterable[Any],
    partner_id: str,
    now: Optional[datetime] = None
) -> RiskTrajectory:
    """
    Compare a simple order-count risk between the last 30 days and the
    30 days before them. Each order lowers the period risk by 5 points.
    """
    now = now or datetime.utcnow()
    order_dates = [
        ordered_at for record, ordered_at in dated_orders(records)
        if record.partner == partner_id
    ]
    return _trajectory_from_dates(order_dates, now)


def _trajectory_from_dates(order_dates: Iterable[datetime], now: datetime) -> RiskTrajectory:
    window = settings.long_window_days
    current_start = now - timedelta(days=window)
    previous_start = now - timedelta(days=window * 2)

    current_count = 0
    previous_count = 0
    for ordered_at in order_dates:
        if ordered_at >= current_start:
            current_count += 1
        elif ordered_at >= previous_start:
            previous_count += 1

    def period_risk(count: int) -> float:
        return 100.0 if count == 0 else float(max(0, 100 - count * 5))

    current = period_risk(current_count)
    previous = period_risk(previous_count)
    change = current - previous

    trend = "stable"
    if change < -5:
        trend = "improving"
    elif change > 5:
        trend = "degrading"

    return RiskTrajectory(current=current, previous=previous, trend=trend, change=change)


def segment_partners(
    partners: Iterable[PartnerStats],
    records: Iterable[Any],
    now: Optional[datetime] = None
) -> List[SegmentedPartner]:
    """Attach segment, churn score and risk trend to each partner"""
    now = now or datetime.utcnow()
    partners = list(partners)
    benchmark = build_churn_benchmark(partners)

    # One pass over the records, bucketed by partner
    order_dates = defaultdict(list)
    for record, ordered_at in dated_orders(records):
        order_dates[record.partner].append(ordered_at)

    segmented = []
    for partner in partners:
        trajectory = _trajectory_from_dates(order_dates.get(partner.partner, ()), now)
        segmented.append(SegmentedPartner(
            stats=partner,
            segment=get_partner_segment(partner),
            churn_score=calculate_churn_score(partner, benchmark),
            risk_trend=trajectory.trend,
            risk_change=trajectory.change,
        ))
    return segmented


def build_cohort_analysis(records: Iterable[Any], direction: str = "all") -> List[CohortData]:
    """
    Monthly cohort retention.

    Cohort = calendar month of a partner's first order. A partner is
    retained at month N when it ordered between 30*N and 30*(N+1) days
    after the cohort month start. Orders without a direction are ignored.
    """
    first_order: Dict[str, datetime] = {}
    partner_orders = defaultdict(list)

    for record, ordered_at in dated_orders(records):
        record_direction = resolve_direction(record)
        if not record_direction:
            continue
        if direction != "all" and record_direction != direction:
            continue
        partner_orders[record.partner].append(ordered_at)
        if record.partner not in first_order or ordered_at < first_order[record.partner]:
            first_order[record.partner] = ordered_at

    cohorts = defaultdict(set)
    for partner, ordered_at in first_order.items():
        cohorts[ordered_at.strftime("%Y-%m")].add(partner)

    cohort_data = []
    for cohort_month in sorted(cohorts):
        partners = cohorts[cohort_month]
        start_date = datetime.strptime(cohort_month, "%Y-%m")

        retention = {"month0": 100.0}
        for key, start, end in RETENTION_WINDOWS:
            retained = sum(
                1 for partner in partners
                if any(start <= days_between(d, start_date) < end for d in partner_orders[partner])
            )
            retention[key] = retained / len(partners) * 100

        cohort_data.append(CohortData(
            cohort_month=cohort_month,
            start_date=start_date,
            partners_count=len(partners),
            retention=retention,
        ))

    log.debug(f"Built {len(cohort_data)} cohorts for direction '{direction}'")
    return cohort_data


def generate_segment_portraits(
    partners: Iterable[PartnerStats],
    directions: Iterable[str]
) -> List[SegmentPortrait]:
    """Average behaviour of each (direction, size segment) with at least one partner"""
    partners = list(partners)
    portraits = []

    for direction in directions:
        for size, definition in SEGMENT_DEFINITIONS.items():
            members = [
                p for p in partners
                if p.direction == direction and get_partner_segment(p).size == size
            ]
            if not members:
                continue

            active = [p for p in members if not p.is_churned]
            churned = len(members) - len(active)

            avg_interval = mean(p.order_frequency for p in active)
            avg_volatility = mean(p.volatility for p in active)
            avg_sku = mean(p.unique_skus for p in members)
            avg_warehouses = mean(p.unique_warehouses for p in members)

            benchmark = ChurnBenchmark(
                avg_interval=avg_interval if active else 1.0,
                avg_volatility=avg_volatility if active else 0.5,
                avg_sku=avg_sku or 1.0,
                avg_warehouses=avg_warehouses or 1.0,
            )

            portraits.append(SegmentPortrait(
                segment=definition["label"],
                direction=direction,
                partners_count=len(members),
                churn_rate=churned / len(members) * 100,
                avg_orders=mean(p.total_orders for p in members),
                avg_sku=avg_sku,
                avg_warehouses=avg_warehouses,
                avg_interval=avg_interval,
                avg_volatility=avg_volatility,
                avg_churn_score=mean(calculate_churn_score(p, benchmark) for p in active),
            ))

    return portraits
