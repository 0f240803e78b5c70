"""
Portfolio Metrics Service
Retention, churn, growth and concentration of the whole partner portfolio
"""
import math
import pandas as pd
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional

from churnwatch.ml.partner_stats import build_order_frame
from churnwatch.utils.helpers import days_between, safe_divide
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()

# Direction whose orders are split further by order type
SPLIT_DIRECTION = "Express/FBS"


@dataclass(frozen=True)
class BusinessMetrics:
    retention_rate: float  # % of previous-period partners still ordering
    churn_rate: float  # % of previous-period partners now churned
    period_growth: float  # order growth vs the previous period
    concentration_risk: float  # % of orders from the top 20% partners
    health_score: float  # 0-100
    avg_orders_per_active_partner: float


@dataclass(frozen=True)
class DetailedDirectionStats:
    direction: str
    sub_type: Optional[str]  # Express / FBS inside the split direction
    total_orders: int
    total_partners: int
    active_partners: int
    churned_partners: int
    avg_orders_per_partner: float
    retention_rate: float
    churn_rate: float


@dataclass(frozen=True)
class SKUMetrics:
    month: str  # YYYY-MM
    total_skus: int  # cumulative up to and including the month
    active_skus: int
    new_skus: int
    churned_skus: int
    avg_orders_per_sku: float
    top_sku_concentration: float


def _top_share(counts: pd.Series, total: int) -> float:
    """% of ``total`` carried by the top 20% (at least one) of ``counts``"""
    if total == 0 or counts.empty:
        return 0.0
    top_n = max(1, math.ceil(len(counts) * 0.2))
    return float(counts.sort_values(ascending=False).head(top_n).sum()) / total * 100


def _periods(df: pd.DataFrame, period_days: int, now: datetime):
    current_start = now - timedelta(days=period_days)
    previous_start = now - timedelta(days=period_days * 2)
    current = df[df['ordered_at'] >= current_start]
    previous = df[(df['ordered_at'] >= previous_start) & (df['ordered_at'] < current_start)]
    return current, previous


def _days_since_last_order(df: pd.DataFrame, now: datetime) -> pd.Series:
    last_orders = df.groupby('partner')['ordered_at'].max()
    return last_orders.apply(lambda ts: days_between(now, ts.to_pydatetime()))


def calculate_business_metrics(
    records: Iterable[Any],
    period_days: int = 30,
    now: Optional[datetime] = None
) -> BusinessMetrics:
    """
    Portfolio health for the last ``period_days`` against the period before

    Health score weights: retention 25%, inverse churn 30%, growth 25%
    (50 means flat), inverse concentration 20%.
    """
    now = now or datetime.utcnow()
    df = build_order_frame(records)
    if df.empty:
        return BusinessMetrics(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)

    current, previous = _periods(df, period_days, now)
    current_partners = set(current['partner'])
    previous_partners = set(previous['partner'])
    days_since = _days_since_last_order(df, now)

    retained = current_partners & previous_partners
    retention_rate = safe_divide(len(retained), len(previous_partners)) * 100

    churned = [p for p in previous_partners if days_since[p] > settings.churn_days]
    churn_rate = safe_divide(len(churned), len(previous_partners)) * 100

    period_growth = safe_divide(len(current) - len(previous), len(previous)) * 100
    concentration = _top_share(current['partner'].value_counts(), len(current))

    growth_score = min(100.0, 50 + period_growth) if period_growth >= 0 else max(0.0, 50 + period_growth)
    health_score = (
        retention_rate * 0.25 +
        max(0.0, 100 - churn_rate) * 0.30 +
        growth_score * 0.25 +
        max(0.0, 100 - concentration) * 0.20
    )

    return BusinessMetrics(
        retention_rate=retention_rate,
        churn_rate=churn_rate,
        period_growth=period_growth,
        concentration_risk=concentration,
        health_score=health_score,
        avg_orders_per_active_partner=safe_divide(len(current), len(current_partners)),
    )


def _is_fbs(order_types: pd.Series) -> pd.Series:
    return order_types.fillna("").str.contains("FBS", regex=False)


def _group_stats(
    orders: pd.DataFrame,
    previous: pd.DataFrame,
    direction: str,
    sub_type: Optional[str],
    days_since: pd.Series
) -> DetailedDirectionStats:
    partners = set(orders['partner'])

    previous = previous[previous['direction'] == direction]
    if sub_type == "Express":
        previous = previous[~_is_fbs(previous['order_type'])]
    elif sub_type == "FBS":
        previous = previous[_is_fbs(previous['order_type'])]
    previous_partners = set(previous['partner'])

    churned_from_previous = [p for p in previous_partners if days_since[p] > settings.churn_days]

    return DetailedDirectionStats(
        direction=direction,
        sub_type=sub_type,
        total_orders=len(orders),
        total_partners=len(partners),
        active_partners=sum(1 for p in partners if days_since[p] <= settings.active_days),
        churned_partners=sum(1 for p in partners if days_since[p] > settings.churn_days),
        avg_orders_per_partner=safe_divide(len(orders), len(partners)),
        retention_rate=safe_divide(len(partners & previous_partners), len(previous_partners)) * 100,
        churn_rate=safe_divide(len(churned_from_previous), len(previous_partners)) * 100,
    )


def calculate_detailed_direction_stats(
    records: Iterable[Any],
    period_days: int = 30,
    now: Optional[datetime] = None
) -> List[DetailedDirectionStats]:
    """
    Per-direction partner activity for the current period.

    The Express/FBS direction additionally gets one row per order type.
    """
    now = now or datetime.utcnow()
    df = build_order_frame(records)
    if df.empty:
        return []

    current, previous = _periods(df, period_days, now)
    days_since = _days_since_last_order(df, now)

    stats = []
    for direction, orders in current.groupby('direction', sort=False):
        if direction == SPLIT_DIRECTION:
            fbs = _is_fbs(orders['order_type'])
            for sub_type, part in (("Express", orders[~fbs]), ("FBS", orders[fbs])):
                if not part.empty:
                    stats.append(_group_stats(part, previous, direction, sub_type, days_since))
        stats.append(_group_stats(orders, previous, direction, None, days_since))

    return sorted(stats, key=lambda s: s.total_orders, reverse=True)


def calculate_sku_metrics(records: Iterable[Any], now: Optional[datetime] = None) -> List[SKUMetrics]:
    """
    Monthly SKU activity.

    A SKU counts as churned in a month when its last order month is more
    than two months back from ``now`` and not after that month.
    """
    now = now or datetime.utcnow()
    df = build_order_frame(records)
    df = df[df['sku'].notna()]
    if df.empty:
        return []

    df = df.assign(month=df['ordered_at'].dt.strftime('%Y-%m'))
    first_seen = df.groupby('sku')['month'].min()
    last_seen = df.groupby('sku')['month'].max()
    churn_cutoff = (now - timedelta(days=settings.churn_days)).strftime('%Y-%m')

    metrics = []
    for month, orders in df.groupby('month', sort=True):
        sku_counts = orders['sku'].value_counts()
        active = sku_counts.index

        metrics.append(SKUMetrics(
            month=month,
            total_skus=int((first_seen <= month).sum()),
            active_skus=len(active),
            new_skus=int((first_seen[active] == month).sum()),
            churned_skus=int(((last_seen < churn_cutoff) & (last_seen <= month)).sum()),
            avg_orders_per_sku=safe_divide(len(orders), len(active)),
            top_sku_concentration=float(_top_share(sku_counts, len(orders))),
        ))

    log.debug(f"Calculated SKU metrics for {len(metrics)} months")
    return metrics
