"""
Partner Statistics Module
Aggregates order records into per-partner and per-SKU behaviour statistics
"""
import pandas as pd
import numpy as np
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from churnwatch.models.order import OrderRecord, load_order_records
from churnwatch.models.alerts import AnomalyAlert, AlertEngineError
from churnwatch.models.stats import PartnerStats, SKUStats, DirectionStats, ChurnPattern
from churnwatch.utils.helpers import (
    coefficient_of_variation,
    days_between,
    mean,
    median,
    round_half_up,
    to_fixed,
)
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()

# Partners that form their own logistics direction regardless of the computed one
DIRECTION_OVERRIDES = {
    "VSROK": "VSROK",
}

_FRAME_COLUMNS = [
    "partner",
    "direction",
    "sku",
    "warehouse",
    "marketplace",
    "order_type",
    "items",
    "weight",
    "ordered_at",
]


def resolve_direction(record: OrderRecord) -> str:
    """Effective logistics direction of a record"""
    override = DIRECTION_OVERRIDES.get(record.partner)
    if override:
        return override
    return record.direction or ""


def _ensure_records(records: Iterable[Any]) -> List[OrderRecord]:
    return load_order_records(records)


def dated_orders(records: Iterable[Any]) -> List[Tuple[OrderRecord, datetime]]:
    """
    Pair each record with its parsed order timestamp.

    Records whose timestamp matches no known format are left out.
    """
    dated = []
    dropped = 0
    for record in _ensure_records(records):
        ordered_at = record.ordered_at
        if ordered_at is None:
            dropped += 1
            continue
        dated.append((record, ordered_at))

    if dropped:
        log.debug(f"Excluded {dropped} records with unparsable order dates")
    return dated


def orders_in_window(
    dated: Iterable[Tuple[OrderRecord, datetime]],
    days: int,
    now: datetime
) -> List[Tuple[OrderRecord, datetime]]:
    """Orders placed within the last ``days`` days (inclusive of the cutoff)"""
    if days < 0:
        raise AlertEngineError(f"Window must not be negative, got {days} days")
    cutoff = now - timedelta(days=days)
    return [(record, ordered_at) for record, ordered_at in dated if ordered_at >= cutoff]


def build_order_frame(records: Iterable[Any]) -> pd.DataFrame:
    """Flatten records into a DataFrame, one row per order with a valid timestamp"""
    rows = []
    for record, ordered_at in dated_orders(records):
        rows.append({
            'partner': record.partner,
            'direction': resolve_direction(record),
            'sku': record.sku,
            'warehouse': record.warehouse,
            'marketplace': record.normalized_marketplace,
            'order_type': record.order_type,
            'items': record.item_count or 0,
            'weight': record.total_weight or 0.0,
            'ordered_at': ordered_at,
        })

    df = pd.DataFrame(rows, columns=_FRAME_COLUMNS)
    df['ordered_at'] = pd.to_datetime(df['ordered_at'], errors='coerce')

    out_of_range = int(df['ordered_at'].isna().sum())
    if out_of_range:
        log.debug(f"Excluded {out_of_range} records with out-of-range order dates")
        df = df[df['ordered_at'].notna()]

    return df.reset_index(drop=True)


# ---------------------------------------------------------------------------
# Per-group calculations
# ---------------------------------------------------------------------------

def _timeline(orders: pd.DataFrame, now: datetime) -> Dict:
    """Date span, daily counts and interval statistics of a group of orders"""
    timestamps = orders['ordered_at']
    first_order = timestamps.min().to_pydatetime()
    last_order = timestamps.max().to_pydatetime()
    total_days = days_between(last_order, first_order) or 1

    daily_counts = timestamps.dt.normalize().value_counts().sort_index()
    order_days = [day.to_pydatetime() for day in daily_counts.index]
    gaps = [days_between(later, earlier) for earlier, later in zip(order_days, order_days[1:])]

    counts = daily_counts.values.tolist()
    return {
        'first_order_date': first_order,
        'last_order_date': last_order,
        'total_days': total_days,
        'days_since_last_order': days_between(now, last_order),
        'avg_orders_per_day': len(orders) / total_days,
        'median_orders_per_day': median(counts),
        'order_frequency': mean(gaps) if gaps else float(total_days),
        'volatility': coefficient_of_variation(counts),
    }


def _count_between(orders: pd.DataFrame, start: datetime, end: Optional[datetime] = None) -> int:
    mask = orders['ordered_at'] >= start
    if end is not None:
        mask &= orders['ordered_at'] < end
    return int(mask.sum())


def _distinct(values: pd.Series) -> int:
    return int(values.dropna().nunique())


def _top_value(values: pd.Series) -> str:
    counts = Counter(value for value in values if value)
    if not counts:
        return ""
    return counts.most_common(1)[0][0]


def _top_share(values: pd.Series, total: int) -> float:
    counts = Counter(value for value in values if value)
    if not counts or total == 0:
        return 0.0
    return max(counts.values()) / total * 100


def _partner_enrichment(orders: pd.DataFrame, now: datetime) -> Dict:
    """
    Channel concentration and fulfillment quality of one partner.

    Computed over every direction the partner ships in.
    """
    order_count = len(orders)
    concentration = (
        _top_share(orders['direction'], order_count) +
        _top_share(orders['marketplace'], order_count)
    ) / 2
    diversification = max(0.0, 100 - concentration)

    weight_consistency = max(0.0, 100 - float(np.std(orders['weight'].values)) * 10)
    recent_orders = _count_between(orders, now - timedelta(days=settings.long_window_days))
    order_frequency = recent_orders / settings.long_window_days
    fulfillment = (weight_consistency + (50 if order_frequency > 0 else 0)) / 2

    return {
        'concentration_risk': float(round_half_up(concentration)),
        'diversification_score': float(round_half_up(diversification)),
        'fulfillment_score': float(round_half_up(fulfillment)),
        'avg_items_per_order': float(orders['items'].sum()) / order_count,
        'avg_weight_per_order': float(orders['weight'].sum()) / order_count,
        'marketplace_preference': _top_value(orders['marketplace']),
        'warehouse_preference': _top_value(orders['warehouse']),
    }


def _assess_churn(
    partner: str,
    orders: pd.DataFrame,
    timeline: Dict,
    unique_skus: int,
    now: datetime
) -> Tuple[float, List[AnomalyAlert]]:
    """
    Additive churn risk heuristic. Triggered rules attach their alerts.
    """
    alerts: List[AnomalyAlert] = []
    churn_risk = 0
    total_orders = len(orders)
    days_since = timeline['days_since_last_order']
    frequency = timeline['order_frequency']
    volatility = timeline['volatility']
    window = settings.long_window_days

    # Last window vs the window before it
    last_window = _count_between(orders, now - timedelta(days=window))
    previous_window = _count_between(
        orders, now - timedelta(days=window * 2), now - timedelta(days=window)
    )
    if previous_window > 0:
        decline = (previous_window - last_window) / previous_window * 100
        if decline > 30:
            alerts.append(AnomalyAlert(
                partner_id=partner,
                alert_type='order_decline',
                severity='high' if decline > 50 else 'medium',
                timeframe='30d',
                message=f"Orders fell {decline:.0f}% over the last {window} days",
                benchmark_value=to_fixed(previous_window / window),
                current_value=to_fixed(last_window / window),
                percentage_change=to_fixed(-decline, 1),
                direction='down',
            ))
            churn_risk += 30

    if days_since > frequency * 1.5:
        churn_risk += 25
        # Inactivity below raises its own churn_risk alert
        if days_since <= settings.active_days:
            alerts.append(AnomalyAlert(
                partner_id=partner,
                alert_type='churn_risk',
                severity='medium',
                timeframe='30d',
                message=(
                    f"{days_since} days since last order, usual interval is "
                    f"{frequency:.1f} days"
                ),
                benchmark_value=to_fixed(frequency, 1),
                current_value=str(days_since),
                direction='up',
            ))

    if unique_skus < 3 and total_orders > 10:
        alerts.append(AnomalyAlert(
            partner_id=partner,
            alert_type='concentration_risk',
            severity='low',
            timeframe='30d',
            message=f"Only {unique_skus} active SKUs across {total_orders} orders",
            current_value=str(unique_skus),
        ))
        churn_risk += 15

    if volatility > 1.5:
        alerts.append(AnomalyAlert(
            partner_id=partner,
            alert_type='volatility_spike',
            severity='low',
            timeframe='30d',
            message=f"High order volatility (CV={volatility:.2f})",
            current_value=to_fixed(volatility),
            direction='up',
        ))
        churn_risk += 10

    if days_since > settings.churn_days:
        churn_risk = 100
    elif days_since > settings.active_days:
        churn_risk += 40

    if days_since > settings.active_days:
        alerts.append(AnomalyAlert(
            partner_id=partner,
            alert_type='churn_risk',
            severity='critical' if days_since > settings.churn_days else 'high',
            timeframe='30d',
            message=f"No orders for {days_since} days",
            current_value=str(days_since),
            direction='up',
        ))

    return float(min(100, churn_risk)), alerts


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def empty_partner_stats(partner: str, direction: str = "") -> PartnerStats:
    """Neutral statistics for a partner with no qualifying orders"""
    return PartnerStats(partner=partner, direction=direction)


def empty_sku_stats(sku: str, partner: str, direction: str = "") -> SKUStats:
    """Neutral statistics for a SKU with no qualifying orders"""
    return SKUStats(sku=sku, partner=partner, direction=direction)


def calculate_partner_stats(records: Iterable[Any], now: Optional[datetime] = None) -> List[PartnerStats]:
    """
    Build one PartnerStats per (partner, direction) pair.

    Args:
        records: Order records, already filtered by the caller
        now: Reference instant for recency windows

    Returns:
        Stats sorted by total orders, descending
    """
    now = now or datetime.utcnow()
    records = _ensure_records(records)
    df = build_order_frame(records)

    enrichment = {
        partner: _partner_enrichment(orders, now)
        for partner, orders in df.groupby('partner', sort=False)
    }

    stats = []
    for (partner, direction), orders in df.groupby(['partner', 'direction'], sort=False, dropna=False):
        timeline = _timeline(orders, now)
        unique_skus = _distinct(orders['sku'])
        churn_risk, alerts = _assess_churn(partner, orders, timeline, unique_skus, now)
        days_since = timeline['days_since_last_order']

        stats.append(PartnerStats(
            partner=partner,
            direction=direction,
            total_orders=len(orders),
            unique_skus=unique_skus,
            unique_warehouses=_distinct(orders['warehouse']),
            avg_orders_per_day=timeline['avg_orders_per_day'],
            median_orders_per_day=timeline['median_orders_per_day'],
            order_frequency=timeline['order_frequency'],
            volatility=timeline['volatility'],
            first_order_date=timeline['first_order_date'],
            last_order_date=timeline['last_order_date'],
            days_since_last_order=days_since,
            is_active=days_since <= settings.active_days,
            is_churned=days_since > settings.churn_days,
            churn_risk=churn_risk,
            alerts=tuple(alerts),
            **enrichment[partner]
        ))

    # Partners whose every order date is unparsable still get an entry
    dated_pairs = {(s.partner, s.direction) for s in stats}
    for partner, direction in dict.fromkeys((r.partner, resolve_direction(r)) for r in records):
        if (partner, direction) not in dated_pairs:
            stats.append(empty_partner_stats(partner, direction))

    log.info(f"Calculated stats for {len(stats)} partner/direction pairs")
    return sorted(stats, key=lambda s: s.total_orders, reverse=True)


def calculate_sku_stats(records: Iterable[Any], now: Optional[datetime] = None) -> List[SKUStats]:
    """
    Build one SKUStats per (SKU, partner, direction) triple.

    Orders without a SKU code are not attributed to any SKU.
    """
    now = now or datetime.utcnow()
    records = _ensure_records(records)
    df = build_order_frame(records)
    df = df[df['sku'].notna()]

    stats = []
    for (sku, partner, direction), orders in df.groupby(['sku', 'partner', 'direction'], sort=False):
        timeline = _timeline(orders, now)
        days_since = timeline['days_since_last_order']
        avg_per_day = timeline['avg_orders_per_day']
        alerts = []

        if days_since > settings.active_days:
            alerts.append(AnomalyAlert(
                partner_id=partner,
                sku_id=sku,
                alert_type='sku_churn',
                severity='high' if days_since > settings.churn_days else 'medium',
                timeframe='30d',
                message=f"SKU {sku} has no orders for {days_since} days",
                current_value=str(days_since),
                direction='up',
            ))

        if avg_per_day < 0.5 and len(orders) > 5:
            alerts.append(AnomalyAlert(
                partner_id=partner,
                sku_id=sku,
                alert_type='order_decline',
                severity='low',
                timeframe='30d',
                message=f"Low order rate for SKU {sku} ({avg_per_day:.2f} orders/day)",
                current_value=to_fixed(avg_per_day),
                direction='down',
            ))

        stats.append(SKUStats(
            sku=sku,
            partner=partner,
            direction=direction,
            total_orders=len(orders),
            avg_orders_per_day=avg_per_day,
            median_orders_per_day=timeline['median_orders_per_day'],
            order_frequency=timeline['order_frequency'],
            first_order_date=timeline['first_order_date'],
            last_order_date=timeline['last_order_date'],
            days_since_last_order=days_since,
            alerts=tuple(alerts),
        ))

    dated_triples = {(s.sku, s.partner, s.direction) for s in stats}
    for sku, partner, direction in dict.fromkeys(
        (r.sku, r.partner, resolve_direction(r)) for r in records if r.sku is not None
    ):
        if (sku, partner, direction) not in dated_triples:
            stats.append(empty_sku_stats(sku, partner, direction))

    log.info(f"Calculated stats for {len(stats)} SKUs")
    return sorted(stats, key=lambda s: s.total_orders, reverse=True)


# ---------------------------------------------------------------------------
# Filtering helpers
# ---------------------------------------------------------------------------

def filter_by_time_range(
    records: Iterable[Any],
    days: Optional[int],
    now: Optional[datetime] = None
) -> List[OrderRecord]:
    """Records from the last ``days`` days; all records when ``days`` is None"""
    if days is None:
        return _ensure_records(records)
    now = now or datetime.utcnow()
    return [record for record, _ in orders_in_window(dated_orders(records), days, now)]


def filter_by_direction(records: Iterable[Any], direction: str) -> List[OrderRecord]:
    """Records shipped in ``direction``; ``'all'`` keeps everything"""
    records = _ensure_records(records)
    if direction == 'all':
        return records
    return [record for record in records if resolve_direction(record) == direction]


def get_directions(records: Iterable[Any]) -> List[str]:
    """Sorted distinct non-empty directions"""
    return sorted({resolve_direction(record) for record in _ensure_records(records)} - {""})


def calculate_direction_stats(records: Iterable[Any]) -> List[DirectionStats]:
    """Order, partner and SKU totals per direction, largest first"""
    records = _ensure_records(records)
    if not records:
        return []

    df = pd.DataFrame([
        {'direction': resolve_direction(r), 'partner': r.partner, 'sku': r.sku}
        for r in records
    ])

    stats = []
    for direction, orders in df.groupby('direction', sort=False):
        orders_per_partner = orders.groupby('partner', sort=False).size().tolist()
        stats.append(DirectionStats(
            direction=direction,
            total_orders=len(orders),
            total_partners=len(orders_per_partner),
            total_skus=_distinct(orders['sku']),
            avg_orders_per_partner=mean(orders_per_partner),
            median_orders_per_partner=median(orders_per_partner),
        ))

    return sorted(stats, key=lambda s: s.total_orders, reverse=True)


def _churn_pattern(partners: List[PartnerStats]) -> ChurnPattern:
    if not partners:
        return ChurnPattern()

    frequencies = [p.order_frequency for p in partners]
    sku_counts = [p.unique_skus for p in partners]
    warehouse_counts = [p.unique_warehouses for p in partners]
    volatilities = [p.volatility for p in partners]

    return ChurnPattern(
        avg_order_frequency=mean(frequencies),
        median_order_frequency=median(frequencies),
        avg_sku_count=mean(sku_counts),
        median_sku_count=median(sku_counts),
        avg_warehouse_count=mean(warehouse_counts),
        median_warehouse_count=median(warehouse_counts),
        avg_volatility=mean(volatilities),
        median_volatility=median(volatilities),
    )


def analyze_success_patterns(stats: Iterable[PartnerStats]) -> Dict[str, ChurnPattern]:
    """
    Contrast healthy partners with lapsing ones.

    Successful: active, churn risk under 30, more than 20 orders and at least
    3 SKUs. Unsuccessful: inactive, churn risk over 60 or silent for longer
    than the churn window.
    """
    stats = list(stats)
    successful = [
        p for p in stats
        if p.is_active and p.churn_risk < 30 and p.total_orders > 20 and p.unique_skus >= 3
    ]
    unsuccessful = [
        p for p in stats
        if not p.is_active or p.churn_risk > 60 or p.days_since_last_order > settings.churn_days
    ]

    return {
        'successful': _churn_pattern(successful),
        'unsuccessful': _churn_pattern(unsuccessful),
    }
