"""
Alert Prioritization Service
Turns raw anomalies into prioritized alerts with business context
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from scipy.stats import rankdata

from churnwatch.models.alerts import (
    ALERT_CATEGORIES,
    CUSTOMER_SIZES,
    PRIORITY_SEVERITIES,
    AlertEngineError,
    AnomalyAlert,
    PrioritizedAlert,
)
from churnwatch.models.order import load_order_records
from churnwatch.ml.partner_stats import calculate_partner_stats, dated_orders
from churnwatch.utils.helpers import round_half_up
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()

SIZE_WEIGHTS = {
    'LARGE': 20,
    'MEDIUM': 12,
    'SMALL': 5,
}

# Raw detector severity -> 0-100 anomaly score
SEVERITY_SCORES = {
    'critical': 95,
    'high': 75,
    'medium': 50,
    'low': 25,
}

# Share of monthly revenue exposed by an anomaly of a given severity
REVENUE_EXPOSURE = {
    'critical': 0.5,
    'high': 0.3,
    'medium': 0.1,
    'low': 0.1,
}

SEVERITY_THRESHOLDS = (
    (80, 'CRITICAL'),
    (60, 'HIGH'),
    (40, 'MEDIUM'),
)

ALERT_TYPE_CATEGORIES = {
    'order_decline': 'REVENUE_DROP',
    'churn_risk': 'CHURN_RISK',
    'volatility_spike': 'VOLATILITY',
    'warehouse_anomaly': 'WAREHOUSE_ANOMALY',
    'sku_churn': 'SKU_ANOMALY',
    'concentration_risk': 'CONCENTRATION',
}


def categorize_alert(alert: AnomalyAlert) -> str:
    """Presentation category of a raw alert; SKU-scoped declines are SKU anomalies"""
    if alert.alert_type == 'order_decline' and alert.sku_id is not None:
        return 'SKU_ANOMALY'
    return ALERT_TYPE_CATEGORIES[alert.alert_type]


def _percentile_rank(value: int, population: List[int]) -> float:
    """
    Position of ``value`` in ``population`` as a fraction of its size.

    Tied counts share the mean of their 0-based ranks. A value missing from
    the population is placed after every smaller count.
    """
    if not population:
        return 0.0

    ranks = rankdata(population, method='average') - 1
    for count, rank in zip(population, ranks):
        if count == value:
            return float(rank) / len(population)

    return sum(1 for count in population if count < value) / len(population)


def calculate_customer_size(order_count: int, warehouse_count: int, all_order_counts: Iterable[int]) -> str:
    """
    Classify a partner as LARGE, MEDIUM or SMALL

    Args:
        order_count: Partner's order count
        warehouse_count: Distinct warehouses the partner ships from
        all_order_counts: Order count of every partner in the dataset

    Returns:
        Customer size label
    """
    percentile = _percentile_rank(order_count, list(all_order_counts))

    if percentile >= 0.75 or (order_count >= 500 and warehouse_count >= 2):
        return 'LARGE'
    if percentile >= 0.40 or (order_count >= 100 and warehouse_count >= 1):
        return 'MEDIUM'
    return 'SMALL'


def estimate_monthly_revenue(
    records: Iterable[Any],
    avg_order_value: Optional[float] = None,
    now: Optional[datetime] = None
) -> int:
    """Monthly revenue estimate from the last 30 days of order velocity"""
    now = now or datetime.utcnow()
    if avg_order_value is None:
        avg_order_value = settings.default_avg_order_value

    window = settings.long_window_days
    cutoff = now - timedelta(days=window)
    recent = sum(1 for _, ordered_at in dated_orders(records) if ordered_at >= cutoff)

    avg_orders_per_day = recent / window
    return round_half_up(avg_orders_per_day * 30 * avg_order_value)


def calculate_revenue_at_risk(monthly_revenue: float, severity: str) -> float:
    """Portion of monthly revenue exposed by an anomaly of ``severity``"""
    if severity not in REVENUE_EXPOSURE:
        raise AlertEngineError(f"Unknown severity '{severity}'")
    return monthly_revenue * REVENUE_EXPOSURE[severity]


def calculate_priority_score(
    customer_size: str,
    churn_risk: float,
    anomaly_severity: float,
    revenue_at_risk: float,
    is_new: bool
) -> int:
    """
    Composite priority score (0-100)

    Weights: customer size up to 20, churn risk 30%, anomaly severity 25%,
    revenue at risk up to 20, freshness bonus 5.
    """
    if customer_size not in SIZE_WEIGHTS:
        raise AlertEngineError(f"Unknown customer size '{customer_size}'")

    score = SIZE_WEIGHTS[customer_size]
    score += churn_risk / 100 * 30
    score += anomaly_severity / 100 * 25
    score += min(revenue_at_risk / 100000 * 20, 20)
    if is_new:
        score += 5

    return max(0, min(round_half_up(score), 100))


def score_to_severity(score: float) -> str:
    """Business severity for a priority score"""
    for threshold, severity in SEVERITY_THRESHOLDS:
        if score >= threshold:
            return severity
    return 'LOW'


def _partner_context(records: List[Any], now: datetime) -> Dict[str, Dict]:
    """Order counts, warehouse breadth, churn risk and revenue per partner"""
    orders_by_partner = {}
    for record, _ in dated_orders(records):
        orders_by_partner.setdefault(record.partner, []).append(record)

    churn_by_partner: Dict[str, float] = {}
    for stats in calculate_partner_stats(records, now):
        churn_by_partner[stats.partner] = max(churn_by_partner.get(stats.partner, 0.0), stats.churn_risk)

    all_counts = [len(orders) for orders in orders_by_partner.values()]

    context = {}
    for partner, orders in orders_by_partner.items():
        warehouses = len({o.warehouse for o in orders} - {None})
        context[partner] = {
            'customer_size': calculate_customer_size(len(orders), warehouses, all_counts),
            'churn_risk': churn_by_partner.get(partner, 0.0),
            'monthly_revenue': estimate_monthly_revenue(orders, now=now),
        }
    return context


def prioritize_alerts(
    records: Iterable[Any],
    alerts: Iterable[AnomalyAlert],
    now: Optional[datetime] = None,
    known_alert_ids: Optional[Iterable[str]] = None
) -> List[PrioritizedAlert]:
    """
    Enrich raw alerts with customer size, churn risk and revenue exposure

    Args:
        records: Order records the alerts were detected on
        alerts: Raw anomalies
        now: Reference instant, also used as detection time
        known_alert_ids: Ids of alerts already reported; everything else is new

    Returns:
        PrioritizedAlerts in input order
    """
    now = now or datetime.utcnow()
    records = load_order_records(records)
    known = set(known_alert_ids or ())
    context = _partner_context(records, now)

    # Partners with alerts but no usable orders
    fallback = {'customer_size': 'SMALL', 'churn_risk': 0.0, 'monthly_revenue': 0}

    prioritized = []
    for alert in alerts:
        partner = context.get(alert.partner_id, fallback)
        is_new = alert.alert_id not in known
        revenue_at_risk = calculate_revenue_at_risk(partner['monthly_revenue'], alert.severity)
        score = calculate_priority_score(
            partner['customer_size'],
            partner['churn_risk'],
            SEVERITY_SCORES[alert.severity],
            revenue_at_risk,
            is_new,
        )

        prioritized.append(PrioritizedAlert(
            id=alert.alert_id,
            partner_id=alert.partner_id,
            category=categorize_alert(alert),
            severity=score_to_severity(score),
            raw_severity=alert.severity,
            priority_score=score,
            message=alert.message,
            customer_size=partner['customer_size'],
            churn_risk=partner['churn_risk'],
            revenue_at_risk=revenue_at_risk,
            detected_at=now,
            last_updated=now,
            is_new=is_new,
            source=alert,
            sku_id=alert.sku_id,
            current_value=alert.current_value,
            benchmark_value=alert.benchmark_value,
            percentage_change=float(alert.percentage_change) if alert.percentage_change is not None else None,
            direction=alert.direction,
        ))

    log.info(f"Prioritized {len(prioritized)} alerts")
    return prioritized


def get_top_critical_alerts(alerts: Iterable[PrioritizedAlert], limit: int = 10) -> List[PrioritizedAlert]:
    """Highest scoring CRITICAL and HIGH alerts"""
    urgent = [a for a in alerts if a.severity in ('CRITICAL', 'HIGH')]
    return sorted(urgent, key=lambda a: a.priority_score, reverse=True)[:limit]


def calculate_alert_stats(alerts: Iterable[PrioritizedAlert]) -> Dict[str, Any]:
    """Counts by severity, customer size and category"""
    alerts = list(alerts)

    by_severity = {severity: 0 for severity in PRIORITY_SEVERITIES}
    by_customer_size = {size: 0 for size in CUSTOMER_SIZES}
    by_category = {category: 0 for category in ALERT_CATEGORIES}
    for alert in alerts:
        by_severity[alert.severity] += 1
        by_customer_size[alert.customer_size] += 1
        by_category[alert.category] += 1

    avg_priority = (
        round_half_up(sum(a.priority_score for a in alerts) / len(alerts)) if alerts else 0
    )

    return {
        'total': len(alerts),
        'by_severity': by_severity,
        'by_customer_size': by_customer_size,
        'by_category': by_category,
        'avg_priority_score': avg_priority,
        'new_alerts': sum(1 for a in alerts if a.is_new),
    }
