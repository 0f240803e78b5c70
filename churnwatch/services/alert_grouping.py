"""
Alert Grouping
Buckets prioritized alerts by category and severity for presentation
"""
from typing import Iterable, List, Optional

from churnwatch.models.alerts import AlertGroup, PrioritizedAlert

SEVERITY_ORDER = {
    'CRITICAL': 0,
    'HIGH': 1,
    'MEDIUM': 2,
    'LOW': 3,
}


def group_and_prioritize_alerts(alerts: Iterable[PrioritizedAlert]) -> List[AlertGroup]:
    """
    Group alerts by (category, severity).

    Alerts inside a group are ordered by descending priority score. Groups
    are ordered by severity rank, then by descending total priority score.
    Both sorts are stable, so equal keys keep their input order.
    """
    grouped = {}
    for alert in alerts:
        grouped.setdefault((alert.category, alert.severity), []).append(alert)

    groups = []
    for (category, severity), members in grouped.items():
        ordered = sorted(members, key=lambda a: a.priority_score, reverse=True)
        groups.append(AlertGroup(
            category=category,
            severity=severity,
            alerts=tuple(ordered),
            count=len(ordered),
            total_priority_score=sum(a.priority_score for a in ordered),
        ))

    return sorted(groups, key=lambda g: (SEVERITY_ORDER[g.severity], -g.total_priority_score))


def filter_alerts(
    alerts: Iterable[PrioritizedAlert],
    severity: Optional[Iterable[str]] = None,
    customer_size: Optional[Iterable[str]] = None,
    category: Optional[Iterable[str]] = None,
    min_priority_score: Optional[int] = None,
    is_new: Optional[bool] = None
) -> List[PrioritizedAlert]:
    """Alerts matching every supplied criterion; None means no constraint"""
    severity = set(severity) if severity is not None else None
    customer_size = set(customer_size) if customer_size is not None else None
    category = set(category) if category is not None else None

    def matches(alert: PrioritizedAlert) -> bool:
        if severity is not None and alert.severity not in severity:
            return False
        if customer_size is not None and alert.customer_size not in customer_size:
            return False
        if category is not None and alert.category not in category:
            return False
        if min_priority_score is not None and alert.priority_score < min_priority_score:
            return False
        if is_new is not None and alert.is_new != is_new:
            return False
        return True

    return [alert for alert in alerts if matches(alert)]


def flatten_alert_groups(groups: Iterable[AlertGroup]) -> List[PrioritizedAlert]:
    """Alerts of all groups in presentation order"""
    return [alert for group in groups for alert in group.alerts]
