"""
Anomaly Detection Module
Compares short (7-day) and long (30-day) windows of partner and SKU activity
"""
import numpy as np
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from churnwatch.models.order import OrderRecord
from churnwatch.models.alerts import AlertEngineError, AnomalyAlert, Benchmark, PartnerBenchmark
from churnwatch.ml.partner_stats import dated_orders, orders_in_window
from churnwatch.utils.helpers import coefficient_of_variation, days_between, safe_divide, to_fixed
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()

DatedOrders = List[Tuple[OrderRecord, datetime]]

# (metric_type, period) -> PartnerBenchmark field
SNAPSHOT_FIELDS = {
    ('avg_orders_per_day', '7d'): 'avg_orders_per_day_7d',
    ('avg_orders_per_day', '30d'): 'avg_orders_per_day_30d',
    ('order_interval', '7d'): 'order_interval_7d',
    ('order_interval', '30d'): 'order_interval_30d',
    ('volatility', '7d'): 'volatility_7d',
    ('volatility', '30d'): 'volatility_30d',
    ('warehouse_count', '7d'): 'warehouse_count_7d',
    ('warehouse_count', '30d'): 'warehouse_count_30d',
    ('warehouse_count', 'all'): 'warehouse_count',
    ('sku_count', 'all'): 'sku_count',
}

_COUNT_FIELDS = {'warehouse_count_7d', 'warehouse_count_30d', 'warehouse_count', 'sku_count'}


def _order_intervals(orders: DatedOrders) -> List[int]:
    """Whole days between successive orders, oldest first"""
    timestamps = sorted(ordered_at for _, ordered_at in orders)
    return [days_between(later, earlier) for earlier, later in zip(timestamps, timestamps[1:])]


def _distinct(orders: DatedOrders, attribute: str) -> int:
    return len({getattr(record, attribute) for record, _ in orders} - {None})


def _benchmark_from_dated(partner_id: str, partner_orders: DatedOrders, now: datetime) -> PartnerBenchmark:
    short_days = settings.short_window_days
    long_days = settings.long_window_days
    orders_short = orders_in_window(partner_orders, short_days, now)
    orders_long = orders_in_window(partner_orders, long_days, now)

    intervals_short = _order_intervals(orders_short)
    intervals_long = _order_intervals(orders_long)

    return PartnerBenchmark(
        partner_id=partner_id,
        avg_orders_per_day_7d=len(orders_short) / short_days,
        avg_orders_per_day_30d=len(orders_long) / long_days,
        order_interval_7d=float(np.mean(intervals_short)) if intervals_short else 0.0,
        order_interval_30d=float(np.mean(intervals_long)) if intervals_long else 0.0,
        volatility_7d=coefficient_of_variation(intervals_short),
        volatility_30d=coefficient_of_variation(intervals_long),
        warehouse_count_7d=_distinct(orders_short, 'warehouse'),
        warehouse_count_30d=_distinct(orders_long, 'warehouse'),
        warehouse_count=_distinct(partner_orders, 'warehouse'),
        sku_count=_distinct(partner_orders, 'sku'),
    )


def calculate_partner_benchmark(
    records: Iterable[Any],
    partner_id: str,
    now: Optional[datetime] = None
) -> PartnerBenchmark:
    """
    Short and long window metrics of one partner

    Args:
        records: Order records of any number of partners
        partner_id: Partner to measure
        now: Reference instant for both windows

    Returns:
        PartnerBenchmark with per-day rates, mean intervals and interval
        volatility for each window
    """
    now = now or datetime.utcnow()
    partner_orders = [item for item in dated_orders(records) if item[0].partner == partner_id]
    return _benchmark_from_dated(partner_id, partner_orders, now)


def benchmark_from_snapshots(partner_id: str, snapshots: Iterable[Benchmark]) -> PartnerBenchmark:
    """
    Rebuild a PartnerBenchmark from stored partner-level snapshot rows.

    SKU-scoped rows, rows of other partners and metrics without a
    PartnerBenchmark counterpart are ignored.
    """
    values = {}
    for snapshot in snapshots:
        if snapshot.partner_id != partner_id or snapshot.sku_id is not None:
            continue
        field_name = SNAPSHOT_FIELDS.get((snapshot.metric_type, snapshot.period))
        if field_name is None:
            continue
        try:
            number = float(snapshot.value)
        except ValueError:
            raise AlertEngineError(
                f"Benchmark {snapshot.metric_type}/{snapshot.period} for {partner_id} "
                f"is not numeric: '{snapshot.value}'"
            )
        values[field_name] = int(number) if field_name in _COUNT_FIELDS else number

    return PartnerBenchmark(partner_id=partner_id, **values)


def benchmark_snapshots(benchmark: PartnerBenchmark) -> List[Benchmark]:
    """Snapshot rows to persist for a PartnerBenchmark"""
    snapshots = []
    for (metric_type, period), field_name in SNAPSHOT_FIELDS.items():
        value = getattr(benchmark, field_name)
        snapshots.append(Benchmark(
            partner_id=benchmark.partner_id,
            metric_type=metric_type,
            period=period,
            value=str(value) if field_name in _COUNT_FIELDS else to_fixed(value, 4),
        ))
    return snapshots


class AnomalyDetector:
    """
    Detects behaviour changes of partners and their SKUs by comparing the
    last 7 days against the last 30 days
    """

    def __init__(
        self,
        enable_sku_alerts: Optional[bool] = None,
        enable_concentration_alerts: Optional[bool] = None,
        concentration_threshold_pct: Optional[float] = None
    ):
        """
        Initialize anomaly detector

        Args:
            enable_sku_alerts: Run SKU checks in detect_all
            enable_concentration_alerts: Run portfolio concentration check in detect_all
            concentration_threshold_pct: Share of all recent orders above which a
                partner counts as concentrated
        """
        self.enable_sku_alerts = (
            settings.enable_sku_alerts if enable_sku_alerts is None else enable_sku_alerts
        )
        self.enable_concentration_alerts = (
            settings.enable_concentration_alerts
            if enable_concentration_alerts is None else enable_concentration_alerts
        )
        self.concentration_threshold_pct = (
            settings.concentration_threshold_pct
            if concentration_threshold_pct is None else concentration_threshold_pct
        )

    def detect_partner_anomalies(
        self,
        records: Iterable[Any],
        partner_id: str,
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None
    ) -> List[AnomalyAlert]:
        """
        Detect partner level anomalies

        Args:
            records: Order records (any partners)
            partner_id: Partner to check
            benchmarks: Historical benchmarks by partner id. When present, the
                partner's stored 30-day values replace the inline 30-day window.
            now: Reference instant

        Returns:
            List of order_decline, churn_risk, volatility_spike and
            warehouse_anomaly alerts
        """
        now = now or datetime.utcnow()
        partner_orders = [item for item in dated_orders(records) if item[0].partner == partner_id]
        return self._partner_anomalies(partner_id, partner_orders, benchmarks, now)

    def detect_sku_anomalies(
        self,
        records: Iterable[Any],
        partner_id: str,
        now: Optional[datetime] = None
    ) -> List[AnomalyAlert]:
        """Detect SKU churn and SKU order decline for every SKU of a partner"""
        now = now or datetime.utcnow()
        partner_orders = [item for item in dated_orders(records) if item[0].partner == partner_id]
        return self._sku_anomalies(partner_id, partner_orders, now)

    def detect_concentration(
        self,
        records: Iterable[Any],
        now: Optional[datetime] = None
    ) -> List[AnomalyAlert]:
        """
        Flag partners carrying an outsized share of recent portfolio volume

        Only meaningful with more than one active partner.
        """
        now = now or datetime.utcnow()
        return self._concentration(dated_orders(records), now)

    def detect_all(
        self,
        records: Iterable[Any],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None
    ) -> List[AnomalyAlert]:
        """
        Run every check for every partner

        Partners are visited in first-seen order; each partner's SKU alerts
        follow its partner alerts. Portfolio concentration alerts come last.
        """
        now = now or datetime.utcnow()
        dated = dated_orders(records)

        by_partner: Dict[str, DatedOrders] = {}
        for item in dated:
            by_partner.setdefault(item[0].partner, []).append(item)

        alerts = []
        for partner_id, partner_orders in by_partner.items():
            alerts.extend(self._partner_anomalies(partner_id, partner_orders, benchmarks, now))
            if self.enable_sku_alerts:
                alerts.extend(self._sku_anomalies(partner_id, partner_orders, now))

        if self.enable_concentration_alerts:
            alerts.extend(self._concentration(dated, now))

        log.info(f"Detected {len(alerts)} anomalies across {len(by_partner)} partners")
        return alerts

    def _partner_anomalies(
        self,
        partner_id: str,
        partner_orders: DatedOrders,
        benchmarks: Optional[Mapping[str, PartnerBenchmark]],
        now: datetime
    ) -> List[AnomalyAlert]:
        current = _benchmark_from_dated(partner_id, partner_orders, now)
        baseline = current
        historical = benchmarks.get(partner_id) if benchmarks else None
        if historical is not None:
            log.debug(f"Using stored 30-day benchmark for {partner_id}")
            baseline = historical

        alerts = []

        # 1. Order decline
        if baseline.avg_orders_per_day_30d > 0:
            decline = (
                (current.avg_orders_per_day_7d - baseline.avg_orders_per_day_30d)
                / baseline.avg_orders_per_day_30d * 100
            )
            if decline < -30:
                alerts.append(AnomalyAlert(
                    partner_id=partner_id,
                    alert_type='order_decline',
                    severity='high' if decline < -50 else 'medium',
                    timeframe='7d',
                    message=f"Orders fell {abs(decline):.1f}% over the last 7 days",
                    benchmark_value=to_fixed(baseline.avg_orders_per_day_30d),
                    current_value=to_fixed(current.avg_orders_per_day_7d),
                    percentage_change=to_fixed(decline, 1),
                    direction='down',
                ))

        # 2. Interval growth
        if baseline.order_interval_30d > 0 and current.order_interval_7d > baseline.order_interval_30d:
            increase = (
                (current.order_interval_7d - baseline.order_interval_30d)
                / baseline.order_interval_30d * 100
            )
            if increase > 25:
                alerts.append(AnomalyAlert(
                    partner_id=partner_id,
                    alert_type='churn_risk',
                    severity='high' if increase > 50 else 'medium',
                    timeframe='7d',
                    message=f"Interval between orders grew {increase:.1f}%",
                    benchmark_value=to_fixed(baseline.order_interval_30d),
                    current_value=to_fixed(current.order_interval_7d),
                    percentage_change=to_fixed(increase, 1),
                    direction='up',
                ))

        # 3. Volatility spike
        if baseline.volatility_30d > 0:
            increase = (current.volatility_7d - baseline.volatility_30d) / baseline.volatility_30d * 100
            if increase > 40:
                alerts.append(AnomalyAlert(
                    partner_id=partner_id,
                    alert_type='volatility_spike',
                    severity='high' if increase > 80 else 'medium',
                    timeframe='7d',
                    message=f"Order volatility grew {increase:.1f}%",
                    benchmark_value=to_fixed(baseline.volatility_30d),
                    current_value=to_fixed(current.volatility_7d),
                    percentage_change=to_fixed(increase, 1),
                    direction='up',
                ))

        # 4. Warehouse footprint shrinking
        warehouses_long = baseline.warehouse_count_30d
        warehouses_short = current.warehouse_count_7d
        if warehouses_long > 0 and warehouses_short < warehouses_long * 0.5:
            alerts.append(AnomalyAlert(
                partner_id=partner_id,
                alert_type='warehouse_anomaly',
                severity='medium',
                timeframe='7d',
                message=f"Active warehouses dropped from {warehouses_long} to {warehouses_short}",
                benchmark_value=str(warehouses_long),
                current_value=str(warehouses_short),
                direction='down',
            ))

        return alerts

    def _sku_anomalies(self, partner_id: str, partner_orders: DatedOrders, now: datetime) -> List[AnomalyAlert]:
        by_sku: Dict[str, DatedOrders] = {}
        for item in partner_orders:
            if item[0].sku is not None:
                by_sku.setdefault(item[0].sku, []).append(item)

        alerts = []
        for sku, sku_orders in by_sku.items():
            last_order = max(ordered_at for _, ordered_at in sku_orders)
            days_since = days_between(now, last_order)

            if days_since > settings.active_days:
                churned = days_since > settings.churn_days
                alerts.append(AnomalyAlert(
                    partner_id=partner_id,
                    sku_id=sku,
                    alert_type='sku_churn',
                    severity='high' if churned else 'medium',
                    timeframe='30d',
                    message=(
                        f"SKU {sku} dropped out: {days_since} days without orders" if churned
                        else f"SKU {sku} not ordered for {days_since} days"
                    ),
                    current_value=str(days_since),
                    direction='up',
                ))

            count_short = len(orders_in_window(sku_orders, settings.short_window_days, now))
            count_long = len(orders_in_window(sku_orders, settings.long_window_days, now))
            if count_long > 0:
                decline = (count_short - count_long) / count_long * 100
                if decline < -50:
                    alerts.append(AnomalyAlert(
                        partner_id=partner_id,
                        sku_id=sku,
                        alert_type='order_decline',
                        severity='medium',
                        timeframe='7d',
                        message=f"SKU {sku} orders fell {abs(decline):.1f}%",
                        benchmark_value=str(count_long),
                        current_value=str(count_short),
                        percentage_change=to_fixed(decline, 1),
                        direction='down',
                    ))

        return alerts

    def _concentration(self, dated: DatedOrders, now: datetime) -> List[AnomalyAlert]:
        recent = orders_in_window(dated, settings.long_window_days, now)

        counts: Dict[str, int] = {}
        for record, _ in recent:
            counts[record.partner] = counts.get(record.partner, 0) + 1

        if len(counts) < 2:
            return []

        total = len(recent)
        alerts = []
        for partner_id, count in counts.items():
            share = safe_divide(count, total) * 100
            if share > self.concentration_threshold_pct:
                alerts.append(AnomalyAlert(
                    partner_id=partner_id,
                    alert_type='concentration_risk',
                    severity='high' if share > 50 else 'medium',
                    timeframe='30d',
                    message=f"Partner carries {share:.1f}% of all orders in the last 30 days",
                    benchmark_value=to_fixed(self.concentration_threshold_pct, 1),
                    current_value=to_fixed(share, 1),
                    direction='up',
                ))

        return alerts
