"""
Alert Service
Single entry point for batch and interactive callers: statistics,
detection, prioritization and cached per-partner alert groups.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from churnwatch.models.alerts import AlertGroup, AnomalyAlert, PartnerBenchmark, PrioritizedAlert
from churnwatch.models.order import OrderRecord, load_order_records
from churnwatch.models.stats import PartnerStats, SKUStats
from churnwatch.ml.anomaly_detection import AnomalyDetector
from churnwatch.ml.partner_stats import calculate_partner_stats, calculate_sku_stats
from churnwatch.services.alert_grouping import group_and_prioritize_alerts
from churnwatch.services.alert_prioritization import (
    calculate_alert_stats,
    get_top_critical_alerts,
    prioritize_alerts,
)
from churnwatch.utils.cache import AlertsCache
from churnwatch.utils.helpers import chunk_list
from churnwatch.utils.logger import log
from churnwatch.config import get_settings

settings = get_settings()


class AlertService:
    """
    Computes alerts for a dataset and serves cached per-partner views.

    The cache is injected so callers control its lifetime; invalidate it
    when new data is ingested.
    """

    PRELOAD_BATCH_SIZE = 10

    def __init__(self, cache: Optional[AlertsCache] = None, detector: Optional[AnomalyDetector] = None):
        self.cache = cache if cache is not None else AlertsCache()
        self.detector = detector or AnomalyDetector()

    def partner_stats(self, records: Iterable[Any], now: Optional[datetime] = None) -> List[PartnerStats]:
        return calculate_partner_stats(records, now)

    def sku_stats(self, records: Iterable[Any], now: Optional[datetime] = None) -> List[SKUStats]:
        return calculate_sku_stats(records, now)

    def detect(
        self,
        records: Iterable[Any],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None
    ) -> List[AnomalyAlert]:
        return self.detector.detect_all(records, benchmarks, now)

    def prioritized_alerts(
        self,
        records: Iterable[Any],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None,
        known_alert_ids: Optional[Iterable[str]] = None
    ) -> List[PrioritizedAlert]:
        """Detect and prioritize alerts for every partner in the dataset"""
        now = now or datetime.utcnow()
        records = load_order_records(records)
        alerts = self.detect(records, benchmarks, now)
        return prioritize_alerts(records, alerts, now, known_alert_ids)

    def _build_partner_groups(
        self,
        partner_id: str,
        records: List[OrderRecord],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]],
        now: datetime,
        known_alert_ids: Optional[Iterable[str]]
    ) -> Tuple[AlertGroup, ...]:
        alerts = self.detector.detect_partner_anomalies(records, partner_id, benchmarks, now)
        if self.detector.enable_sku_alerts:
            alerts.extend(self.detector.detect_sku_anomalies(records, partner_id, now))
        if self.detector.enable_concentration_alerts:
            alerts.extend(
                a for a in self.detector.detect_concentration(records, now) if a.partner_id == partner_id
            )

        if not alerts:
            return ()

        # Prioritize against the whole dataset so customer size percentiles are portfolio-wide
        prioritized = prioritize_alerts(records, alerts, now, known_alert_ids)
        return tuple(group_and_prioritize_alerts(prioritized))

    def partner_alert_groups(
        self,
        partner_id: str,
        records: Iterable[Any],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None,
        known_alert_ids: Optional[Iterable[str]] = None
    ) -> Tuple[AlertGroup, ...]:
        """
        Grouped alerts of one partner, served from the cache when present.

        Returns an empty tuple when the partner has no alerts. Errors raised
        while computing propagate; nothing is cached for a failed build.
        """
        cached = self.cache.get(partner_id)
        if cached is not None:
            return cached

        now = now or datetime.utcnow()
        records = load_order_records(records)

        # Only the caller that set the marker clears it
        owned = self.cache.mark_in_progress(partner_id)
        try:
            groups = self._build_partner_groups(partner_id, records, benchmarks, now, known_alert_ids)
            self.cache.set(partner_id, groups)
        finally:
            if owned:
                self.cache.clear_in_progress(partner_id)

        return groups

    def preload(
        self,
        records: Iterable[Any],
        partner_ids: Optional[Iterable[str]] = None,
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None
    ) -> int:
        """
        Warm the cache for many partners in batches.

        Partners already cached or being computed elsewhere are skipped.
        Returns the number of partners computed.
        """
        now = now or datetime.utcnow()
        records = load_order_records(records)
        if partner_ids is None:
            partner_ids = list(dict.fromkeys(r.partner for r in records))

        built = 0
        for batch in chunk_list(list(partner_ids), self.PRELOAD_BATCH_SIZE):
            for partner_id in batch:
                if self.cache.is_in_progress(partner_id) or self.cache.get(partner_id) is not None:
                    continue
                self.partner_alert_groups(partner_id, records, benchmarks, now)
                built += 1
            log.debug(f"Preloaded batch of {len(batch)} partners")

        log.info(f"Preloaded alerts for {built} partners")
        return built

    def invalidate(self, partner_id: Optional[str] = None) -> int:
        """Drop cached groups for one partner, or for all partners"""
        removed = self.cache.invalidate(partner_id)
        log.info(f"Invalidated {removed} cached alert group sets")
        return removed

    def summary(
        self,
        records: Iterable[Any],
        benchmarks: Optional[Mapping[str, PartnerBenchmark]] = None,
        now: Optional[datetime] = None,
        top_limit: int = 10
    ) -> Dict[str, Any]:
        """Dashboard summary: partner health counts, alert stats and the most urgent alerts"""
        now = now or datetime.utcnow()
        records = load_order_records(records)
        stats = self.partner_stats(records, now)
        alerts = self.prioritized_alerts(records, benchmarks, now)

        return {
            'generated_at': now.isoformat(),
            'partners': {
                'total': len({s.partner for s in stats}),
                'active': len({s.partner for s in stats if s.is_active}),
                'churned': len({s.partner for s in stats if s.is_churned}),
            },
            'alerts': calculate_alert_stats(alerts),
            'top_alerts': [
                {
                    'id': a.id,
                    'partner_id': a.partner_id,
                    'category': a.category,
                    'severity': a.severity,
                    'priority_score': a.priority_score,
                    'message': a.message,
                }
                for a in get_top_critical_alerts(alerts, top_limit)
            ],
        }
