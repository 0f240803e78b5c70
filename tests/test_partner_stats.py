"""
Tests for per-partner and per-SKU statistics and the churn heuristic.
"""
import pytest

from churnwatch.models.alerts import AlertEngineError
from churnwatch.models.order import OrderRecord
from churnwatch.models.stats import PartnerStats
from churnwatch.ml.partner_stats import (
    analyze_success_patterns,
    calculate_direction_stats,
    calculate_partner_stats,
    calculate_sku_stats,
    empty_partner_stats,
    empty_sku_stats,
    filter_by_direction,
    filter_by_time_range,
    get_directions,
)
from factories import NOW, order, orders


def _alerts(stats, alert_type):
    return [a for a in stats.alerts if a.alert_type == alert_type]


# ────────────────────────────────────────────
# CHURN HEURISTIC
# ────────────────────────────────────────────


class TestChurnHeuristic:

    def test_declining_partner_gets_order_decline(self, declining_partner, now):
        [stats] = calculate_partner_stats(declining_partner, now)
        [decline] = _alerts(stats, "order_decline")

        assert decline.severity == "high"
        assert decline.timeframe == "30d"
        assert decline.current_value == "0.10"
        assert decline.benchmark_value == "0.33"
        assert decline.percentage_change == "-70.0"
        assert decline.direction == "down"

    def test_declining_partner_risk_and_status(self, declining_partner, now):
        [stats] = calculate_partner_stats(declining_partner, now)

        # decline +30, single SKU over 10 orders +15
        assert stats.churn_risk == 45
        assert stats.is_active
        assert not stats.is_churned
        assert stats.days_since_last_order == 1
        assert len(_alerts(stats, "concentration_risk")) == 1

    def test_inactive_partner_is_at_risk(self, now):
        [stats] = calculate_partner_stats(orders([40, 45, 50], partner="Q"), now)

        # decline +30, overdue +25, inactive +40
        assert stats.churn_risk == 95
        assert not stats.is_active
        assert not stats.is_churned

        churn_alerts = _alerts(stats, "churn_risk")
        assert [a.severity for a in churn_alerts] == ["high"]
        assert churn_alerts[0].current_value == "40"

    def test_churned_partner_is_capped_at_100(self, now):
        [stats] = calculate_partner_stats(orders([70, 75], partner="Q"), now)

        assert stats.churn_risk == 100
        assert stats.is_churned
        assert [a.severity for a in _alerts(stats, "churn_risk")] == ["critical"]

    def test_overdue_but_active_partner_gets_medium_alert(self, now):
        [stats] = calculate_partner_stats(orders(range(20, 30)), now)

        [alert] = _alerts(stats, "churn_risk")
        assert alert.severity == "medium"
        assert alert.current_value == "20"
        assert alert.benchmark_value == "1.0"
        assert stats.churn_risk == 25

    def test_steady_partner_has_no_alerts(self, now):
        records = [
            order(days_ago=d, sku=f"SKU-{d % 4}")
            for d in range(0, 30)
        ]
        [stats] = calculate_partner_stats(records, now)

        assert stats.alerts == ()
        assert stats.churn_risk == 0
        assert stats.unique_skus == 4

    def test_volatile_partner_gets_volatility_spike(self, now):
        records = orders([0] * 20 + list(range(1, 10)), sku=None)
        [stats] = calculate_partner_stats(records, now)

        assert stats.volatility > 1.5
        [alert] = _alerts(stats, "volatility_spike")
        assert alert.severity == "low"
        assert alert.current_value == f"{stats.volatility:.2f}"


# ────────────────────────────────────────────
# STATISTICS
# ────────────────────────────────────────────


class TestPartnerStatistics:

    def test_one_entry_per_partner_direction(self, now):
        records = (
            orders([1, 2, 3], partner="A", direction="FBO") +
            orders([1, 2], partner="A", direction="FBS") +
            orders([5], partner="B", direction="FBO")
        )
        stats = calculate_partner_stats(records, now)

        assert [(s.partner, s.direction, s.total_orders) for s in stats] == [
            ("A", "FBO", 3),
            ("A", "FBS", 2),
            ("B", "FBO", 1),
        ]

    def test_direction_override(self, now):
        [stats] = calculate_partner_stats(orders([1], partner="VSROK", direction="FBO"), now)
        assert stats.direction == "VSROK"

    def test_timeline_fields(self, now):
        [stats] = calculate_partner_stats(orders([0, 2, 4, 10]), now)

        assert stats.first_order_date == NOW.replace(day=19, month=2)
        assert stats.last_order_date == NOW
        assert stats.order_frequency == pytest.approx(10 / 3)
        assert stats.avg_orders_per_day == pytest.approx(4 / 10)
        assert stats.median_orders_per_day == 1

    def test_single_order_day_uses_one_day_span(self, now):
        [stats] = calculate_partner_stats(orders([3, 3, 3]), now)
        assert stats.avg_orders_per_day == 3
        assert stats.order_frequency == 1

    def test_enrichment_fields(self, now):
        records = (
            orders([1, 2], marketplace="WB", weight=2.0, items=3) +
            orders([3, 4], marketplace="Ozon", weight=2.0, items=1)
        )
        [stats] = calculate_partner_stats(records, now)

        # direction share 100, marketplace share 50
        assert stats.concentration_risk == 75
        assert stats.diversification_score == 25
        assert stats.fulfillment_score == 75
        assert stats.avg_items_per_order == 2
        assert stats.avg_weight_per_order == 2

    def test_fulfillment_without_recent_orders(self, now):
        [stats] = calculate_partner_stats(orders([45, 50]), now)
        assert stats.fulfillment_score == 50

    def test_bounds(self, declining_partner, now):
        records = declining_partner + orders([40, 45, 50], partner="Q") + orders([70], partner="R")
        for stats in calculate_partner_stats(records, now):
            assert 0 <= stats.churn_risk <= 100
            assert 0 <= stats.diversification_score <= 100
            assert stats.diversification_score == 100 - stats.concentration_risk
            assert stats.volatility >= 0

    def test_volatility_is_scale_invariant(self, now):
        days = [0] * 4 + [1] * 2 + [2]
        [single] = calculate_partner_stats(orders(days), now)
        [double] = calculate_partner_stats(orders(days * 2), now)

        assert single.volatility == pytest.approx(double.volatility)

    def test_idempotent(self, declining_partner, now):
        assert calculate_partner_stats(declining_partner, now) == calculate_partner_stats(declining_partner, now)

    def test_unparsable_dates_excluded(self, now):
        records = orders([1, 2]) + [order(days_ago=1).model_copy(update={"order_date": "garbage"})]
        [stats] = calculate_partner_stats(records, now)
        assert stats.total_orders == 2

    def test_empty_input(self, now):
        assert calculate_partner_stats([], now) == []
        assert calculate_sku_stats([], now) == []

    def test_partner_with_only_undated_orders_gets_neutral_stats(self, now):
        records = orders([1, 2, 3], partner="A") + [OrderRecord(partner="Z", order_date="not-a-date")]
        stats = calculate_partner_stats(records, now)

        assert [s.partner for s in stats] == ["A", "Z"]
        assert stats[1] == empty_partner_stats("Z", "")

    def test_empty_partner_stats_are_neutral(self):
        stats = empty_partner_stats("P")
        assert stats.total_orders == 0
        assert stats.churn_risk == 0
        assert stats.alerts == ()

    def test_empty_sku_stats_are_neutral(self):
        stats = empty_sku_stats("SKU-1", "P", "FBO")
        assert stats.total_orders == 0
        assert stats.direction == "FBO"
        assert stats.alerts == ()


# ────────────────────────────────────────────
# SKU STATISTICS
# ────────────────────────────────────────────


class TestSkuStatistics:

    def test_lapsed_sku_gets_sku_churn(self, now):
        records = orders([75, 80], sku="OLD") + orders([1], sku="NEW")
        stats = {s.sku: s for s in calculate_sku_stats(records, now)}

        [alert] = stats["OLD"].alerts
        assert alert.alert_type == "sku_churn"
        assert alert.severity == "high"
        assert alert.sku_id == "OLD"
        assert alert.current_value == "75"
        assert stats["NEW"].alerts == ()

    def test_recently_lapsed_sku_is_medium(self, now):
        [stats] = calculate_sku_stats(orders([40]), now)
        assert [a.severity for a in stats.alerts] == ["medium"]

    def test_slow_sku_gets_low_order_decline(self, now):
        [stats] = calculate_sku_stats(orders([0, 4, 8, 12, 16, 20]), now)

        [alert] = stats.alerts
        assert alert.alert_type == "order_decline"
        assert alert.severity == "low"
        assert alert.current_value == "0.30"

    def test_orders_without_sku_ignored(self, now):
        stats = calculate_sku_stats(orders([1, 2], sku=None) + orders([1], sku="A"), now)
        assert [s.sku for s in stats] == ["A"]

    def test_sku_with_only_undated_orders_gets_neutral_stats(self, now):
        records = orders([1], sku="A") + [OrderRecord(partner="P", order_date="garbage", sku="B", direction="FBO")]
        stats = calculate_sku_stats(records, now)

        assert [s.sku for s in stats] == ["A", "B"]
        assert stats[1] == empty_sku_stats("B", "P", "FBO")


# ────────────────────────────────────────────
# FILTERS AND DIRECTIONS
# ────────────────────────────────────────────


class TestFilters:

    def test_time_range(self, now):
        records = orders([1, 5, 10, 20])
        assert len(filter_by_time_range(records, None, now)) == 4
        assert len(filter_by_time_range(records, 10, now)) == 3

    def test_negative_window_rejected(self, now):
        with pytest.raises(AlertEngineError):
            filter_by_time_range(orders([1]), -1, now)

    def test_direction(self):
        records = orders([1], direction="FBO") + orders([1], direction="FBS")
        assert len(filter_by_direction(records, "all")) == 2
        assert [r.direction for r in filter_by_direction(records, "FBS")] == ["FBS"]

    def test_get_directions(self):
        records = orders([1], direction="FBS") + orders([1], direction="FBO") + orders([1], direction=None)
        assert get_directions(records) == ["FBO", "FBS"]

    def test_direction_stats(self):
        records = (
            orders([1, 2, 3], partner="A", direction="FBO", sku="X") +
            orders([1], partner="B", direction="FBO", sku="Y") +
            orders([1], partner="A", direction="FBS")
        )
        fbo, fbs = calculate_direction_stats(records)

        assert fbo.direction == "FBO"
        assert fbo.total_orders == 4
        assert fbo.total_partners == 2
        assert fbo.total_skus == 2
        assert fbo.avg_orders_per_partner == 2
        assert fbo.median_orders_per_partner == 2
        assert fbs.total_orders == 1


# ────────────────────────────────────────────
# SUCCESS PATTERNS
# ────────────────────────────────────────────


class TestSuccessPatterns:

    def test_split_and_aggregate(self):
        healthy = [
            PartnerStats(partner=f"H{i}", direction="FBO", total_orders=30, unique_skus=sku,
                         order_frequency=freq, is_active=True, churn_risk=10)
            for i, (sku, freq) in enumerate([(3, 1.0), (5, 2.0)])
        ]
        lapsed = PartnerStats(partner="L", direction="FBO", total_orders=5, unique_skus=1,
                              order_frequency=9.0, is_active=False, churn_risk=95)
        patterns = analyze_success_patterns(healthy + [lapsed])

        assert patterns["successful"].avg_sku_count == 4
        assert patterns["successful"].median_order_frequency == 1.5
        assert patterns["unsuccessful"].avg_order_frequency == 9

    def test_empty_groups_are_zero(self):
        patterns = analyze_success_patterns([])
        assert patterns["successful"].avg_sku_count == 0
        assert patterns["unsuccessful"].median_volatility == 0
