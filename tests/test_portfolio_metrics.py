"""
Tests for portfolio-level business metrics, direction breakdowns and
monthly SKU metrics.
"""
import pytest

from churnwatch.models.order import OrderRecord
from churnwatch.services.portfolio_metrics import (
    BusinessMetrics,
    calculate_business_metrics,
    calculate_detailed_direction_stats,
    calculate_sku_metrics,
)
from factories import orders


# ────────────────────────────────────────────
# BUSINESS METRICS
# ────────────────────────────────────────────


class TestBusinessMetrics:

    def test_period_comparison(self, now):
        records = (
            orders([40, 5, 3], partner="A") +
            orders([45], partner="B") +
            orders([1, 2], partner="C")
        )
        metrics = calculate_business_metrics(records, period_days=30, now=now)

        assert metrics.retention_rate == 50
        assert metrics.churn_rate == 0
        assert metrics.period_growth == 100
        # top 20% of 2 partners is one partner with 2 of 4 orders
        assert metrics.concentration_risk == 50
        # 50*0.25 + 100*0.30 + 100*0.25 + 50*0.20
        assert metrics.health_score == pytest.approx(77.5)
        assert metrics.avg_orders_per_active_partner == 2

    def test_churn_rate(self, now):
        records = orders([70], partner="A") + orders([10, 50], partner="B")
        metrics = calculate_business_metrics(records, period_days=45, now=now)

        assert metrics.churn_rate == 50
        assert metrics.retention_rate == 50

    def test_shrinking_portfolio(self, now):
        records = orders([35, 36, 37, 38], partner="A") + orders([1], partner="A")
        metrics = calculate_business_metrics(records, now=now)

        assert metrics.period_growth == -75
        assert 0 <= metrics.health_score <= 100

    def test_empty(self, now):
        assert calculate_business_metrics([], now=now) == BusinessMetrics(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


# ────────────────────────────────────────────
# DIRECTION BREAKDOWN
# ────────────────────────────────────────────


class TestDetailedDirectionStats:

    def test_express_fbs_is_split(self, now):
        records = (
            orders([1, 2], partner="A", direction="FBO") +
            orders([3], partner="B", direction="FBO") +
            orders([40], partner="E", direction="FBO") +
            orders([1], partner="C", direction="Express/FBS", order_type="FBS") +
            orders([2], partner="D", direction="Express/FBS", order_type="Express") +
            orders([5], partner="D", direction="Express/FBS", order_type=None)
        )
        stats = {(s.direction, s.sub_type): s for s in calculate_detailed_direction_stats(records, now=now)}

        assert set(stats) == {
            ("FBO", None),
            ("Express/FBS", None),
            ("Express/FBS", "Express"),
            ("Express/FBS", "FBS"),
        }

        fbo = stats[("FBO", None)]
        assert fbo.total_orders == 3
        assert fbo.total_partners == 2
        assert fbo.active_partners == 2
        assert fbo.avg_orders_per_partner == 1.5
        # E ordered only in the previous period
        assert fbo.retention_rate == 0

        assert stats[("Express/FBS", "Express")].total_orders == 2
        assert stats[("Express/FBS", "FBS")].total_partners == 1
        assert stats[("Express/FBS", None)].total_orders == 3

    def test_sorted_by_volume(self, now):
        records = orders([1], direction="FBS") + orders([1, 2, 3], direction="FBO")
        stats = calculate_detailed_direction_stats(records, now=now)
        assert [s.direction for s in stats] == ["FBO", "FBS"]

    def test_empty(self, now):
        assert calculate_detailed_direction_stats([], now=now) == []


# ────────────────────────────────────────────
# SKU METRICS
# ────────────────────────────────────────────


class TestSkuMetrics:

    def test_monthly_metrics(self, now):
        records = [
            OrderRecord(partner="P", order_date="2024-11-15", sku="Z"),
            OrderRecord(partner="P", order_date="2025-01-10", sku="X"),
            OrderRecord(partner="P", order_date="2025-02-03", sku="X"),
            OrderRecord(partner="P", order_date="2025-02-04", sku="Y"),
            OrderRecord(partner="P", order_date="2025-02-05", sku="Y"),
            OrderRecord(partner="P", order_date="2025-02-06"),
        ]
        november, january, february = calculate_sku_metrics(records, now)

        assert november.month == "2024-11"
        assert (november.total_skus, november.active_skus, november.new_skus) == (1, 1, 1)
        assert november.churned_skus == 1

        assert january.total_skus == 2
        assert january.new_skus == 1

        assert february.total_skus == 3
        assert february.active_skus == 2
        assert february.new_skus == 1
        assert february.churned_skus == 1
        assert february.avg_orders_per_sku == 1.5
        assert february.top_sku_concentration == pytest.approx(200 / 3)

    def test_empty(self, now):
        assert calculate_sku_metrics([], now) == []
