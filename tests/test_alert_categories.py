"""
Tests for category definitions, response times, escalation and notification text.
"""
import pytest

from churnwatch.models.alerts import ALERT_CATEGORIES, AlertEngineError, PRIORITY_SEVERITIES
from churnwatch.services.alert_categories import (
    RISK_CATEGORIES,
    SEVERITY_DEFINITIONS,
    format_alert_for_notification,
    get_action_checklist,
    get_escalation_level,
    get_recommended_response_time,
)
from factories import prioritized


class TestDefinitions:

    def test_every_category_and_severity_defined(self):
        assert set(RISK_CATEGORIES) == set(ALERT_CATEGORIES)
        assert set(SEVERITY_DEFINITIONS) == set(PRIORITY_SEVERITIES)

    @pytest.mark.parametrize("severity, size, hours", [
        ("CRITICAL", "LARGE", 1),
        ("CRITICAL", "SMALL", 2),
        ("HIGH", "MEDIUM", 4),
        ("MEDIUM", "LARGE", 12),
        ("LOW", "SMALL", 144),
    ])
    def test_response_time(self, severity, size, hours):
        assert get_recommended_response_time(severity, size) == hours

    def test_unknown_values_rejected(self):
        with pytest.raises(AlertEngineError):
            get_recommended_response_time("URGENT", "LARGE")
        with pytest.raises(AlertEngineError):
            get_recommended_response_time("HIGH", "HUGE")
        with pytest.raises(AlertEngineError):
            get_action_checklist("WEATHER")

    @pytest.mark.parametrize("score, level", [
        (100, "IMMEDIATE"),
        (85, "IMMEDIATE"),
        (84, "URGENT"),
        (70, "URGENT"),
        (69, "NORMAL"),
        (50, "NORMAL"),
        (49, "LOW"),
    ])
    def test_escalation_level(self, score, level):
        assert get_escalation_level(score) == level

    def test_checklist_is_a_copy(self):
        checklist = get_action_checklist("CHURN_RISK")
        checklist.clear()
        assert get_action_checklist("CHURN_RISK")


class TestNotification:

    def test_contents(self):
        alert = prioritized("a", category="REVENUE_DROP", severity="CRITICAL", score=88, customer_size="LARGE")
        text = format_alert_for_notification(alert)

        assert text.startswith(SEVERITY_DEFINITIONS["CRITICAL"]["icon"])
        assert "Partner: P" in text
        assert "Priority: 88/100" in text
        assert "Recommended response time: 1 hours" in text
        assert "test alert" in text
        assert "Recommended actions:" in text

        actions = RISK_CATEGORIES["REVENUE_DROP"]["recommended_actions"]
        assert f"3. {actions[2]}" in text
        assert actions[3] not in text

    def test_response_time_follows_customer_size(self):
        alert = prioritized("a", severity="HIGH", customer_size="SMALL")
        assert "Recommended response time: 8 hours" in format_alert_for_notification(alert)

    def test_max_actions(self):
        alert = prioritized("a", category="VOLATILITY", severity="LOW")
        text = format_alert_for_notification(alert, max_actions=1)
        assert "1. " in text
        assert "2. " not in text
