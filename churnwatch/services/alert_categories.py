"""
Alert Categories

Severity levels, risk categories and customer sizes with their business
meaning, response times and escalation rules.
"""
from typing import List

from churnwatch.models.alerts import AlertEngineError, PrioritizedAlert
from churnwatch.utils.helpers import round_half_up

# ---------------------------------------------------------------------------
# Severity definitions
# ---------------------------------------------------------------------------
SEVERITY_DEFINITIONS = {
    "CRITICAL": {
        "label": "Critical",
        "description": "Immediate action required. A large partner is losing orders or about to leave.",
        "response_time_hours": 1,
        "icon": "🔴",
        "action_required": True,
    },
    "HIGH": {
        "label": "High",
        "description": "Action required within hours. Significant revenue at risk.",
        "response_time_hours": 4,
        "icon": "🟠",
        "action_required": True,
    },
    "MEDIUM": {
        "label": "Medium",
        "description": "Monitor and plan a response. Potential future risk.",
        "response_time_hours": 24,
        "icon": "🟡",
        "action_required": False,
    },
    "LOW": {
        "label": "Low",
        "description": "Informational. Monitoring recommended, no urgent action.",
        "response_time_hours": 72,
        "icon": "🔵",
        "action_required": False,
    },
}

# ---------------------------------------------------------------------------
# Risk category definitions
# ---------------------------------------------------------------------------
RISK_CATEGORIES = {
    "CHURN_RISK": {
        "label": "Churn risk",
        "description": "Partner shows signs of ending the relationship.",
        "business_impact": "Loss of a recurring source of orders and revenue.",
        "typical_causes": [
            "Order frequency down 50%+ over the last two weeks",
            "No orders for more than 30 days",
            "Switching to competitors",
            "Growing time between orders",
        ],
        "recommended_actions": [
            "Contact the partner to find out why",
            "Offer special terms or discounts",
            "Review competing offers",
            "Schedule a meeting with the key contact",
            "Offer additional support services",
        ],
        "priority_weight": 95,
    },
    "REVENUE_DROP": {
        "label": "Revenue drop",
        "description": "Sharp fall in order volume.",
        "business_impact": "Direct loss of revenue from the partner.",
        "typical_causes": [
            "Seasonal demand decline",
            "Supply problems",
            "Technical problems on the partner side",
            "Change in partner strategy",
        ],
        "recommended_actions": [
            "Review the trend over the last three months",
            "Check whether the drop is seasonal",
            "Contact the partner to find out why",
            "Offer help resolving the problem",
            "Consider joint marketing",
        ],
        "priority_weight": 85,
    },
    "VOLATILITY": {
        "label": "Volatility",
        "description": "Unpredictable swings in order volume.",
        "business_impact": "Harder capacity planning, risk of fulfillment disruption.",
        "typical_causes": [
            "Seasonal demand swings",
            "Irregular bulk orders",
            "Logistics problems",
            "Changes in partner marketing activity",
        ],
        "recommended_actions": [
            "Review historical order patterns",
            "Discuss steadier ordering with the partner",
            "Offer a loyalty program for regular orders",
            "Improve demand forecasting",
            "Keep a buffer for critical SKUs",
        ],
        "priority_weight": 50,
    },
    "WAREHOUSE_ANOMALY": {
        "label": "Warehouse anomaly",
        "description": "Unusual activity or problems at a specific warehouse.",
        "business_impact": "Local delivery or processing problems.",
        "typical_causes": [
            "Logistics problems at the warehouse",
            "Maintenance or repairs",
            "Staffing problems",
            "Seasonal overload",
        ],
        "recommended_actions": [
            "Contact the warehouse manager",
            "Check inbound supply status",
            "Assess load and throughput",
            "Consider rerouting orders to other warehouses",
            "Audit warehouse processes",
        ],
        "priority_weight": 60,
    },
    "SKU_ANOMALY": {
        "label": "SKU anomaly",
        "description": "Unusual behaviour of a specific product.",
        "business_impact": "May indicate product quality or demand problems.",
        "typical_causes": [
            "Sharp fall in product demand",
            "Product quality problems",
            "Competitor price changes",
            "Alternative products appearing",
        ],
        "recommended_actions": [
            "Check product reviews and ratings",
            "Review competing offers",
            "Discuss price optimization with the partner",
            "Consider delisting the product",
            "Run a marketing campaign for the product",
        ],
        "priority_weight": 40,
    },
    "CONCENTRATION": {
        "label": "Concentration risk",
        "description": "Too large a share of orders from one partner or one direction.",
        "business_impact": "High exposure to losing a key partner or direction.",
        "typical_causes": [
            "One partner brings more than 30% of orders",
            "One direction brings more than 50% of orders",
            "Insufficient diversification",
        ],
        "recommended_actions": [
            "Build a diversification strategy",
            "Actively acquire new partners",
            "Grow less active directions",
            "Reduce dependence on key partners",
            "Set up backup sales channels",
        ],
        "priority_weight": 70,
    },
}

# ---------------------------------------------------------------------------
# Customer size definitions
# ---------------------------------------------------------------------------
CUSTOMER_SIZE_DEFINITIONS = {
    "LARGE": {
        "label": "Large",
        "description": "High order volume, strategic partner.",
        "order_volume_range": "500+ orders per month",
        "revenue_multiplier": 3.0,
        "response_time_multiplier": 0.5,
    },
    "MEDIUM": {
        "label": "Medium",
        "description": "Stable order volume.",
        "order_volume_range": "100-500 orders per month",
        "revenue_multiplier": 1.5,
        "response_time_multiplier": 1.0,
    },
    "SMALL": {
        "label": "Small",
        "description": "Low order volume.",
        "order_volume_range": "under 100 orders per month",
        "revenue_multiplier": 0.5,
        "response_time_multiplier": 2.0,
    },
}

ESCALATION_LEVELS = (
    (85, "IMMEDIATE"),
    (70, "URGENT"),
    (50, "NORMAL"),
)


def _definition(definitions: dict, key: str, what: str) -> dict:
    try:
        return definitions[key]
    except KeyError:
        raise AlertEngineError(f"Unknown {what} '{key}'")


def get_recommended_response_time(severity: str, customer_size: str) -> int:
    """Hours to respond: severity base time scaled by customer size"""
    hours = _definition(SEVERITY_DEFINITIONS, severity, "severity")["response_time_hours"]
    multiplier = _definition(CUSTOMER_SIZE_DEFINITIONS, customer_size, "customer size")["response_time_multiplier"]
    return round_half_up(hours * multiplier)


def get_escalation_level(priority_score: float) -> str:
    for threshold, level in ESCALATION_LEVELS:
        if priority_score >= threshold:
            return level
    return "LOW"


def get_action_checklist(category: str) -> List[str]:
    return list(_definition(RISK_CATEGORIES, category, "category")["recommended_actions"])


def format_alert_for_notification(alert: PrioritizedAlert, max_actions: int = 3) -> str:
    """Plain-text notification body for an alert"""
    severity = _definition(SEVERITY_DEFINITIONS, alert.severity, "severity")
    category = _definition(RISK_CATEGORIES, alert.category, "category")
    response_time = get_recommended_response_time(alert.severity, alert.customer_size)

    actions = "\n".join(
        f"{i}. {action}" for i, action in enumerate(category["recommended_actions"][:max_actions], start=1)
    )

    return (
        f"{severity['icon']} {severity['label']} | {category['label']}\n"
        f"\n"
        f"Partner: {alert.partner_id}\n"
        f"Priority: {alert.priority_score}/100\n"
        f"Recommended response time: {response_time} hours\n"
        f"\n"
        f"{alert.message}\n"
        f"\n"
        f"Recommended actions:\n"
        f"{actions}"
    )
