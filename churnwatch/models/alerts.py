"""
Alert value objects: raw anomalies, prioritized alerts, groups and benchmarks
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

# Raw detector vocabulary (matches the alert store enums)
ALERT_TYPES = (
    "order_decline",
    "churn_risk",
    "volatility_spike",
    "warehouse_anomaly",
    "sku_churn",
    "concentration_risk",
)
SEVERITIES = ("low", "medium", "high", "critical")
TIMEFRAMES = ("7d", "30d")
DIRECTIONS = ("up", "down")

# Presentation vocabulary
ALERT_CATEGORIES = (
    "CHURN_RISK",
    "REVENUE_DROP",
    "VOLATILITY",
    "WAREHOUSE_ANOMALY",
    "SKU_ANOMALY",
    "CONCENTRATION",
)
PRIORITY_SEVERITIES = ("CRITICAL", "HIGH", "MEDIUM", "LOW")
CUSTOMER_SIZES = ("LARGE", "MEDIUM", "SMALL")

BENCHMARK_METRICS = (
    "avg_orders_per_day",
    "order_interval",
    "volatility",
    "warehouse_count",
    "sku_count",
    "orders_per_sku",
)
BENCHMARK_PERIODS = ("7d", "30d", "90d", "all")


class AlertEngineError(Exception):
    """Raised when the engine is called with values outside its vocabulary"""


def _require(value: str, allowed: Tuple[str, ...], what: str) -> None:
    if value not in allowed:
        raise AlertEngineError(f"Unknown {what} '{value}', expected one of {', '.join(allowed)}")


@dataclass(frozen=True)
class AnomalyAlert:
    """A raw detected signal for a partner or one of its SKUs"""
    partner_id: str
    alert_type: str
    severity: str
    timeframe: str
    message: str
    sku_id: Optional[str] = None
    benchmark_value: Optional[str] = None
    current_value: Optional[str] = None
    percentage_change: Optional[str] = None
    direction: Optional[str] = None

    def __post_init__(self):
        _require(self.alert_type, ALERT_TYPES, "alert type")
        _require(self.severity, SEVERITIES, "severity")
        _require(self.timeframe, TIMEFRAMES, "timeframe")
        if self.direction is not None:
            _require(self.direction, DIRECTIONS, "direction")

    @property
    def alert_id(self) -> str:
        return f"{self.partner_id}:{self.sku_id or '*'}:{self.alert_type}:{self.timeframe}"

    def to_store_record(self) -> Dict[str, Any]:
        """Insert shape for the external alert store (new alerts are unresolved)"""
        return {
            "partner_id": self.partner_id,
            "sku_id": self.sku_id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "timeframe": self.timeframe,
            "message": self.message,
            "benchmark_value": self.benchmark_value,
            "current_value": self.current_value,
            "percentage_change": self.percentage_change,
            "direction": self.direction,
            "is_resolved": 0,
        }


@dataclass(frozen=True)
class PrioritizedAlert:
    """
    An AnomalyAlert enriched with business context.

    ``severity`` is derived from the priority score; ``raw_severity`` keeps
    the detector's statistical severity so both can be persisted.
    """
    id: str
    partner_id: str
    category: str
    severity: str
    raw_severity: str
    priority_score: int
    message: str
    customer_size: str
    churn_risk: float
    revenue_at_risk: float
    detected_at: datetime
    last_updated: datetime
    is_new: bool
    source: AnomalyAlert
    sku_id: Optional[str] = None
    current_value: Optional[str] = None
    benchmark_value: Optional[str] = None
    percentage_change: Optional[float] = None
    direction: Optional[str] = None


@dataclass(frozen=True)
class AlertGroup:
    category: str
    severity: str
    alerts: Tuple[PrioritizedAlert, ...]
    count: int
    total_priority_score: int


@dataclass(frozen=True)
class Benchmark:
    """A stored historical metric snapshot"""
    partner_id: str
    metric_type: str
    period: str
    value: str
    sku_id: Optional[str] = None
    direction: Optional[str] = None

    def __post_init__(self):
        _require(self.metric_type, BENCHMARK_METRICS, "benchmark metric")
        _require(self.period, BENCHMARK_PERIODS, "benchmark period")


@dataclass(frozen=True)
class PartnerBenchmark:
    """Short and long window behaviour of one partner"""
    partner_id: str
    avg_orders_per_day_7d: float = 0.0
    avg_orders_per_day_30d: float = 0.0
    order_interval_7d: float = 0.0
    order_interval_30d: float = 0.0
    volatility_7d: float = 0.0
    volatility_30d: float = 0.0
    warehouse_count_7d: int = 0
    warehouse_count_30d: int = 0
    warehouse_count: int = 0
    sku_count: int = 0
