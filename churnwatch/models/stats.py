"""
Derived statistics, rebuilt from the record collection on every call
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from churnwatch.models.alerts import AnomalyAlert


@dataclass(frozen=True)
class PartnerStats:
    partner: str
    direction: str
    total_orders: int = 0
    unique_skus: int = 0
    unique_warehouses: int = 0
    avg_orders_per_day: float = 0.0
    median_orders_per_day: float = 0.0
    order_frequency: float = 0.0  # mean days between distinct order dates
    volatility: float = 0.0  # coefficient of variation of daily counts
    first_order_date: Optional[datetime] = None
    last_order_date: Optional[datetime] = None
    days_since_last_order: int = 0
    is_active: bool = False
    is_churned: bool = False
    churn_risk: float = 0.0  # 0-100
    concentration_risk: float = 0.0
    diversification_score: float = 100.0
    fulfillment_score: float = 50.0
    avg_items_per_order: float = 0.0
    avg_weight_per_order: float = 0.0
    marketplace_preference: str = ""
    warehouse_preference: str = ""
    alerts: Tuple[AnomalyAlert, ...] = ()


@dataclass(frozen=True)
class SKUStats:
    sku: str
    partner: str
    direction: str
    total_orders: int = 0
    avg_orders_per_day: float = 0.0
    median_orders_per_day: float = 0.0
    order_frequency: float = 0.0
    first_order_date: Optional[datetime] = None
    last_order_date: Optional[datetime] = None
    days_since_last_order: int = 0
    alerts: Tuple[AnomalyAlert, ...] = ()


@dataclass(frozen=True)
class DirectionStats:
    direction: str
    total_orders: int
    total_partners: int
    total_skus: int
    avg_orders_per_partner: float
    median_orders_per_partner: float


@dataclass(frozen=True)
class ChurnPattern:
    """Averages and medians describing a group of partners"""
    avg_order_frequency: float = 0.0
    median_order_frequency: float = 0.0
    avg_sku_count: float = 0.0
    median_sku_count: float = 0.0
    avg_warehouse_count: float = 0.0
    median_warehouse_count: float = 0.0
    avg_volatility: float = 0.0
    median_volatility: float = 0.0
