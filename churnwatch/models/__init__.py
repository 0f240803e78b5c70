"""Value objects for the churnwatch engine"""

from churnwatch.models.order import OrderRecord, ReportDetails, load_order_records

from churnwatch.models.alerts import (
    AlertEngineError,
    AnomalyAlert,
    PrioritizedAlert,
    AlertGroup,
    Benchmark,
    PartnerBenchmark,
    ALERT_TYPES,
    ALERT_CATEGORIES,
    SEVERITIES,
    PRIORITY_SEVERITIES,
    CUSTOMER_SIZES,
    TIMEFRAMES,
)

from churnwatch.models.stats import (
    PartnerStats,
    SKUStats,
    DirectionStats,
    ChurnPattern
)
