"""数据模型模块"""

from .records import (
    Alert,
    AlertCondition,
    AlertConfig,
    AlertSeverity,
    AlertStatus,
    AuditLogEntry,
    BreakerCounters,
    CacheEntry,
    CircuitState,
    ComparisonOperator,
    HealthRecord,
    HealthStatus,
    Metric,
    RateLimiterState,
    ServiceConfig,
)

__all__ = [
    'Alert', 'AlertCondition', 'AlertConfig', 'AlertSeverity', 'AlertStatus',
    'AuditLogEntry', 'BreakerCounters', 'CacheEntry', 'CircuitState',
    'ComparisonOperator', 'HealthRecord', 'HealthStatus', 'Metric',
    'RateLimiterState', 'ServiceConfig'
]
