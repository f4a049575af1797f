"""防护层数据模型"""

import operator
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

V = TypeVar('V')


class HealthStatus(Enum):
    """组件健康状态"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    DOWN = "down"


class CircuitState(Enum):
    """熔断器状态"""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class AlertStatus(Enum):
    """告警状态"""
    TRIGGERED = "triggered"
    RESOLVED = "resolved"


class AlertSeverity(Enum):
    """告警级别，按严重程度递增排列"""
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)


_SEVERITY_ORDER = [AlertSeverity.INFO, AlertSeverity.WARNING,
                   AlertSeverity.ERROR, AlertSeverity.CRITICAL]


class ComparisonOperator(Enum):
    """告警条件比较运算符"""
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "=="

    def compare(self, value: float, threshold: float) -> bool:
        """判断 value 与 threshold 是否满足该运算符"""
        return _COMPARATORS[self](value, threshold)


_COMPARATORS: Dict[ComparisonOperator, Callable[[float, float], bool]] = {
    ComparisonOperator.GT: operator.gt,
    ComparisonOperator.LT: operator.lt,
    ComparisonOperator.GE: operator.ge,
    ComparisonOperator.LE: operator.le,
    ComparisonOperator.EQ: operator.eq,
}


@dataclass
class ServiceConfig:
    """单个外部服务的限流配置

    requests_per_minute 与 requests_per_second 必须且只能设置一个，
    min_delay 单位为秒。
    """
    name: str
    requests_per_minute: Optional[int] = None
    requests_per_second: Optional[int] = None
    min_delay: float = 0.0
    max_retries: int = 3
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if (self.requests_per_minute is None) == (self.requests_per_second is None):
            raise ValueError(
                f"服务 {self.name} 必须且只能配置 requests_per_minute 或 requests_per_second 之一")
        if self.max_requests <= 0:
            raise ValueError(f"服务 {self.name} 的请求上限必须是正整数")
        if self.min_delay < 0:
            raise ValueError(f"服务 {self.name} 的 min_delay 不能为负数")

    @property
    def window_duration(self) -> float:
        """计数窗口长度（秒）"""
        return 60.0 if self.requests_per_minute is not None else 1.0

    @property
    def max_requests(self) -> int:
        """窗口内允许的最大请求数"""
        if self.requests_per_minute is not None:
            return self.requests_per_minute
        return self.requests_per_second

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> 'ServiceConfig':
        return cls(
            name=name,
            requests_per_minute=data.get('requests_per_minute'),
            requests_per_second=data.get('requests_per_second'),
            min_delay=float(data.get('min_delay', 0.0)),
            max_retries=int(data.get('max_retries', 3)),
            backoff_multiplier=float(data.get('backoff_multiplier', 2.0)),
        )


@dataclass
class RateLimiterState:
    """单个限流桶的状态"""
    window_start: float
    last_request_time: float = 0.0
    request_count: int = 0
    is_blocked: bool = False
    block_until: float = 0.0


@dataclass
class CacheEntry(Generic[V]):
    """缓存条目"""
    key: str
    value: V
    expires_at: float
    created_at: float
    updated_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now


@dataclass
class HealthRecord:
    """组件健康记录"""
    component: str
    status: HealthStatus
    last_check: float
    response_time: Optional[float] = None
    error_rate: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'component': self.component,
            'status': self.status.value,
            'last_check': self.last_check,
            'response_time': self.response_time,
            'error_rate': self.error_rate,
            'metadata': self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'HealthRecord':
        return cls(
            component=data['component'],
            status=HealthStatus(data['status']),
            last_check=data['last_check'],
            response_time=data.get('response_time'),
            error_rate=data.get('error_rate', 0.0),
            metadata=data.get('metadata', {}),
        )


@dataclass
class Metric:
    """指标采样点"""
    name: str
    value: float
    timestamp: float


@dataclass
class AlertCondition:
    """告警条件，duration 为持续时间（秒）"""
    metric: str
    operator: ComparisonOperator
    threshold: float
    duration: Optional[float] = None

    def is_met(self, value: float) -> bool:
        return self.operator.compare(value, self.threshold)


@dataclass
class AlertConfig:
    """告警规则配置，cooldown 单位为秒"""
    name: str
    condition: AlertCondition
    severity: AlertSeverity = AlertSeverity.WARNING
    cooldown: float = 300.0
    enabled: bool = True
    description: str = ""
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = self.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AlertConfig':
        """从配置字典构造告警规则，格式错误时抛出 ValueError"""
        condition_data = data['condition']
        duration = condition_data.get('duration')
        return cls(
            id=str(data.get('id', '')),
            name=data['name'],
            description=data.get('description', ''),
            condition=AlertCondition(
                metric=condition_data['metric'],
                operator=ComparisonOperator(condition_data['operator']),
                threshold=float(condition_data['threshold']),
                duration=float(duration) if duration else None,
            ),
            severity=AlertSeverity(data.get('severity', 'warning')),
            cooldown=float(data.get('cooldown', 300)),
            enabled=bool(data.get('enabled', True)),
        )


@dataclass
class Alert:
    """已触发的告警"""
    config_id: str
    title: str
    message: str
    severity: AlertSeverity
    triggered_at: float
    status: AlertStatus = AlertStatus.TRIGGERED
    resolved_at: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    notifications_sent: List[Dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'config_id': self.config_id,
            'title': self.title,
            'message': self.message,
            'severity': self.severity.value,
            'status': self.status.value,
            'triggered_at': datetime.fromtimestamp(self.triggered_at).isoformat(),
            'resolved_at': (datetime.fromtimestamp(self.resolved_at).isoformat()
                            if self.resolved_at is not None else None),
            'metadata': self.metadata,
        }


@dataclass
class AuditLogEntry:
    """审计日志条目"""
    action: str
    timestamp: float
    actor: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BreakerCounters:
    """熔断器计数"""
    failures: int = 0
    total_requests: int = 0
