"""由熔断器状态推导 API 组件健康"""

from typing import Any, Dict, Optional

from .base import BaseProbe
from .factory import register_probe
from ..models.records import CircuitState, HealthRecord, HealthStatus
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from ..utils.clock import Clock

_STATUS_BY_STATE = {
    CircuitState.OPEN: HealthStatus.DOWN,
    CircuitState.HALF_OPEN: HealthStatus.DEGRADED,
    CircuitState.CLOSED: HealthStatus.HEALTHY,
}


def status_for_state(state: CircuitState) -> HealthStatus:
    """熔断器状态到健康状态的映射：open 为 down，half_open 为 degraded，其余为 healthy"""
    return _STATUS_BY_STATE.get(state, HealthStatus.HEALTHY)


@register_probe('circuit_breaker')
class CircuitBreakerProbe(BaseProbe):
    """熔断器探测器，只读取熔断器，不修改其状态"""

    def __init__(self, name: str, config: Dict[str, Any], clock: Optional[Clock] = None,
                 registry: Optional[CircuitBreakerRegistry] = None):
        super().__init__(name, config, clock)
        self.registry = registry
        self.service = config.get('service', name)

    def validate_config(self) -> bool:
        return self.registry is not None and isinstance(self.service, str) and bool(self.service)

    async def check(self) -> HealthRecord:
        state = self.registry.state(self.service)
        counters = self.registry.counters(self.service)

        return HealthRecord(
            component=self.name,
            status=status_for_state(state),
            last_check=self.clock.time(),
            response_time=None,
            error_rate=counters.failures / max(counters.total_requests, 1),
            metadata={'api': self.service, 'circuit_breaker_state': state.value}
        )
