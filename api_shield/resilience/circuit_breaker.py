"""熔断器及其注册表

健康监控只通过 state() 和 counters() 读取熔断器，
失败与成功由出站调用路径上的 CallGuard 登记。
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from ..models.records import BreakerCounters, CircuitState
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import CircuitOpenError

T = TypeVar('T')
logger = logging.getLogger(__name__)


@dataclass
class CircuitBreakerConfig:
    """熔断器配置"""
    failure_threshold: int = 5
    success_threshold: int = 3
    recovery_timeout: float = 60.0
    volume_threshold: int = 10


DEFAULT_BREAKER_CONFIGS: Dict[str, CircuitBreakerConfig] = {
    'ethereum_rpc': CircuitBreakerConfig(5, 3, 60.0, 10),
    'bsc_rpc': CircuitBreakerConfig(5, 3, 60.0, 10),
    'solana_rpc': CircuitBreakerConfig(5, 3, 60.0, 10),
    'coingecko': CircuitBreakerConfig(3, 2, 30.0, 5),
}


@dataclass
class CircuitBreaker:
    """熔断器实现"""
    name: str
    config: CircuitBreakerConfig
    clock: Clock = field(default=system_clock, repr=False)
    state: CircuitState = CircuitState.CLOSED
    failures: int = 0
    successes: int = 0
    total_requests: int = 0
    next_attempt_time: Optional[float] = None
    last_failure_time: Optional[float] = None

    def should_allow_request(self) -> bool:
        """判断是否允许请求，打开状态超时后转为半开"""
        if self.state == CircuitState.OPEN:
            if self.next_attempt_time is not None and self.clock.time() >= self.next_attempt_time:
                self.state = CircuitState.HALF_OPEN
                self.failures = 0
                self.successes = 0
                logger.info(f"熔断器 {self.name} 进入半开状态")
                return True
            return False
        return True

    def record_success(self):
        """记录成功"""
        self.successes += 1
        self.total_requests += 1

        if self.state == CircuitState.HALF_OPEN and self.successes >= self.config.success_threshold:
            self.state = CircuitState.CLOSED
            self.failures = 0
            self.successes = 0
            self.next_attempt_time = None
            logger.info(f"熔断器 {self.name} 恢复到关闭状态")

    def record_failure(self):
        """记录失败"""
        now = self.clock.time()
        self.failures += 1
        self.total_requests += 1
        self.last_failure_time = now

        if self.state == CircuitState.CLOSED:
            if (self.total_requests >= self.config.volume_threshold
                    and self.failures >= self.config.failure_threshold):
                self._open(now)
                logger.warning(f"熔断器 {self.name} 打开，失败次数: {self.failures}")
        elif self.state == CircuitState.HALF_OPEN:
            self._open(now)
            logger.warning(f"熔断器 {self.name} 重新打开")

    def _open(self, now: float):
        self.state = CircuitState.OPEN
        self.next_attempt_time = now + self.config.recovery_timeout
        self.failures = 0
        self.successes = 0


class CircuitBreakerRegistry:
    """熔断器注册表"""

    def __init__(self, configs: Optional[Dict[str, CircuitBreakerConfig]] = None,
                 clock: Optional[Clock] = None):
        self._clock = clock or system_clock
        self._configs = dict(DEFAULT_BREAKER_CONFIGS if configs is None else configs)
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, service: str) -> CircuitBreaker:
        """获取熔断器，不存在时按配置（或默认配置）创建"""
        with self._lock:
            breaker = self._breakers.get(service)
            if breaker is None:
                config = self._configs.get(service, CircuitBreakerConfig())
                breaker = CircuitBreaker(service, config, self._clock)
                self._breakers[service] = breaker
                logger.info(f"注册熔断器: {service}")
            return breaker

    def state(self, service: str) -> CircuitState:
        """读取熔断器状态，未登记过的服务视为关闭"""
        with self._lock:
            breaker = self._breakers.get(service)
            return breaker.state if breaker else CircuitState.CLOSED

    def counters(self, service: str) -> BreakerCounters:
        """读取熔断器计数"""
        with self._lock:
            breaker = self._breakers.get(service)
            if breaker is None:
                return BreakerCounters()
            return BreakerCounters(failures=breaker.failures,
                                   total_requests=breaker.total_requests)

    def allow_request(self, service: str) -> bool:
        breaker = self.get(service)
        with self._lock:
            return breaker.should_allow_request()

    def record_success(self, service: str):
        breaker = self.get(service)
        with self._lock:
            breaker.record_success()

    def record_failure(self, service: str):
        breaker = self.get(service)
        with self._lock:
            breaker.record_failure()

    async def call(self, service: str, fn: Callable[[], Awaitable[T]]) -> T:
        """
        在熔断器保护下执行异步调用

        Raises:
            CircuitOpenError: 熔断器处于打开状态
        """
        if not self.allow_request(service):
            raise CircuitOpenError(f"熔断器 {service} 处于打开状态", service=service)

        try:
            result = await fn()
        except Exception:
            self.record_failure(service)
            raise

        self.record_success(service)
        return result

    def get_metrics(self) -> Dict[str, Any]:
        """获取所有熔断器的汇总信息"""
        with self._lock:
            by_state = {state.value: 0 for state in CircuitState}
            by_service = {}
            for name, breaker in self._breakers.items():
                by_state[breaker.state.value] += 1
                by_service[name] = {
                    'state': breaker.state.value,
                    'failures': breaker.failures,
                    'successes': breaker.successes,
                    'total_requests': breaker.total_requests,
                }
            return {'total': len(self._breakers), 'by_state': by_state, 'by_service': by_service}
