"""出站调用保护

每次出站尝试先检查熔断器，再把结果登记到熔断器，
同时把耗时和成败写入指标存储，供健康探测和告警规则使用。

写入的指标（值为秒或 0/1）：
    api_response_time / api_error_rate            所有服务汇总
    <service>_response_time / <service>_error_rate 单个服务
"""

import logging
from typing import Awaitable, Callable, Optional, TypeVar

from .circuit_breaker import CircuitBreakerRegistry
from ..services.stores import BaseMetricStore
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import CircuitOpenError, RateLimitedError

T = TypeVar('T')

AGGREGATE_PREFIX = 'api'


class CallGuard:
    """熔断器与调用指标的组合"""

    def __init__(self, breakers: Optional[CircuitBreakerRegistry] = None,
                 metric_store: Optional[BaseMetricStore] = None,
                 clock: Optional[Clock] = None):
        """
        Args:
            breakers: 熔断器注册表，为 None 时不做熔断
            metric_store: 指标存储，为 None 时不记录指标
            clock: 计时使用的时钟
        """
        self.breakers = breakers
        self.metric_store = metric_store
        self.clock = clock or system_clock
        self.logger = logging.getLogger(__name__)

    def check(self, service: str) -> None:
        """
        检查熔断器是否放行

        Raises:
            CircuitOpenError: 熔断器处于打开状态
        """
        if self.breakers is not None and not self.breakers.allow_request(service):
            self.logger.warning(f"熔断器 {service} 处于打开状态，拒绝请求")
            raise CircuitOpenError(f"服务 {service} 暂不可用，熔断器处于打开状态", service=service)

    async def run(self, service: str, call: Callable[[], Awaitable[T]]) -> T:
        """
        执行一次出站尝试并登记结果

        上游限流（RateLimitedError）由限流器处理，不计入熔断器和错误率。
        """
        start = self.clock.time()
        try:
            result = await call()
        except RateLimitedError:
            raise
        except Exception:
            if self.breakers is not None:
                self.breakers.record_failure(service)
            await self._record(service, self.clock.time() - start, failed=True)
            raise

        if self.breakers is not None:
            self.breakers.record_success(service)
        await self._record(service, self.clock.time() - start, failed=False)
        return result

    async def _record(self, service: str, elapsed: float, failed: bool) -> None:
        if self.metric_store is None:
            return

        error_value = 1.0 if failed else 0.0
        now = self.clock.time()
        try:
            for prefix in (AGGREGATE_PREFIX, service):
                await self.metric_store.record(f"{prefix}_response_time", elapsed, now)
                await self.metric_store.record(f"{prefix}_error_rate", error_value, now)
        except Exception as e:
            self.logger.error(f"记录服务 {service} 调用指标失败: {e}")
