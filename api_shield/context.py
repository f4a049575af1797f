"""防护层运行上下文

限流器注册表、缓存、熔断器和时钟显式地组装在一起传给调用方，
不依赖模块级单例，测试中可以为每个用例构造独立的上下文。
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import aiohttp

from .cache.ttl_cache import TTLCache
from .resilience.circuit_breaker import CircuitBreakerRegistry
from .resilience.fetch import call_with_rate_limit, rate_limited_fetch
from .resilience.guard import CallGuard
from .resilience.rate_limiter import DEFAULT_KEY, RateLimiter, RateLimiterRegistry
from .services.stores import BaseMetricStore
from .utils.clock import Clock, system_clock

T = TypeVar('T')


class ResilienceContext:
    """限流器、缓存、熔断器与时钟的组合"""

    def __init__(self, clock: Optional[Clock] = None,
                 rate_limiters: Optional[RateLimiterRegistry] = None,
                 cache: Optional[TTLCache] = None,
                 breakers: Optional[CircuitBreakerRegistry] = None,
                 metric_store: Optional[BaseMetricStore] = None):
        self.clock = clock or system_clock
        self.rate_limiters = rate_limiters or RateLimiterRegistry(clock=self.clock)
        self.cache = cache or TTLCache(clock=self.clock)
        self.breakers = breakers
        self.metric_store = metric_store
        self.guard = CallGuard(breakers, metric_store, self.clock)

    @classmethod
    def from_config(cls, config: Dict[str, Any], clock: Optional[Clock] = None,
                    breakers: Optional[CircuitBreakerRegistry] = None,
                    metric_store: Optional[BaseMetricStore] = None) -> 'ResilienceContext':
        """
        按配置文件内容创建上下文

        Args:
            config: 完整配置字典，读取 rate_limits 和 cache 两段
            clock: 时钟
            breakers: 出站调用登记结果的熔断器注册表
            metric_store: 出站调用写入耗时和错误率的指标存储

        Raises:
            ConfigError: 限流配置无效
        """
        clock = clock or system_clock
        cache_config = config.get('cache') or {}

        return cls(
            clock=clock,
            rate_limiters=RateLimiterRegistry.from_config(config.get('rate_limits'), clock),
            cache=TTLCache(
                default_ttl=cache_config.get('default_ttl', 60.0),
                clock=clock,
                max_entries=cache_config.get('max_entries')
            ),
            breakers=breakers,
            metric_store=metric_store
        )

    def limiter(self, service: str) -> RateLimiter:
        return self.rate_limiters.get(service)

    async def call(self, service: str, fn: Callable[[], Awaitable[T]],
                   key: str = DEFAULT_KEY, **retry_kwargs: Any) -> T:
        """经过服务限流器、熔断器和重试执行任意出站调用"""
        return await call_with_rate_limit(self.limiter(service), fn, key=key,
                                          guard=self.guard, **retry_kwargs)

    async def fetch(self, service: str, url: str, method: str = 'GET', key: str = DEFAULT_KEY,
                    session: Optional[aiohttp.ClientSession] = None,
                    **request_kwargs: Any) -> aiohttp.ClientResponse:
        """通过服务限流器发送 HTTP 请求"""
        return await rate_limited_fetch(self.rate_limiters, service, url, method=method,
                                        key=key, session=session, guard=self.guard,
                                        **request_kwargs)
