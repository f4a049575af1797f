"""限流 + 重试组合的出站调用"""

import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp

from .guard import CallGuard
from .rate_limiter import DEFAULT_KEY, RateLimiter, RateLimiterRegistry
from .retry import retry_with_backoff
from ..utils.clock import Clock
from ..utils.exceptions import CircuitOpenError, RateLimitedError

T = TypeVar('T')
logger = logging.getLogger(__name__)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """解析 Retry-After 头（整数秒），无法解析时返回 None"""
    if not value:
        return None
    try:
        seconds = float(int(value.strip()))
    except ValueError:
        return None
    return seconds if seconds > 0 else None


async def call_with_rate_limit(
        limiter: RateLimiter,
        call: Callable[[], Awaitable[T]],
        key: str = DEFAULT_KEY,
        max_retries: Optional[int] = None,
        backoff_multiplier: Optional[float] = None,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        clock: Optional[Clock] = None,
        guard: Optional[CallGuard] = None
) -> T:
    """
    经过限流器和重试执行一次出站调用

    每次尝试前都会等待并登记请求槽，因此重试同样受封禁状态约束。
    call 抛出 RateLimitedError 时登记限流错误并触发重试，
    重试耗尽后把最后的错误抛给调用者。熔断器打开时立即抛出 CircuitOpenError，不再重试。

    Args:
        limiter: 服务限流器
        call: 无参数的异步调用
        key: 限流键，429 响应也只封禁这个键
        max_retries: 最大重试次数，默认取服务配置
        backoff_multiplier: 退避倍数，默认取服务配置
        initial_delay: 初始等待时间（秒）
        max_delay: 单次等待上限（秒）
        clock: 重试等待使用的时钟，默认与限流器一致
        guard: 熔断与指标记录，按限流器的服务名登记
    """
    config = limiter.config

    async def attempt() -> T:
        if guard is not None:
            guard.check(limiter.name)
        await limiter.acquire(key)
        try:
            if guard is not None:
                return await guard.run(limiter.name, call)
            return await call()
        except RateLimitedError as e:
            limiter.record_rate_limit_error(key, e.retry_after)
            raise

    def on_retry(error: Exception, attempt_number: int):
        logger.info(f"{limiter.name} 第 {attempt_number} 次重试: {error}")

    return await retry_with_backoff(
        attempt,
        max_retries=config.max_retries if max_retries is None else max_retries,
        initial_delay=initial_delay,
        backoff_multiplier=(config.backoff_multiplier
                            if backoff_multiplier is None else backoff_multiplier),
        max_delay=max_delay,
        on_retry=on_retry,
        should_retry=lambda error: not isinstance(error, CircuitOpenError),
        clock=clock or limiter.clock
    )


async def rate_limited_fetch(
        registry: RateLimiterRegistry,
        service: str,
        url: str,
        method: str = 'GET',
        key: str = DEFAULT_KEY,
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30,
        guard: Optional[CallGuard] = None,
        **request_kwargs: Any
) -> aiohttp.ClientResponse:
    """
    通过服务限流器发送 HTTP 请求

    HTTP 429 会按 Retry-After 封禁限流键并重试；其他响应原样返回，
    响应体已经读取完毕，可以在连接释放后继续调用 json()/text()。

    Args:
        registry: 限流器注册表
        service: 服务名称
        url: 请求地址
        method: HTTP方法
        key: 限流键
        session: 复用的 aiohttp 会话，为 None 时每次请求创建临时会话
        timeout: 临时会话的超时时间（秒）
        guard: 熔断与指标记录
        **request_kwargs: 透传给 session.request 的参数
    """
    limiter = registry.get(service)

    async def send(client: aiohttp.ClientSession) -> aiohttp.ClientResponse:
        async with client.request(method, url, **request_kwargs) as response:
            if response.status == 429:
                retry_after = parse_retry_after(response.headers.get('Retry-After'))
                raise RateLimitedError(
                    f"{service} 请求被限流: {response.reason}",
                    service=service,
                    retry_after=retry_after
                )
            await response.read()
            return response

    async def call() -> aiohttp.ClientResponse:
        if session is not None:
            return await send(session)
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as client:
            return await send(client)

    try:
        return await call_with_rate_limit(limiter, call, key=key, guard=guard)
    except Exception as e:
        logger.error(f"{service} 请求失败: {e}")
        raise
