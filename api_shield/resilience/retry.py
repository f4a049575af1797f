"""指数退避重试"""

import asyncio
import logging
from dataclasses import dataclass
from functools import wraps
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from ..utils.clock import Clock, system_clock

T = TypeVar('T')
logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """重试配置，延迟单位为秒"""
    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0
    retryable_errors: Tuple[Type[BaseException], ...] = (Exception,)

    def calculate_delay(self, attempt_index: int) -> float:
        """计算第 attempt_index 次失败（从0开始）之后的等待时间"""
        delay = self.initial_delay * (self.backoff_multiplier ** attempt_index)
        return min(delay, self.max_delay)


async def retry_with_backoff(
        fn: Callable[[], Awaitable[T]],
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_delay: float = 30.0,
        on_retry: Optional[Callable[[Exception, int], Any]] = None,
        retryable_errors: Tuple[Type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[Exception], bool]] = None,
        clock: Optional[Clock] = None
) -> T:
    """
    以指数退避方式执行异步调用

    fn 最多被调用 max_retries + 1 次；每次失败后若仍有剩余次数，
    先以 (错误, 从1开始的重试序号) 调用 on_retry，再等待
    min(initial_delay * backoff_multiplier ** 序号, max_delay) 秒。
    重试耗尽后抛出最后一次的错误。

    Args:
        fn: 无参数的异步调用
        max_retries: 最大重试次数
        initial_delay: 初始等待时间（秒）
        backoff_multiplier: 退避倍数
        max_delay: 单次等待上限（秒）
        on_retry: 重试前的观察回调
        retryable_errors: 可重试的异常类型，其他异常立即抛出
        should_retry: 对可重试类型的进一步判断，返回 False 时立即抛出
        clock: 用于挂起等待的时钟

    Returns:
        fn 的返回值
    """
    config = RetryConfig(
        max_retries=max_retries,
        initial_delay=initial_delay,
        backoff_multiplier=backoff_multiplier,
        max_delay=max_delay,
        retryable_errors=retryable_errors
    )
    clock = clock or system_clock

    for attempt_index in range(config.max_retries + 1):
        try:
            return await fn()
        except config.retryable_errors as error:
            if should_retry is not None and not should_retry(error):
                logger.warning(f"调用失败且不可重试: {error}")
                raise

            if attempt_index >= config.max_retries:
                logger.error(f"重试失败，已达到最大重试次数 {config.max_retries}: {error}")
                raise

            attempt = attempt_index + 1
            if on_retry:
                on_retry(error, attempt)

            delay = config.calculate_delay(attempt_index)
            logger.warning(
                f"调用失败 (重试 {attempt}/{config.max_retries}): {error}，{delay:.2f}秒后重试")
            await clock.sleep(delay)

    # max_retries 为负数时循环体不会执行
    raise ValueError("max_retries 不能为负数")


def retry_on_error(
        max_retries: int = 3,
        initial_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_delay: float = 30.0,
        retryable_errors: Tuple[Type[BaseException], ...] = (Exception,),
        clock: Optional[Clock] = None
):
    """重试装饰器，用于异步函数"""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"retry_on_error 只能装饰异步函数: {func.__name__}")

        @wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            def log_retry(error: Exception, attempt: int):
                logger.info(f"函数 {func.__name__} 第 {attempt} 次重试，原因: {error}")

            return await retry_with_backoff(
                lambda: func(*args, **kwargs),
                max_retries=max_retries,
                initial_delay=initial_delay,
                backoff_multiplier=backoff_multiplier,
                max_delay=max_delay,
                on_retry=log_retry,
                retryable_errors=retryable_errors,
                clock=clock
            )

        return async_wrapper

    return decorator
