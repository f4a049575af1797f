"""按服务、按键的限流器

每个 (服务, 键) 对应一个限流桶，桶内维护计数窗口、最小请求间隔
以及因上游 429 响应进入的封禁状态。
"""

import logging
import threading
from typing import Any, Dict, List, Optional

from ..models.records import RateLimiterState, ServiceConfig
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import ConfigError

DEFAULT_KEY = "default"

# 未提供 Retry-After 时的默认封禁时长（秒）
DEFAULT_BLOCK_SECONDS = 60.0

# 等待时间下限，避免在窗口边界上零时长自旋
_MIN_WAIT = 0.001

DEFAULT_SERVICE_CONFIGS: Dict[str, ServiceConfig] = {
    'coingecko': ServiceConfig('coingecko', requests_per_minute=30, min_delay=2.0,
                               max_retries=3, backoff_multiplier=2.0),
    'geckoterminal': ServiceConfig('geckoterminal', requests_per_minute=120, min_delay=0.5,
                                   max_retries=3, backoff_multiplier=1.5),
    'etherscan': ServiceConfig('etherscan', requests_per_second=5, min_delay=0.2,
                               max_retries=3, backoff_multiplier=2.0),
    'bscscan': ServiceConfig('bscscan', requests_per_second=5, min_delay=0.2,
                             max_retries=3, backoff_multiplier=2.0),
    'solscan': ServiceConfig('solscan', requests_per_second=10, min_delay=0.1,
                             max_retries=3, backoff_multiplier=1.5),
}


class _Bucket:
    """限流桶：状态及其互斥锁"""

    __slots__ = ('state', 'lock')

    def __init__(self, state: RateLimiterState):
        self.state = state
        self.lock = threading.Lock()


class RateLimiter:
    """单个服务的限流器

    桶状态的读改写都在桶锁内完成，锁不会跨越 await，
    因此既可以在协程中并发使用，也可以跨线程调用。
    """

    def __init__(self, config: ServiceConfig, clock: Optional[Clock] = None):
        """
        初始化限流器

        Args:
            config: 服务限流配置
            clock: 时钟，默认使用系统时钟
        """
        self.config = config
        self.name = config.name
        self._clock = clock or system_clock
        self._buckets: Dict[str, _Bucket] = {}
        self._buckets_lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    @property
    def clock(self) -> Clock:
        return self._clock

    def _get_bucket(self, key: str) -> _Bucket:
        """获取限流桶，不存在时以当前时间为窗口起点创建"""
        with self._buckets_lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(RateLimiterState(window_start=self._clock.time()))
                self._buckets[key] = bucket
            return bucket

    def _evaluate(self, state: RateLimiterState, now: float) -> bool:
        """在桶锁内判断是否允许请求，并清理过期的封禁与窗口"""
        if state.is_blocked and now < state.block_until:
            return False

        if state.is_blocked:
            state.is_blocked = False
            state.block_until = 0.0
            self.logger.info(f"限流器 {self.name} 封禁已解除")

        if now - state.window_start > self.config.window_duration:
            state.window_start = now
            state.request_count = 0

        if state.request_count >= self.config.max_requests:
            return False

        if now - state.last_request_time < self.config.min_delay:
            return False

        return True

    def _wait_time(self, state: RateLimiterState, now: float) -> float:
        """计算距离下一个可用请求槽的等待时间"""
        if state.is_blocked and now < state.block_until:
            return max(state.block_until - now, _MIN_WAIT)

        min_delay = self.config.min_delay
        wait_time = max(min_delay, state.last_request_time + min_delay - now)

        if state.request_count >= self.config.max_requests:
            # 窗口在超过 window_duration 之后才会滚动
            window_roll = state.window_start + self.config.window_duration - now + _MIN_WAIT
            wait_time = max(wait_time, window_roll)

        return max(wait_time, _MIN_WAIT)

    def can_make_request(self, key: str = DEFAULT_KEY) -> bool:
        """
        判断当前是否可以发起请求

        Args:
            key: 限流键

        Returns:
            bool: 是否允许请求
        """
        bucket = self._get_bucket(key)
        with bucket.lock:
            return self._evaluate(bucket.state, self._clock.time())

    async def wait_for_slot(self, key: str = DEFAULT_KEY) -> None:
        """
        挂起直到可以发起请求

        按精确的剩余时间挂起而不是固定间隔轮询，醒来后重新检查，
        因为其他调用者可能已经占用了这个槽。
        """
        while True:
            # 每轮重新获取桶，reset 之后不会继续等待旧状态
            bucket = self._get_bucket(key)
            with bucket.lock:
                now = self._clock.time()
                if self._evaluate(bucket.state, now):
                    return
                wait_time = self._wait_time(bucket.state, now)

            self.logger.debug(f"限流器 {self.name}[{key}] 等待 {wait_time:.3f}秒")
            await self._clock.sleep(wait_time)

    def try_acquire(self, key: str = DEFAULT_KEY) -> bool:
        """
        原子地检查并登记一次请求

        Returns:
            bool: 是否成功占用请求槽
        """
        bucket = self._get_bucket(key)
        with bucket.lock:
            now = self._clock.time()
            if not self._evaluate(bucket.state, now):
                return False
            bucket.state.last_request_time = now
            bucket.state.request_count += 1
            return True

    async def acquire(self, key: str = DEFAULT_KEY) -> None:
        """等待请求槽并登记请求，与并发调用者竞争失败时继续等待"""
        while True:
            await self.wait_for_slot(key)
            if self.try_acquire(key):
                return

    def record_request(self, key: str = DEFAULT_KEY) -> None:
        """登记一次已发出的请求"""
        bucket = self._get_bucket(key)
        with bucket.lock:
            bucket.state.last_request_time = self._clock.time()
            bucket.state.request_count += 1

    def record_rate_limit_error(self, key: str = DEFAULT_KEY,
                                retry_after: Optional[float] = None) -> None:
        """
        登记上游限流响应，封禁该限流桶

        Args:
            key: 限流键
            retry_after: 上游建议的重试间隔（秒），缺省封禁60秒
        """
        block_seconds = retry_after if retry_after else DEFAULT_BLOCK_SECONDS
        bucket = self._get_bucket(key)
        with bucket.lock:
            bucket.state.is_blocked = True
            bucket.state.block_until = self._clock.time() + block_seconds

        self.logger.warning(f"限流器 {self.name}[{key}] 收到上游限流响应，封禁 {block_seconds}秒")

    def get_stats(self, key: str = DEFAULT_KEY) -> Dict[str, Any]:
        """
        获取限流桶统计信息

        Returns:
            Dict[str, Any]: 窗口内请求数、是否封禁、距离下次可请求的秒数
        """
        bucket = self._get_bucket(key)
        with bucket.lock:
            state = bucket.state
            now = self._clock.time()
            is_blocked = state.is_blocked and now < state.block_until
            if is_blocked:
                time_until_next = state.block_until - now
            else:
                time_until_next = max(0.0, state.last_request_time + self.config.min_delay - now)

            return {
                'service': self.name,
                'key': key,
                'requests_in_window': state.request_count,
                'max_requests': self.config.max_requests,
                'is_blocked': is_blocked,
                'time_until_next_request': time_until_next,
            }

    def reset(self, key: str = DEFAULT_KEY) -> None:
        """重置指定键的限流状态"""
        with self._buckets_lock:
            self._buckets.pop(key, None)
        self.logger.info(f"限流器 {self.name}[{key}] 已重置")

    def reset_all(self) -> None:
        """重置所有键的限流状态"""
        with self._buckets_lock:
            self._buckets.clear()
        self.logger.info(f"限流器 {self.name} 全部状态已重置")

    def keys(self) -> List[str]:
        """返回已创建的限流键"""
        with self._buckets_lock:
            return list(self._buckets.keys())


class RateLimiterRegistry:
    """限流器注册表，每个服务一个限流器"""

    def __init__(self, configs: Optional[Dict[str, ServiceConfig]] = None,
                 clock: Optional[Clock] = None):
        """
        初始化注册表

        Args:
            configs: 服务名到限流配置的映射，默认使用内置配置
            clock: 所有限流器共用的时钟
        """
        self._clock = clock or system_clock
        self._limiters: Dict[str, RateLimiter] = {}
        self.logger = logging.getLogger(__name__)

        if configs is None:
            configs = DEFAULT_SERVICE_CONFIGS

        for config in configs.values():
            self.register(config)

    @classmethod
    def from_config(cls, rate_limits: Optional[Dict[str, Dict[str, Any]]],
                    clock: Optional[Clock] = None) -> 'RateLimiterRegistry':
        """
        以内置配置为基础，叠加配置文件中的 rate_limits 段

        Raises:
            ConfigError: 限流配置无效
        """
        configs = dict(DEFAULT_SERVICE_CONFIGS)
        for service_name, data in (rate_limits or {}).items():
            try:
                configs[service_name] = ServiceConfig.from_dict(service_name, data)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"服务 {service_name} 的限流配置无效: {e}")
        return cls(configs, clock)

    def register(self, config: ServiceConfig) -> RateLimiter:
        """注册服务限流器"""
        limiter = RateLimiter(config, self._clock)
        self._limiters[config.name] = limiter
        self.logger.info(
            f"注册限流器: {config.name}, 上限 {config.max_requests}次/{config.window_duration:g}秒, "
            f"最小间隔 {config.min_delay}秒")
        return limiter

    def get(self, service: str) -> RateLimiter:
        """
        获取服务限流器

        Raises:
            ConfigError: 服务未注册
        """
        limiter = self._limiters.get(service)
        if limiter is None:
            raise ConfigError(f"服务 {service} 未配置限流器")
        return limiter

    def __contains__(self, service: str) -> bool:
        return service in self._limiters

    def services(self) -> List[str]:
        return list(self._limiters.keys())

    def reset_all(self) -> None:
        for limiter in self._limiters.values():
            limiter.reset_all()

    def get_stats(self) -> Dict[str, Dict[str, Any]]:
        """获取所有服务默认键的统计信息"""
        return {name: limiter.get_stats() for name, limiter in self._limiters.items()}
