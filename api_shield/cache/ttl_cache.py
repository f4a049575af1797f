"""TTL 结果缓存

带过期时间的键值缓存：读取时惰性过期、按通配符模式批量失效、
定期清理过期条目，并提供读穿透的查询包装器。
"""

import asyncio
import json
import logging
import re
from functools import wraps
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Pattern, Set, TypeVar

from ..models.records import CacheEntry
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import CachePatternError

V = TypeVar('V')
R = TypeVar('R')

logger = logging.getLogger(__name__)

# 各类查询结果的缓存时间（秒）
CACHE_TTL = {
    'token_price': 60,
    'market_data': 5 * 60,
    'trending': 10 * 60,
    'user_balance': 30,
    'gas_price': 10,
}

KEY_DELIMITER = ':'

_UNSUPPORTED_GLOB_CHARS = set('[]{}')

_MISSING = object()


def compile_pattern(pattern: str) -> Pattern:
    """
    把通配符模式编译为完整匹配的正则表达式

    * 匹配零个或多个任意字符，? 匹配恰好一个字符，其余字符按字面匹配。

    Raises:
        CachePatternError: 模式为空、不是字符串或包含不支持的通配语法
    """
    if not isinstance(pattern, str) or not pattern:
        raise CachePatternError("缓存失效模式必须是非空字符串", pattern=pattern)

    unsupported = _UNSUPPORTED_GLOB_CHARS.intersection(pattern)
    if unsupported:
        raise CachePatternError(
            f"缓存失效模式包含不支持的字符: {''.join(sorted(unsupported))}", pattern=pattern)

    parts = []
    for char in pattern:
        if char == '*':
            parts.append('.*')
        elif char == '?':
            parts.append('.')
        else:
            parts.append(re.escape(char))
    return re.compile(''.join(parts), re.DOTALL)


def _estimate_size(value: Any) -> int:
    """按 JSON 序列化长度估算条目大小"""
    try:
        return len(json.dumps(value, ensure_ascii=False, default=str))
    except (TypeError, ValueError):
        return len(repr(value))


class TTLCache(Generic[V]):
    """带过期时间的键值缓存

    所有方法都是协程，表级锁只在内存操作期间持有。
    读到过期条目时返回缺省值，并调度一个后台任务删除它。
    """

    def __init__(self, default_ttl: float = 60.0, clock: Optional[Clock] = None,
                 max_entries: Optional[int] = None):
        """
        初始化缓存

        Args:
            default_ttl: 默认过期时间（秒）
            clock: 时钟，默认使用系统时钟
            max_entries: 最大条目数，达到上限时淘汰最早创建的条目
        """
        if default_ttl <= 0:
            raise ValueError("default_ttl 必须大于0")
        if max_entries is not None and max_entries <= 0:
            raise ValueError("max_entries 必须大于0")

        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock or system_clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._lock = asyncio.Lock()
        self._pending_tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._entries)

    async def set(self, key: str, value: V, ttl: Optional[float] = None) -> None:
        """
        写入缓存，已存在时刷新值和过期时间并保留创建时间

        Args:
            key: 缓存键
            value: 缓存值
            ttl: 过期时间（秒），缺省使用 default_ttl
        """
        async with self._lock:
            now = self._clock.time()
            expires_at = now + (ttl or self.default_ttl)
            existing = self._entries.get(key)

            if existing is not None:
                existing.value = value
                existing.expires_at = expires_at
                existing.updated_at = now
                return

            if self.max_entries is not None and len(self._entries) >= self.max_entries:
                self._evict_oldest()

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                expires_at=expires_at,
                created_at=now,
                updated_at=now
            )

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda entry: entry.created_at)
        del self._entries[oldest.key]
        logger.debug(f"缓存已满，淘汰最早的条目: {oldest.key}")

    async def get(self, key: str, default: Any = None) -> Any:
        """
        读取缓存

        Args:
            key: 缓存键
            default: 未命中或已过期时的返回值

        Returns:
            缓存值或 default
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default

            if entry.is_expired(self._clock.time()):
                self._schedule_expiry(key)
                return default

            return entry.value

    def _schedule_expiry(self, key: str) -> None:
        """调度后台删除过期条目"""
        task = asyncio.get_running_loop().create_task(self._delete_if_expired(key))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _delete_if_expired(self, key: str) -> None:
        async with self._lock:
            entry = self._entries.get(key)
            # 调度之后条目可能已被重新写入
            if entry is not None and entry.is_expired(self._clock.time()):
                del self._entries[key]
                logger.debug(f"删除过期缓存条目: {key}")

    async def invalidate(self, key: str) -> bool:
        """
        删除指定键

        Returns:
            bool: 键是否存在
        """
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def invalidate_pattern(self, pattern: str) -> int:
        """
        删除所有匹配通配符模式的键

        遍历全部条目，只适合缓存规模较小的场景。

        Args:
            pattern: 通配符模式，例如 "price:*" 或 "price:ETH:?"

        Returns:
            int: 删除的条目数

        Raises:
            CachePatternError: 模式格式错误
        """
        regex = compile_pattern(pattern)

        async with self._lock:
            matched = [key for key in self._entries if regex.fullmatch(key)]
            for key in matched:
                del self._entries[key]

        if matched:
            logger.info(f"按模式 {pattern} 失效 {len(matched)} 个缓存条目")
        return len(matched)

    async def cleanup(self) -> int:
        """
        删除所有已过期的条目

        Returns:
            int: 删除的条目数
        """
        async with self._lock:
            now = self._clock.time()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]

        if expired:
            logger.info(f"清理过期缓存条目 {len(expired)} 个")
        return len(expired)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """
        获取缓存统计信息，不修改任何条目

        Returns:
            Dict[str, Any]: 总数、过期数、有效数、平均大小、最早/最新的键、按前缀分组计数
        """
        async with self._lock:
            entries = list(self._entries.values())
            now = self._clock.time()

        stats = {
            'total': len(entries),
            'expired': 0,
            'active': 0,
            'avg_size': 0.0,
            'oldest_key': None,
            'newest_key': None,
            'by_prefix': {},
        }

        total_size = 0
        oldest: Optional[CacheEntry] = None
        newest: Optional[CacheEntry] = None

        for entry in entries:
            if entry.is_expired(now):
                stats['expired'] += 1
            else:
                stats['active'] += 1

            total_size += _estimate_size(entry.value)

            if oldest is None or entry.created_at < oldest.created_at:
                oldest = entry
            if newest is None or entry.created_at > newest.created_at:
                newest = entry

            prefix = entry.key.split(KEY_DELIMITER, 1)[0]
            stats['by_prefix'][prefix] = stats['by_prefix'].get(prefix, 0) + 1

        if entries:
            stats['avg_size'] = total_size / len(entries)
            stats['oldest_key'] = oldest.key
            stats['newest_key'] = newest.key

        return stats

    async def wait_pending(self) -> None:
        """等待后台删除和写入任务完成"""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    def track(self, task: asyncio.Task) -> None:
        """登记一个属于本缓存的后台任务"""
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)


def cached_query(cache: TTLCache, key_fn: Callable[..., str], ttl: Optional[float] = None):
    """
    读穿透查询装饰器

    命中时原样返回缓存值；未命中时执行查询并立即返回结果，
    写回缓存在后台任务中完成，调用者不会等待写入。

    Args:
        cache: 缓存实例
        key_fn: 由查询参数生成缓存键的函数
        ttl: 缓存时间（秒），缺省使用缓存的 default_ttl
    """

    def decorator(func: Callable[..., Awaitable[R]]) -> Callable[..., Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args, **kwargs) -> R:
            cache_key = key_fn(*args, **kwargs)

            cached = await cache.get(cache_key, _MISSING)
            if cached is not _MISSING:
                return cached

            result = await func(*args, **kwargs)

            task = asyncio.get_running_loop().create_task(cache.set(cache_key, result, ttl))
            task.add_done_callback(_log_write_failure(cache_key))
            cache.track(task)
            return result

        return wrapper

    return decorator


def _log_write_failure(cache_key: str) -> Callable[[asyncio.Task], None]:
    def callback(task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"写入缓存 {cache_key} 失败: {task.exception()}")
    return callback
