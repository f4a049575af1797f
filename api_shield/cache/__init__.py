"""查询结果缓存"""

from .ttl_cache import CACHE_TTL, TTLCache, cached_query, compile_pattern

__all__ = ['CACHE_TTL', 'TTLCache', 'cached_query', 'compile_pattern']
