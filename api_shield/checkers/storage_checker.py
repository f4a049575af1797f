"""存储往返延迟探测器"""

import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import redis.asyncio as redis

from .base import BaseProbe
from .factory import register_probe
from ..models.records import HealthRecord, HealthStatus
from ..utils.clock import Clock

DEFAULT_LATENCY_CEILING = 1.0


@register_probe('storage')
class StorageProbe(BaseProbe):
    """存储探测器

    计时执行一次存储往返，延迟低于 latency_ceiling 为 healthy，否则为 degraded。
    往返本身抛出的异常不在这里捕获，由健康监控记录。
    """

    def __init__(self, name: str, config: Dict[str, Any], clock: Optional[Clock] = None,
                 round_trip: Optional[Callable[[], Awaitable[Any]]] = None):
        """
        Args:
            round_trip: 一次存储往返操作，子类可以覆盖 round_trip 方法代替
        """
        super().__init__(name, config, clock)
        self._round_trip = round_trip

    @property
    def latency_ceiling(self) -> float:
        return float(self.config.get('latency_ceiling', DEFAULT_LATENCY_CEILING))

    def validate_config(self) -> bool:
        ceiling = self.config.get('latency_ceiling', DEFAULT_LATENCY_CEILING)
        return isinstance(ceiling, (int, float)) and ceiling > 0

    async def round_trip(self) -> Any:
        if self._round_trip is None:
            raise NotImplementedError(f"存储探测器 {self.name} 未提供往返操作")
        return await self._round_trip()

    async def check(self) -> HealthRecord:
        start_time = self.clock.time()
        await self.round_trip()
        response_time = self.clock.time() - start_time

        if response_time < self.latency_ceiling:
            status = HealthStatus.HEALTHY
        else:
            status = HealthStatus.DEGRADED
            self.logger.warning(
                f"存储 {self.name} 响应缓慢: {response_time:.3f}秒 (上限 {self.latency_ceiling}秒)")

        return HealthRecord(
            component=self.name,
            status=status,
            last_check=self.clock.time(),
            response_time=response_time,
            error_rate=0.0,
            metadata={'type': self.config.get('type', 'storage')}
        )


@register_probe('redis')
class RedisStorageProbe(StorageProbe):
    """以 Redis SET/GET/DEL 作为往返操作的存储探测器"""

    def validate_config(self) -> bool:
        if 'host' not in self.config:
            return False

        port = self.config.get('port', 6379)
        if not isinstance(port, int) or port <= 0 or port > 65535:
            return False

        database = self.config.get('database', 0)
        if not isinstance(database, int) or database < 0:
            return False

        return super().validate_config()

    def _create_client(self) -> redis.Redis:
        return redis.Redis(
            host=self.config.get('host', 'localhost'),
            port=self.config.get('port', 6379),
            db=self.config.get('database', 0),
            password=self.config.get('password'),
            socket_timeout=self.get_timeout(),
            socket_connect_timeout=self.get_timeout(),
            decode_responses=True
        )

    async def round_trip(self) -> Any:
        client = self._create_client()
        test_key = f"health_check:{self.name}:{uuid.uuid4().hex}"
        test_value = "health_check_value"
        try:
            await client.set(test_key, test_value, ex=60)
            retrieved_value = await client.get(test_key)
            await client.delete(test_key)
            if retrieved_value != test_value:
                raise ValueError(f"Redis SET/GET 校验失败，期望值: {test_value}, 实际值: {retrieved_value}")
            return retrieved_value
        finally:
            await client.aclose()
