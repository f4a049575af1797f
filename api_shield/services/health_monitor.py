"""健康监控模块

周期性地并发执行所有组件探测，把结果写入健康记录存储。
单个探测失败只影响该组件，不影响本轮其他组件。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..checkers.base import BaseProbe
from ..checkers.factory import probe_factory
from ..models.records import HealthRecord
from ..resilience.circuit_breaker import CircuitBreakerRegistry
from ..utils.clock import Clock, system_clock
from .stores import HealthStore

DEFAULT_HEALTH_INTERVAL = 60


class HealthMonitor:
    """健康监控器，HealthStore 的唯一写入者"""

    def __init__(self, probes: Optional[List[BaseProbe]] = None,
                 health_store: Optional[HealthStore] = None,
                 clock: Optional[Clock] = None,
                 max_concurrent_checks: int = 10):
        """
        初始化健康监控器

        Args:
            probes: 探测器列表
            health_store: 健康记录存储
            clock: 时钟
            max_concurrent_checks: 最大并发探测数量
        """
        self.clock = clock or system_clock
        self.health_store = health_store or HealthStore()
        self.max_concurrent_checks = max_concurrent_checks
        self.probes: Dict[str, BaseProbe] = {}
        self.logger = logging.getLogger(__name__)

        for probe in probes or []:
            self.add_probe(probe)

    def add_probe(self, probe: BaseProbe):
        self.probes[probe.name] = probe

    def configure_probes(self, components_config: Dict[str, Dict[str, Any]],
                         breaker_registry: Optional[CircuitBreakerRegistry] = None):
        """
        按配置创建探测器，替换现有的探测器

        Args:
            components_config: 组件名到探测配置的映射
            breaker_registry: circuit_breaker 类型探测器读取的熔断器注册表

        Raises:
            CheckerError: 探测器创建失败
        """
        probes: Dict[str, BaseProbe] = {}
        for component, config in components_config.items():
            dependencies: Dict[str, Any] = {'clock': self.clock}
            if config.get('type') == 'circuit_breaker':
                dependencies['registry'] = breaker_registry

            try:
                probes[component] = probe_factory.create_probe(component, config, **dependencies)
            except Exception as e:
                self.logger.error(f"配置组件 {component} 失败: {e}")
                raise

            self.logger.info(f"配置组件 {component}: 类型={config.get('type')}")

        self.probes = probes

    async def _run_probe(self, probe: BaseProbe, semaphore: asyncio.Semaphore) -> Optional[HealthRecord]:
        async with semaphore:
            try:
                record = await probe.check()
            except Exception as e:
                self.logger.error(f"探测组件 {probe.name} 时发生异常: {e}")
                return None

        self.health_store.upsert(record)
        self.logger.debug(
            f"组件 {probe.name} 检查完成: {record.status.value}, 错误率: {record.error_rate:.2f}")
        return record

    async def run_health_checks(self) -> Dict[str, Optional[HealthRecord]]:
        """
        并发执行所有探测

        Returns:
            Dict[str, Optional[HealthRecord]]: 组件名到健康记录的映射，探测失败的组件为 None
        """
        if not self.probes:
            return {}

        semaphore = asyncio.Semaphore(self.max_concurrent_checks)
        names = list(self.probes.keys())
        results = await asyncio.gather(
            *(self._run_probe(self.probes[name], semaphore) for name in names),
            return_exceptions=True
        )

        records: Dict[str, Optional[HealthRecord]] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                self.logger.error(f"检查组件 {name} 异常: {result}")
                records[name] = None
            else:
                records[name] = result

        failed = sum(1 for record in records.values() if record is None)
        self.logger.info(f"健康检查完成: {len(records) - failed}/{len(records)} 个组件成功")
        return records

    def get_health_summary(self) -> Dict[str, Any]:
        """获取当前各组件健康状态汇总"""
        records = self.health_store.all()
        by_status: Dict[str, int] = {}
        for record in records.values():
            by_status[record.status.value] = by_status.get(record.status.value, 0) + 1

        return {
            'total_components': len(self.probes),
            'by_status': by_status,
            'components': {name: record.to_dict() for name, record in records.items()},
        }
