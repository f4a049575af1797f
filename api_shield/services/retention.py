"""数据保留清理任务"""

import logging
from typing import Awaitable, Callable, Dict, Optional

from ..utils.clock import Clock, system_clock
from .stores import BaseAlertStore, BaseAuditLogStore, BaseMetricStore, HealthStore

DAY = 24 * 60 * 60
DEFAULT_RETENTION_INTERVAL = DAY

DEFAULT_RETENTION = {
    'metrics_days': 7,
    'audit_log_days': 30,
    'resolved_alert_days': 7,
}


class RetentionJob:
    """保留清理任务

    指标、审计日志、已恢复告警各自独立清理，
    某一项失败只记录日志，不影响其他项。重复执行是幂等的。
    """

    def __init__(self, metric_store: BaseMetricStore,
                 audit_store: BaseAuditLogStore,
                 alert_store: BaseAlertStore,
                 health_store: Optional[HealthStore] = None,
                 clock: Optional[Clock] = None,
                 metrics_days: float = DEFAULT_RETENTION['metrics_days'],
                 audit_log_days: float = DEFAULT_RETENTION['audit_log_days'],
                 resolved_alert_days: float = DEFAULT_RETENTION['resolved_alert_days']):
        self.metric_store = metric_store
        self.audit_store = audit_store
        self.alert_store = alert_store
        self.health_store = health_store
        self.clock = clock or system_clock
        self.metrics_days = metrics_days
        self.audit_log_days = audit_log_days
        self.resolved_alert_days = resolved_alert_days
        self.logger = logging.getLogger(__name__)

    async def run(self) -> Dict[str, int]:
        """
        执行一次清理

        Returns:
            Dict[str, int]: 每一项删除的记录数，失败的项为 -1
        """
        now = self.clock.time()

        async def purge_health(cutoff: float) -> int:
            return self.health_store.purge_before(cutoff)

        sweeps: Dict[str, tuple] = {
            'metrics': (self.metric_store.purge_before, now - self.metrics_days * DAY),
            'audit_logs': (self.audit_store.purge_before, now - self.audit_log_days * DAY),
            'resolved_alerts': (self.alert_store.purge_resolved_before,
                                now - self.resolved_alert_days * DAY),
        }
        if self.health_store is not None:
            sweeps['health_records'] = (purge_health, now - self.audit_log_days * DAY)

        results: Dict[str, int] = {}
        for name, (purge, cutoff) in sweeps.items():
            results[name] = await self._sweep(name, purge, cutoff)

        self.logger.info(f"数据清理完成: {results}")
        return results

    async def _sweep(self, name: str, purge: Callable[[float], Awaitable[int]],
                     cutoff: float) -> int:
        try:
            removed = await purge(cutoff)
        except Exception as e:
            self.logger.error(f"清理 {name} 失败: {e}")
            return -1

        if removed:
            self.logger.info(f"清理 {name}: 删除 {removed} 条")
        return removed
