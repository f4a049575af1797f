"""告警规则评估引擎

按阈值、持续时间和冷却时间评估告警规则，触发的告警写入告警存储，
通知在后台任务中发送，评估本身不等待投递结果。
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Set

from .base import NotificationDispatcher
from ..models.records import Alert, AlertConfig, AlertStatus, AuditLogEntry
from ..services.stores import BaseAlertStore, BaseAuditLogStore, BaseMetricStore
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import AlertConfigError

DEFAULT_ALERT_INTERVAL = 30


def parse_alert_configs(rules: Iterable[Dict[str, Any]]) -> List[AlertConfig]:
    """
    解析配置文件中的告警规则

    Raises:
        AlertConfigError: 规则格式错误或 id 重复
    """
    configs: List[AlertConfig] = []
    seen_ids: Set[str] = set()

    for index, rule in enumerate(rules or []):
        name = rule.get('name') if isinstance(rule, dict) else None
        try:
            config = AlertConfig.from_dict(rule)
        except (KeyError, TypeError, ValueError) as e:
            raise AlertConfigError(f"第 {index + 1} 条告警规则无效: {e}", alert_name=name)

        if config.id in seen_ids:
            raise AlertConfigError(f"告警规则 id 重复: {config.id}", alert_name=config.name)
        seen_ids.add(config.id)
        configs.append(config)

    return configs


class AlertEngine:
    """告警引擎，新触发告警的唯一写入者，不写入指标"""

    def __init__(self, configs: Optional[List[AlertConfig]],
                 metric_store: BaseMetricStore,
                 alert_store: BaseAlertStore,
                 dispatcher: Optional[NotificationDispatcher] = None,
                 clock: Optional[Clock] = None,
                 audit_store: Optional[BaseAuditLogStore] = None):
        """
        初始化告警引擎

        Args:
            configs: 告警规则列表
            metric_store: 指标存储（只读）
            alert_store: 告警存储
            dispatcher: 通知渠道，为 None 时只记录告警不发送通知
            clock: 时钟
            audit_store: 审计日志存储，记录告警恢复等人工操作
        """
        self.metric_store = metric_store
        self.alert_store = alert_store
        self.dispatcher = dispatcher
        self.audit_store = audit_store
        self.clock = clock or system_clock
        self._configs: List[AlertConfig] = list(configs or [])
        self._pending_tasks: Set[asyncio.Task] = set()
        self.logger = logging.getLogger(__name__)

    @property
    def configs(self) -> List[AlertConfig]:
        return list(self._configs)

    def update_configs(self, configs: List[AlertConfig]):
        """替换告警规则，下一轮评估生效"""
        old_count = len(self._configs)
        self._configs = list(configs)
        self.logger.info(f"告警规则已更新: {old_count} -> {len(self._configs)} 条")

    async def check_alerts(self) -> List[Alert]:
        """
        评估所有启用的告警规则

        单条规则评估失败只记录日志，不影响其他规则。

        Returns:
            List[Alert]: 本轮新触发的告警
        """
        now = self.clock.time()
        triggered: List[Alert] = []

        for config in self._configs:
            if not config.enabled:
                continue

            try:
                alert = await self._evaluate(config, now)
            except Exception as e:
                self.logger.error(f"评估告警规则 {config.name} 失败: {e}")
                continue

            if alert is not None:
                triggered.append(alert)
                self._dispatch(alert)

        if triggered:
            self.logger.info(f"本轮触发 {len(triggered)} 条告警")
        return triggered

    async def _evaluate(self, config: AlertConfig, now: float) -> Optional[Alert]:
        recent = await self.alert_store.latest_for_config(config.id)
        if recent is not None and now - recent.triggered_at < config.cooldown:
            self.logger.debug(f"告警规则 {config.name} 处于冷却期，跳过")
            return None

        condition = config.condition
        metric = await self.metric_store.latest(condition.metric)
        if metric is None:
            return None

        value = metric.value
        if not condition.is_met(value):
            return None

        if condition.duration:
            samples = await self.metric_store.range(condition.metric, now - condition.duration, now)
            if not all(condition.is_met(sample.value) for sample in samples):
                return None

        message = f"当前值: {value}, 阈值: {condition.threshold}"
        if config.description:
            message = f"{config.description}. {message}"

        alert = Alert(
            config_id=config.id,
            title=f"告警: {config.name}",
            message=message,
            severity=config.severity,
            triggered_at=now,
            metadata={
                'metric_name': condition.metric,
                'metric_value': value,
                'threshold': condition.threshold,
                'operator': condition.operator.value,
            }
        )
        await self.alert_store.insert(alert)
        self.logger.warning(f"{alert.title} ({config.severity.value}): {alert.message}")
        return alert

    def _dispatch(self, alert: Alert):
        if self.dispatcher is None:
            return

        task = asyncio.get_running_loop().create_task(self._deliver(alert))
        self._pending_tasks.add(task)
        task.add_done_callback(self._pending_tasks.discard)

    async def _deliver(self, alert: Alert):
        try:
            success = await self.dispatcher.send(alert)
        except Exception as e:
            self.logger.error(f"告警 {alert.title} 通知发送失败: {e}")
            return

        if not success:
            self.logger.warning(f"告警 {alert.title} 没有成功送达任何渠道")

    async def wait_pending(self):
        """等待所有通知发送任务结束"""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    async def resolve_alert(self, alert_id: str, resolved_by: Optional[str] = None) -> bool:
        """
        把告警标记为已恢复，并写入审计日志

        Returns:
            bool: 告警是否存在且此前处于触发状态
        """
        now = self.clock.time()
        resolved = await self.alert_store.resolve(alert_id, now)
        if resolved and self.audit_store is not None:
            await self.audit_store.append(AuditLogEntry(
                action='alert_resolved',
                timestamp=now,
                actor=resolved_by,
                details={'alert_id': alert_id, 'status': AlertStatus.RESOLVED.value}
            ))
        return resolved
