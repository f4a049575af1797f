"""通知路由

按告警级别把告警分发到多个通知渠道，渠道之间并发发送、互不影响。
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from .base import NotificationDispatcher
from .webhook import WebhookDispatcher
from ..models.records import Alert, AlertSeverity
from ..utils.clock import Clock
from ..utils.exceptions import AlertConfigError


class NotificationRouter(NotificationDispatcher):
    """通知路由器，每个渠道只接收不低于其 min_severity 的告警"""

    def __init__(self):
        super().__init__('router')
        self._channels: List[Tuple[NotificationDispatcher, AlertSeverity]] = []
        self.logger = logging.getLogger(__name__)

    @classmethod
    def from_config(cls, notifications_config: List[Dict[str, Any]],
                    clock: Optional[Clock] = None) -> 'NotificationRouter':
        """
        按 notifications 配置段创建路由器

        Raises:
            AlertConfigError: 渠道配置无效
        """
        router = cls()
        for index, channel_config in enumerate(notifications_config or []):
            channel_type = str(channel_config.get('type', '')).lower()
            name = channel_config.get('name', f'channel_{index}')

            if channel_type not in ('webhook', 'http'):
                raise AlertConfigError(f"不支持的通知渠道类型: {channel_type}", alert_name=name)

            try:
                min_severity = AlertSeverity(channel_config.get('min_severity', 'info'))
            except ValueError:
                raise AlertConfigError(
                    f"通知渠道 {name} 的 min_severity 无效: {channel_config.get('min_severity')}",
                    alert_name=name)

            router.add_channel(WebhookDispatcher(name, channel_config, clock), min_severity)

        return router

    def add_channel(self, dispatcher: NotificationDispatcher,
                    min_severity: AlertSeverity = AlertSeverity.INFO):
        """
        添加通知渠道

        Args:
            dispatcher: 通知渠道
            min_severity: 该渠道接收的最低告警级别
        """
        if not isinstance(dispatcher, NotificationDispatcher):
            raise AlertConfigError(f"通知渠道必须继承自NotificationDispatcher: {type(dispatcher)}")

        self._channels.append((dispatcher, min_severity))
        self.logger.info(
            f"已添加通知渠道: {dispatcher.name} ({dispatcher.channel_type}), 最低级别: {min_severity.value}")

    def remove_channel(self, name: str) -> bool:
        for i, (dispatcher, _) in enumerate(self._channels):
            if dispatcher.name == name:
                self._channels.pop(i)
                self.logger.info(f"已移除通知渠道: {name}")
                return True
        return False

    def channels_for(self, severity: AlertSeverity) -> List[NotificationDispatcher]:
        """返回应当接收该级别告警的渠道"""
        return [dispatcher for dispatcher, min_severity in self._channels
                if severity.rank >= min_severity.rank]

    def get_channel_names(self) -> List[str]:
        return [dispatcher.name for dispatcher, _ in self._channels]

    async def send(self, alert: Alert) -> bool:
        """
        并发发送到所有匹配的渠道

        Returns:
            bool: 至少一个渠道发送成功
        """
        channels = self.channels_for(alert.severity)
        if not channels:
            self.logger.warning(f"没有接收 {alert.severity.value} 级别告警的通知渠道，跳过发送")
            return False

        results = await asyncio.gather(
            *(self._send_to_channel(dispatcher, alert) for dispatcher in channels),
            return_exceptions=True
        )
        return self._log_send_results(results, alert, len(channels))

    async def _send_to_channel(self, dispatcher: NotificationDispatcher,
                               alert: Alert) -> Dict[str, Any]:
        try:
            success = await dispatcher.send(alert)
            return {'channel': dispatcher.name, 'success': success, 'error': None}
        except Exception as e:
            self.logger.error(f"通知渠道 {dispatcher.name} 发送失败: {e}")
            return {'channel': dispatcher.name, 'success': False, 'error': str(e)}

    def _log_send_results(self, results: List[Any], alert: Alert, total: int) -> bool:
        success_count = 0
        failed_channels = []

        for result in results:
            if isinstance(result, BaseException):
                self.logger.error(f"告警发送异常: {result}")
                continue

            if result['success']:
                success_count += 1
            else:
                failed_channels.append(result['channel'])

        if success_count > 0:
            self.logger.info(f"告警发送成功 {success_count}/{total} 个渠道 (告警: {alert.title})")

        if failed_channels:
            self.logger.warning(f"以下渠道发送失败: {', '.join(failed_channels)} (告警: {alert.title})")

        return success_count > 0
