"""通知渠道基类"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..models.records import Alert


class NotificationDispatcher(ABC):
    """通知渠道抽象基类"""

    def __init__(self, name: str, config: Optional[Dict[str, Any]] = None):
        """
        初始化通知渠道

        Args:
            name: 渠道名称
            config: 渠道配置参数
        """
        self.name = name
        self.config = config or {}
        self.channel_type = self.__class__.__name__.replace('Dispatcher', '').lower()

    @abstractmethod
    async def send(self, alert: Alert) -> bool:
        """
        发送告警通知

        Args:
            alert: 已触发的告警

        Returns:
            bool: 发送是否成功
        """
        pass

    def validate_config(self) -> bool:
        return True

    def get_timeout(self) -> int:
        """
        获取超时时间配置

        Returns:
            int: 超时时间（秒）
        """
        return self.config.get('timeout', 30)
