"""告警评估与通知模块"""

from .base import NotificationDispatcher
from .engine import AlertEngine, parse_alert_configs
from .router import NotificationRouter
from .webhook import WebhookDispatcher

__all__ = ['NotificationDispatcher', 'AlertEngine', 'parse_alert_configs',
           'NotificationRouter', 'WebhookDispatcher']
