"""Webhook 通知渠道"""

import asyncio
import json
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import aiohttp

from .base import NotificationDispatcher
from ..models.records import Alert
from ..resilience.retry import retry_with_backoff
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import AlertConfigError, AlertSendError
from ..utils.log_manager import get_logger


class WebhookDispatcher(NotificationDispatcher):
    """通过 HTTP 请求发送告警通知，失败时按指数退避重试"""

    def __init__(self, name: str, config: Dict[str, Any], clock: Optional[Clock] = None):
        """
        初始化 Webhook 渠道

        Args:
            name: 渠道名称
            config: 渠道配置
            clock: 重试等待和发送时间使用的时钟

        Raises:
            AlertConfigError: 配置无效
        """
        super().__init__(name, config)
        self.clock = clock or system_clock
        self.logger = get_logger(f'alerter.webhook.{self.name}')

        self.max_retries = config.get('max_retries', 3)
        self.retry_delay = config.get('retry_delay', 1.0)
        self.retry_backoff = config.get('retry_backoff', 2.0)

        self.url = config.get('url', '')
        self.method = config.get('method', 'POST').upper()
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')

        if not self.validate_config():
            raise AlertConfigError(f"Webhook 渠道配置无效: {name}", alert_name=name)

    def validate_config(self) -> bool:
        if not self.url:
            self.logger.error(f"Webhook 渠道 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if not parsed_url.scheme or not parsed_url.netloc:
            self.logger.error(f"Webhook 渠道 {self.name} URL格式无效: {self.url}")
            return False

        if self.method not in ('POST', 'PUT', 'PATCH'):
            self.logger.error(f"Webhook 渠道 {self.name} 不支持的HTTP方法: {self.method}")
            return False

        if self.max_retries < 0 or self.retry_delay < 0:
            self.logger.error(f"Webhook 渠道 {self.name} 重试配置不能为负数")
            return False

        return True

    async def send(self, alert: Alert) -> bool:
        """
        发送告警通知，成功后在 alert.notifications_sent 中登记

        Raises:
            AlertSendError: 所有重试均失败
        """
        self.logger.info(f"开始发送告警通知: {alert.title}")

        def log_retry(error: Exception, attempt: int):
            self.logger.warning(
                f"Webhook 渠道 {self.name} 发送失败 (尝试 {attempt}/{self.max_retries + 1}): {error}")

        try:
            await retry_with_backoff(
                lambda: self._send_request(alert),
                max_retries=self.max_retries,
                initial_delay=self.retry_delay,
                backoff_multiplier=self.retry_backoff,
                on_retry=log_retry,
                clock=self.clock
            )
        except AlertSendError:
            self.logger.error(f"Webhook 渠道 {self.name} 所有重试均失败，放弃发送告警")
            raise

        alert.notifications_sent.append({'channel': self.name, 'sent_at': self.clock.time()})
        self.logger.info(f"Webhook 渠道 {self.name} 发送成功: {alert.title}")
        return True

    async def _send_request(self, alert: Alert) -> None:
        payload = self._prepare_payload(alert)
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(self.method, self.url, headers=self.headers,
                                           **payload) as response:
                    if not 200 <= response.status < 300:
                        response_text = await response.text()
                        raise AlertSendError(
                            f"HTTP状态码异常: {response.status}, 响应: {response_text[:200]}",
                            alert_name=self.name)

        except aiohttp.ClientError as e:
            raise AlertSendError(f"HTTP请求失败: {e}", alert_name=self.name, cause=e)
        except asyncio.TimeoutError as e:
            raise AlertSendError("HTTP请求超时", alert_name=self.name, cause=e)

    def _prepare_payload(self, alert: Alert) -> Dict[str, Any]:
        if not self.template:
            return {'json': alert.to_dict()}

        rendered = self._render_template(self.template, alert)
        try:
            return {'json': json.loads(rendered)}
        except json.JSONDecodeError:
            return {'data': rendered}

    def _render_template(self, template_str: str, alert: Alert) -> str:
        """使用 {{variable}} 语法渲染模板，JSON 模板中的值会被转义"""
        template_vars = {
            'title': alert.title,
            'message': alert.message,
            'severity': alert.severity.value,
            'status': alert.status.value,
            'config_id': alert.config_id,
            'alert_id': alert.id,
            'triggered_at': datetime.fromtimestamp(alert.triggered_at).strftime('%Y-%m-%d %H:%M:%S'),
        }
        for key, value in alert.metadata.items():
            template_vars[f'metadata_{key}'] = value

        stripped = template_str.strip()
        is_json_template = stripped.startswith('{') and stripped.endswith('}')

        rendered = template_str
        for key, value in template_vars.items():
            safe_value = str(value)
            if is_json_template:
                # json.dumps 的结果去掉首尾引号即为转义后的字符串内容
                safe_value = json.dumps(safe_value, ensure_ascii=False)[1:-1]
            rendered = rendered.replace(f'{{{{{key}}}}}', safe_value)

        return rendered
