"""测试通知渠道"""

import asyncio

import aiohttp
import pytest
from unittest.mock import AsyncMock, Mock, patch

from api_shield.alerts.base import NotificationDispatcher
from api_shield.alerts.router import NotificationRouter
from api_shield.alerts.webhook import WebhookDispatcher
from api_shield.models.records import Alert, AlertSeverity
from api_shield.utils.clock import ManualClock
from api_shield.utils.exceptions import AlertConfigError, AlertSendError


def make_alert(severity=AlertSeverity.WARNING, **kwargs):
    return Alert(config_id='high-error-rate', title='告警: 高错误率',
                 message='错误率过高. 当前值: 0.5, 阈值: 0.1', severity=severity,
                 triggered_at=1_700_000_000.0,
                 metadata={'metric_name': 'error_rate', 'metric_value': 0.5}, **kwargs)


def mock_http(status=200, text='ok'):
    """构造 aiohttp.ClientSession 的替身，request 返回给定响应"""
    response = Mock()
    response.status = status
    response.text = AsyncMock(return_value=text)

    request_context = AsyncMock()
    request_context.__aenter__.return_value = response
    request_context.__aexit__.return_value = False

    session = Mock()
    session.request = Mock(return_value=request_context)

    session_context = AsyncMock()
    session_context.__aenter__.return_value = session
    session_context.__aexit__.return_value = False
    return session_context, session


class RecordingDispatcher(NotificationDispatcher):
    """记录收到告警的测试渠道"""

    def __init__(self, name, result=True, error=None):
        super().__init__(name)
        self.result = result
        self.error = error
        self.received = []

    async def send(self, alert):
        self.received.append(alert)
        if self.error:
            raise self.error
        return self.result


class TestWebhookDispatcher:
    """测试WebhookDispatcher类"""

    def setup_method(self):
        self.clock = ManualClock()
        self.config = {'url': 'https://hooks.example.com/alert', 'max_retries': 2, 'retry_delay': 1.0}

    def test_invalid_config(self):
        with pytest.raises(AlertConfigError):
            WebhookDispatcher('hook', {})
        with pytest.raises(AlertConfigError):
            WebhookDispatcher('hook', {'url': 'not-a-url'})
        with pytest.raises(AlertConfigError):
            WebhookDispatcher('hook', {'url': 'https://x.com', 'method': 'GET'})
        with pytest.raises(AlertConfigError):
            WebhookDispatcher('hook', {'url': 'https://x.com', 'max_retries': -1})

    def test_channel_type(self):
        assert WebhookDispatcher('hook', self.config).channel_type == 'webhook'

    @pytest.mark.asyncio
    async def test_send_success(self):
        session_context, session = mock_http()
        dispatcher = WebhookDispatcher('hook', self.config, self.clock)
        alert = make_alert()

        with patch('api_shield.alerts.webhook.aiohttp.ClientSession', return_value=session_context):
            assert await dispatcher.send(alert) is True

        method, url = session.request.call_args.args
        assert (method, url) == ('POST', 'https://hooks.example.com/alert')
        assert session.request.call_args.kwargs['json']['title'] == '告警: 高错误率'
        assert alert.notifications_sent == [{'channel': 'hook', 'sent_at': self.clock.time()}]

    @pytest.mark.asyncio
    async def test_send_retries_then_fails(self):
        session_context, session = mock_http(status=500, text='error')
        dispatcher = WebhookDispatcher('hook', self.config, self.clock)
        alert = make_alert()

        with patch('api_shield.alerts.webhook.aiohttp.ClientSession', return_value=session_context):
            with pytest.raises(AlertSendError, match="HTTP状态码异常: 500"):
                await dispatcher.send(alert)

        assert session.request.call_count == 3
        assert self.clock.sleeps == [1.0, 2.0]
        assert alert.notifications_sent == []

    @pytest.mark.asyncio
    async def test_any_2xx_status_is_success(self):
        session_context, _ = mock_http(status=204, text='')
        dispatcher = WebhookDispatcher('hook', dict(self.config, max_retries=0), self.clock)

        with patch('api_shield.alerts.webhook.aiohttp.ClientSession', return_value=session_context):
            assert await dispatcher.send(make_alert()) is True

    @pytest.mark.asyncio
    async def test_client_error_wrapped(self):
        session_context, session = mock_http()
        session.request.side_effect = aiohttp.ClientConnectionError('refused')
        dispatcher = WebhookDispatcher('hook', dict(self.config, max_retries=0), self.clock)

        with patch('api_shield.alerts.webhook.aiohttp.ClientSession', return_value=session_context):
            with pytest.raises(AlertSendError, match="HTTP请求失败"):
                await dispatcher.send(make_alert())

    @pytest.mark.asyncio
    async def test_timeout_wrapped(self):
        session_context, session = mock_http()
        session.request.side_effect = asyncio.TimeoutError()
        dispatcher = WebhookDispatcher('hook', dict(self.config, max_retries=0), self.clock)

        with patch('api_shield.alerts.webhook.aiohttp.ClientSession', return_value=session_context):
            with pytest.raises(AlertSendError, match="超时"):
                await dispatcher.send(make_alert())

    def test_json_template(self):
        template = '{"msgtype": "text", "text": {"content": "{{title}}: {{message}} ({{metadata_metric_value}})"}}'
        dispatcher = WebhookDispatcher('hook', dict(self.config, template=template))

        payload = dispatcher._prepare_payload(make_alert())

        assert payload == {'json': {'msgtype': 'text', 'text': {
            'content': '告警: 高错误率: 错误率过高. 当前值: 0.5, 阈值: 0.1 (0.5)'}}}

    def test_json_template_escapes_values(self):
        dispatcher = WebhookDispatcher('hook', dict(self.config, template='{"content": "{{title}}"}'))
        alert = make_alert()
        alert.title = 'say "hi"\nnow'

        payload = dispatcher._prepare_payload(alert)

        assert payload == {'json': {'content': 'say "hi"\nnow'}}

    def test_text_template(self):
        dispatcher = WebhookDispatcher('hook', dict(self.config, template='[{{severity}}] {{title}}'))

        assert dispatcher._prepare_payload(make_alert()) == {'data': '[warning] 告警: 高错误率'}


class TestNotificationRouter:
    """测试NotificationRouter类"""

    def test_from_config(self):
        router = NotificationRouter.from_config([
            {'name': 'ops', 'type': 'webhook', 'url': 'https://a.example.com', 'min_severity': 'error'},
            {'name': 'all', 'type': 'http', 'url': 'https://b.example.com'},
        ], ManualClock())

        assert router.get_channel_names() == ['ops', 'all']
        assert [d.name for d in router.channels_for(AlertSeverity.WARNING)] == ['all']
        assert [d.name for d in router.channels_for(AlertSeverity.CRITICAL)] == ['ops', 'all']

    def test_from_config_unsupported_type(self):
        with pytest.raises(AlertConfigError, match="不支持的通知渠道类型"):
            NotificationRouter.from_config([{'name': 'mail', 'type': 'email', 'url': 'x'}])

    def test_from_config_invalid_severity(self):
        with pytest.raises(AlertConfigError, match="min_severity"):
            NotificationRouter.from_config([
                {'name': 'ops', 'type': 'webhook', 'url': 'https://a.example.com', 'min_severity': 'loud'}])

    def test_add_channel_rejects_non_dispatcher(self):
        with pytest.raises(AlertConfigError):
            NotificationRouter().add_channel(object())

    def test_remove_channel(self):
        router = NotificationRouter()
        router.add_channel(RecordingDispatcher('a'))

        assert router.remove_channel('a') is True
        assert router.remove_channel('a') is False
        assert router.get_channel_names() == []

    @pytest.mark.asyncio
    async def test_send_respects_min_severity(self):
        router = NotificationRouter()
        low = RecordingDispatcher('low')
        high = RecordingDispatcher('high')
        router.add_channel(low)
        router.add_channel(high, AlertSeverity.CRITICAL)

        assert await router.send(make_alert(AlertSeverity.ERROR)) is True

        assert len(low.received) == 1
        assert high.received == []

    @pytest.mark.asyncio
    async def test_send_no_channels(self):
        router = NotificationRouter()
        router.add_channel(RecordingDispatcher('high'), AlertSeverity.CRITICAL)

        assert await router.send(make_alert(AlertSeverity.INFO)) is False

    @pytest.mark.asyncio
    async def test_one_failing_channel_does_not_block_others(self):
        router = NotificationRouter()
        broken = RecordingDispatcher('broken', error=AlertSendError('down'))
        healthy = RecordingDispatcher('healthy')
        router.add_channel(broken)
        router.add_channel(healthy)

        assert await router.send(make_alert()) is True
        assert len(healthy.received) == 1

    @pytest.mark.asyncio
    async def test_all_channels_fail(self):
        router = NotificationRouter()
        router.add_channel(RecordingDispatcher('a', result=False))
        router.add_channel(RecordingDispatcher('b', error=RuntimeError('x')))

        assert await router.send(make_alert()) is False
