"""测试告警引擎"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from api_shield.alerts.engine import AlertEngine, parse_alert_configs
from api_shield.models.records import AlertSeverity, AlertStatus
from api_shield.services.stores import InMemoryAlertStore, InMemoryAuditLogStore, InMemoryMetricStore
from api_shield.utils.clock import ManualClock
from api_shield.utils.exceptions import AlertConfigError, ErrorCode


def make_rule(**overrides):
    rule = {
        'name': '高错误率',
        'description': '接口错误率过高',
        'condition': {'metric': 'error_rate', 'operator': '>', 'threshold': 0.1},
        'severity': 'error',
        'cooldown': 300,
    }
    condition = overrides.pop('condition', None)
    if condition:
        rule['condition'] = dict(rule['condition'], **condition)
    rule.update(overrides)
    return rule


class TestParseAlertConfigs:
    """测试parse_alert_configs函数"""

    def test_parse(self):
        configs = parse_alert_configs([make_rule(), make_rule(name='慢', id='slow')])

        assert len(configs) == 2
        assert configs[0].id == '高错误率'
        assert configs[0].severity == AlertSeverity.ERROR
        assert configs[0].condition.threshold == 0.1
        assert configs[1].id == 'slow'

    def test_empty(self):
        assert parse_alert_configs(None) == []
        assert parse_alert_configs([]) == []

    def test_unknown_operator(self):
        with pytest.raises(AlertConfigError) as exc_info:
            parse_alert_configs([make_rule(condition={'operator': '!='})])

        assert exc_info.value.error_code == ErrorCode.ALERT_CONFIG_ERROR

    def test_missing_condition(self):
        rule = make_rule()
        del rule['condition']

        with pytest.raises(AlertConfigError, match="第 1 条告警规则无效"):
            parse_alert_configs([rule])

    def test_invalid_severity(self):
        with pytest.raises(AlertConfigError):
            parse_alert_configs([make_rule(severity='fatal')])

    def test_duplicate_id(self):
        with pytest.raises(AlertConfigError, match="id 重复"):
            parse_alert_configs([make_rule(), make_rule()])


class TestAlertEngine:
    """测试AlertEngine类"""

    def setup_method(self):
        self.clock = ManualClock(10_000.0)
        self.metrics = InMemoryMetricStore(self.clock)
        self.alerts = InMemoryAlertStore(self.clock)
        self.audit = InMemoryAuditLogStore()
        self.dispatcher = Mock()
        self.dispatcher.send = AsyncMock(return_value=True)

    def make_engine(self, *rules, dispatcher=None):
        return AlertEngine(parse_alert_configs(rules or [make_rule()]), self.metrics, self.alerts,
                           dispatcher=dispatcher, clock=self.clock, audit_store=self.audit)

    @pytest.mark.asyncio
    async def test_threshold_triggers(self):
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.25)

        triggered = await engine.check_alerts()

        assert len(triggered) == 1
        alert = triggered[0]
        assert alert.title == '告警: 高错误率'
        assert alert.message == '接口错误率过高. 当前值: 0.25, 阈值: 0.1'
        assert alert.severity == AlertSeverity.ERROR
        assert alert.status == AlertStatus.TRIGGERED
        assert alert.triggered_at == self.clock.time()
        assert alert.metadata == {'metric_name': 'error_rate', 'metric_value': 0.25,
                                  'threshold': 0.1, 'operator': '>'}
        assert await self.alerts.get(alert.id) is alert

    @pytest.mark.asyncio
    async def test_message_without_description(self):
        engine = self.make_engine(make_rule(description=''))
        await self.metrics.record('error_rate', 0.25)

        triggered = await engine.check_alerts()

        assert triggered[0].message == '当前值: 0.25, 阈值: 0.1'

    @pytest.mark.asyncio
    async def test_condition_not_met(self):
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.1)

        assert await engine.check_alerts() == []

    @pytest.mark.asyncio
    async def test_no_metric(self):
        engine = self.make_engine()
        assert await engine.check_alerts() == []

    @pytest.mark.asyncio
    async def test_uses_latest_sample(self):
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.5, timestamp=self.clock.time() - 10)
        await self.metrics.record('error_rate', 0.0)

        assert await engine.check_alerts() == []

    @pytest.mark.asyncio
    async def test_cooldown(self):
        """冷却期内同一规则不会重复触发"""
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.5)
        assert len(await engine.check_alerts()) == 1

        self.clock.advance(299)
        assert await engine.check_alerts() == []

        self.clock.advance(1)
        assert len(await engine.check_alerts()) == 1
        assert len(await self.alerts.all()) == 2

    @pytest.mark.asyncio
    async def test_zero_cooldown(self):
        engine = self.make_engine(make_rule(cooldown=0))
        await self.metrics.record('error_rate', 0.5)

        assert len(await engine.check_alerts()) == 1
        self.clock.advance(1)
        assert len(await engine.check_alerts()) == 1

    @pytest.mark.asyncio
    async def test_duration_requires_all_samples(self):
        engine = self.make_engine(make_rule(condition={'duration': 60}))
        now = self.clock.time()
        await self.metrics.record('error_rate', 0.5, timestamp=now - 50)
        await self.metrics.record('error_rate', 0.05, timestamp=now - 30)
        await self.metrics.record('error_rate', 0.5, timestamp=now)

        assert await engine.check_alerts() == []

    @pytest.mark.asyncio
    async def test_duration_sustained(self):
        engine = self.make_engine(make_rule(condition={'duration': 60}))
        now = self.clock.time()
        # 窗口之外的样本不参与判断
        await self.metrics.record('error_rate', 0.0, timestamp=now - 120)
        for offset in (50, 30, 0):
            await self.metrics.record('error_rate', 0.5, timestamp=now - offset)

        assert len(await engine.check_alerts()) == 1

    @pytest.mark.asyncio
    async def test_duration_empty_window(self):
        """窗口内没有样本时，以最新值判断"""
        engine = self.make_engine(make_rule(condition={'duration': 60}))
        await self.metrics.record('error_rate', 0.5, timestamp=self.clock.time() - 300)

        assert len(await engine.check_alerts()) == 1

    @pytest.mark.asyncio
    async def test_disabled_rule(self):
        engine = self.make_engine(make_rule(enabled=False))
        await self.metrics.record('error_rate', 0.5)

        assert await engine.check_alerts() == []

    @pytest.mark.asyncio
    async def test_rule_error_is_isolated(self):
        """单条规则评估失败不影响其他规则"""
        engine = self.make_engine(make_rule(name='broken', condition={'metric': 'boom'}),
                                  make_rule(name='ok'))
        await self.metrics.record('error_rate', 0.5)
        original_latest = self.metrics.latest

        async def latest(name):
            if name == 'boom':
                raise RuntimeError('store unavailable')
            return await original_latest(name)

        self.metrics.latest = latest

        triggered = await engine.check_alerts()

        assert [alert.config_id for alert in triggered] == ['ok']

    @pytest.mark.asyncio
    async def test_dispatches_notification(self):
        engine = self.make_engine(dispatcher=self.dispatcher)
        await self.metrics.record('error_rate', 0.5)

        triggered = await engine.check_alerts()
        await engine.wait_pending()

        self.dispatcher.send.assert_awaited_once_with(triggered[0])

    @pytest.mark.asyncio
    async def test_check_does_not_wait_for_delivery(self):
        release = asyncio.Event()

        async def slow_send(alert):
            await release.wait()
            return True

        self.dispatcher.send = AsyncMock(side_effect=slow_send)
        engine = self.make_engine(dispatcher=self.dispatcher)
        await self.metrics.record('error_rate', 0.5)

        triggered = await engine.check_alerts()
        assert len(triggered) == 1

        release.set()
        await engine.wait_pending()
        self.dispatcher.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_delivery_failure_does_not_propagate(self):
        self.dispatcher.send = AsyncMock(side_effect=RuntimeError('webhook down'))
        engine = self.make_engine(dispatcher=self.dispatcher)
        await self.metrics.record('error_rate', 0.5)

        assert len(await engine.check_alerts()) == 1
        await engine.wait_pending()

        assert len(await self.alerts.active()) == 1

    @pytest.mark.asyncio
    async def test_update_configs(self):
        engine = self.make_engine()
        engine.update_configs(parse_alert_configs([make_rule(name='新规则', condition={'metric': 'latency'})]))
        await self.metrics.record('latency', 1.0)

        assert [config.name for config in engine.configs] == ['新规则']
        assert len(await engine.check_alerts()) == 1

    @pytest.mark.asyncio
    async def test_resolve_alert(self):
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.5)
        alert = (await engine.check_alerts())[0]
        self.clock.advance(60)

        assert await engine.resolve_alert(alert.id, resolved_by='ops') is True

        assert alert.status == AlertStatus.RESOLVED
        assert alert.resolved_at == self.clock.time()
        entries = await self.audit.all()
        assert len(entries) == 1
        assert entries[0].action == 'alert_resolved'
        assert entries[0].actor == 'ops'
        assert entries[0].details['alert_id'] == alert.id

        assert await engine.resolve_alert(alert.id) is False
        assert len(await self.audit.all()) == 1

    @pytest.mark.asyncio
    async def test_resolved_alert_still_counts_for_cooldown(self):
        engine = self.make_engine()
        await self.metrics.record('error_rate', 0.5)
        alert = (await engine.check_alerts())[0]
        await engine.resolve_alert(alert.id)

        self.clock.advance(10)
        assert await engine.check_alerts() == []
