"""主应用程序集成测试"""

import os
import tempfile

import pytest
import yaml
from unittest.mock import AsyncMock, patch

from main import ShieldApp, check_once, create_argument_parser, validate_config_file
from api_shield.models.records import CircuitState, HealthRecord, HealthStatus
from api_shield.utils.clock import ManualClock
from api_shield.utils.exceptions import CircuitOpenError, ConfigError


def write_yaml(data):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False, encoding='utf-8') as f:
        yaml.safe_dump(data, f, allow_unicode=True)
        return f.name


class TestShieldApp:
    """防护层应用程序测试类"""

    @pytest.fixture
    def temp_config_file(self):
        """创建临时配置文件"""
        state_dir = tempfile.mkdtemp()
        config_data = {
            'global': {
                'log_level': 'INFO',
                'state_file': os.path.join(state_dir, 'state', 'health.json'),
            },
            'rate_limits': {
                'defillama': {'requests_per_second': 5},
            },
            'cache': {'default_ttl': 30, 'cleanup_interval': 600},
            'health': {
                'interval': 15,
                'components': {
                    'coingecko-api': {'type': 'circuit_breaker', 'service': 'coingecko'},
                },
            },
            'alerts': {
                'interval': 20,
                'rules': [{
                    'name': 'high-error-rate',
                    'condition': {'metric': 'error_rate', 'operator': '>', 'threshold': 0.1},
                    'severity': 'error',
                }],
            },
            'notifications': [
                {'name': 'ops', 'type': 'webhook', 'url': 'http://localhost:8080/hook'},
            ],
            'retention': {'metrics_days': 3},
        }

        temp_file = write_yaml(config_data)
        yield temp_file

        if os.path.exists(temp_file):
            os.unlink(temp_file)

    @pytest.mark.asyncio
    async def test_app_initialization(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())

        assert not app.is_running
        assert app.scheduler is None

        await app.initialize()

        assert 'defillama' in app.context.rate_limiters
        assert app.context.cache.default_ttl == 30
        assert list(app.health_monitor.probes) == ['coingecko-api']
        assert [config.name for config in app.alert_engine.configs] == ['high-error-rate']
        assert app.retention_job is not None

        stats = app.scheduler.get_scheduler_stats()
        assert stats['tasks']['health_checks']['interval'] == 15
        assert stats['tasks']['alert_checks']['interval'] == 20
        assert stats['tasks']['cache_cleanup']['interval'] == 600
        assert os.path.isdir(os.path.dirname(app.health_store.persistence_file))

    @pytest.mark.asyncio
    async def test_initialize_invalid_config(self):
        path = write_yaml({'rate_limits': {'svc': {'requests_per_minute': 0}}})
        try:
            app = ShieldApp(path)
            with pytest.raises(ConfigError):
                await app.initialize()
        finally:
            os.unlink(path)

    @pytest.mark.asyncio
    async def test_get_status(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())
        await app.initialize()

        await app.health_monitor.run_health_checks()
        status = await app.get_status()

        assert status['is_running'] is False
        assert status['config_path'] == temp_config_file
        assert status['health']['components']['coingecko-api']['status'] == 'healthy'
        assert 'defillama' in status['rate_limits']
        assert status['cache']['total'] == 0
        assert status['circuit_breakers']['total'] >= 1
        assert status['active_alerts'] == []
        assert set(status['scheduler_stats']['tasks']) == {
            'health_checks', 'alert_checks', 'retention', 'cache_cleanup'}

    @pytest.mark.asyncio
    async def test_config_change_updates_rules_and_probes(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())
        await app.initialize()
        old_config = app.config_manager.config.copy()

        with open(temp_config_file, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
        data['alerts']['rules'].append({
            'name': 'slow-responses',
            'condition': {'metric': 'response_time', 'operator': '>', 'threshold': 2},
        })
        data['health']['components']['ethereum-rpc'] = {
            'type': 'rpc', 'url': 'https://eth.example.com'}
        with open(temp_config_file, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, allow_unicode=True)

        new_config = app.config_manager.reload_config()
        app._on_config_changed_callback(old_config, new_config)

        assert [config.name for config in app.alert_engine.configs] == [
            'high-error-rate', 'slow-responses']
        assert set(app.health_monitor.probes) == {'coingecko-api', 'ethereum-rpc'}

    @pytest.mark.asyncio
    async def test_config_change_with_bad_rules_keeps_engine(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())
        await app.initialize()

        app.config_manager.config['alerts']['rules'] = [
            {'name': 'a', 'condition': {'metric': 'm', 'operator': '>', 'threshold': 1}},
            {'name': 'a', 'condition': {'metric': 'm', 'operator': '<', 'threshold': 1}},
        ]
        with patch.object(app.logger, 'error') as mock_error:
            app._on_config_changed_callback({}, app.config_manager.config)

        mock_error.assert_called_once()
        assert [config.name for config in app.alert_engine.configs] == ['high-error-rate']

    @pytest.mark.asyncio
    async def test_log_overrides(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())
        app.log_overrides['log_level'] = 'DEBUG'

        with patch('main.log_manager.configure') as mock_configure:
            app._configure_logging({'log_level': 'WARNING', 'max_log_size': 2048})

        log_config = mock_configure.call_args[0][0]
        assert log_config['log_level'] == 'DEBUG'
        assert 'max_file_size' not in log_config

    @pytest.mark.asyncio
    async def test_shutdown_stops_app(self, temp_config_file):
        app = ShieldApp(temp_config_file, clock=ManualClock())
        await app.initialize()

        with patch.object(app.config_watcher, 'start_watching'), \
                patch.object(app.scheduler, 'start', new=AsyncMock()), \
                patch.object(app.scheduler, 'stop', new=AsyncMock()) as mock_stop:
            app.shutdown()
            await app.start()

        mock_stop.assert_awaited_once()
        assert app.is_running is False

    @pytest.mark.asyncio
    async def test_upstream_failures_reach_health_and_alerts(self):
        """出站调用失败会打开熔断器、使组件变为 down 并触发告警"""
        path = write_yaml({
            'health': {'components': {
                'coingecko-api': {'type': 'circuit_breaker', 'service': 'coingecko'}}},
            'alerts': {'rules': [{
                'name': 'coingecko-errors',
                'condition': {'metric': 'coingecko_error_rate', 'operator': '>', 'threshold': 0.5},
                'severity': 'critical',
            }]},
        })
        try:
            app = ShieldApp(path, clock=ManualClock())
            await app.initialize()
            failing = AsyncMock(side_effect=ConnectionError('upstream down'))

            for _ in range(5):
                with pytest.raises(ConnectionError):
                    await app.context.call('coingecko', failing, max_retries=0)
            with pytest.raises(CircuitOpenError):
                await app.context.call('coingecko', failing, max_retries=0)

            assert failing.await_count == 5
            assert app.breakers.state('coingecko') == CircuitState.OPEN

            records = await app.health_monitor.run_health_checks()
            assert records['coingecko-api'].status == HealthStatus.DOWN

            alerts = await app.alert_engine.check_alerts()
            assert [alert.config_id for alert in alerts] == ['coingecko-errors']
            assert (await app.metric_store.latest('api_error_rate')).value == 1.0
            await app.alert_engine.wait_pending()
        finally:
            os.unlink(path)

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, temp_config_file):
        app = ShieldApp(temp_config_file)
        await app.stop()
        assert app.is_running is False


class TestCommandLine:
    """命令行功能测试"""

    def test_argument_parser(self):
        parser = create_argument_parser()

        args = parser.parse_args(['config.yaml', '--check-once', '--log-level', 'DEBUG'])

        assert args.config_file == 'config.yaml'
        assert args.check_once is True
        assert args.validate is False
        assert args.log_level == 'DEBUG'
        assert args.log_file is None

    def test_argument_parser_rejects_bad_level(self):
        with pytest.raises(SystemExit):
            create_argument_parser().parse_args(['config.yaml', '--log-level', 'LOUD'])

    def test_validate_config_file(self, capsys):
        path = write_yaml({
            'health': {'components': {'eth': {'type': 'rpc', 'url': 'https://eth.example.com'}}},
            'alerts': {'rules': [{'name': 'r', 'condition': {
                'metric': 'error_rate', 'operator': '>', 'threshold': 0.1}}]},
        })
        try:
            assert validate_config_file(path) is True
        finally:
            os.unlink(path)

        output = capsys.readouterr().out
        assert "配置文件验证成功" in output
        assert "eth (rpc)" in output
        assert "r: error_rate > 0.1" in output

    def test_validate_config_file_invalid(self, capsys):
        assert validate_config_file('/nonexistent/config.yaml') is False
        assert "配置文件验证失败" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_check_once(self):
        path = write_yaml({'health': {'components': {
            'eth': {'type': 'rpc', 'url': 'https://eth.example.com'}}}})
        records = {
            'eth': HealthRecord('eth', HealthStatus.HEALTHY, 1.0, response_time=0.12),
        }
        try:
            with patch('main.HealthMonitor.run_health_checks', new=AsyncMock(return_value=records)):
                assert await check_once(path) is True

            records['eth'] = None
            with patch('main.HealthMonitor.run_health_checks', new=AsyncMock(return_value=records)):
                assert await check_once(path) is False
        finally:
            os.unlink(path)
