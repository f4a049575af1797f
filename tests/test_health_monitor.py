"""测试健康监控器"""

import asyncio

import pytest
from unittest.mock import AsyncMock

from api_shield.checkers.base import BaseProbe
from api_shield.checkers.circuit_checker import CircuitBreakerProbe
from api_shield.checkers.rpc_checker import RpcProbe
from api_shield.models.records import HealthRecord, HealthStatus
from api_shield.resilience.circuit_breaker import CircuitBreakerRegistry
from api_shield.services.health_monitor import HealthMonitor
from api_shield.services.stores import HealthStore
from api_shield.utils.clock import ManualClock
from api_shield.utils.exceptions import CheckerError


class StaticProbe(BaseProbe):
    """返回固定状态的探测器"""

    def __init__(self, name, status=HealthStatus.HEALTHY, error=None, clock=None):
        super().__init__(name, {}, clock)
        self.status = status
        self.error = error
        self.calls = 0

    async def check(self) -> HealthRecord:
        self.calls += 1
        if self.error:
            raise self.error
        return HealthRecord(self.name, self.status, self.clock.time())

    def validate_config(self) -> bool:
        return True


class TestHealthMonitor:
    """测试HealthMonitor类"""

    def setup_method(self):
        self.clock = ManualClock()
        self.store = HealthStore()

    @pytest.mark.asyncio
    async def test_no_probes(self):
        monitor = HealthMonitor(health_store=self.store, clock=self.clock)
        assert await monitor.run_health_checks() == {}

    @pytest.mark.asyncio
    async def test_run_health_checks(self):
        monitor = HealthMonitor([
            StaticProbe('rpc', clock=self.clock),
            StaticProbe('redis', HealthStatus.DEGRADED, clock=self.clock),
        ], self.store, self.clock)

        records = await monitor.run_health_checks()

        assert records['rpc'].status == HealthStatus.HEALTHY
        assert records['redis'].status == HealthStatus.DEGRADED
        assert self.store.get('redis').status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_failing_probe_is_isolated(self):
        """单个探测抛出异常不影响其他组件，且保留上一次的记录"""
        failing = StaticProbe('redis', clock=self.clock)
        monitor = HealthMonitor([failing, StaticProbe('rpc', clock=self.clock)],
                                self.store, self.clock)
        await monitor.run_health_checks()
        previous = self.store.get('redis')

        failing.error = ConnectionError('refused')
        self.clock.advance(60)
        records = await monitor.run_health_checks()

        assert records['redis'] is None
        assert records['rpc'].last_check == self.clock.time()
        assert self.store.get('redis') is previous

    @pytest.mark.asyncio
    async def test_concurrency_limit(self):
        running = 0
        peak = 0

        class SlowProbe(StaticProbe):
            async def check(self):
                nonlocal running, peak
                running += 1
                peak = max(peak, running)
                await asyncio.sleep(0)
                await asyncio.sleep(0)
                running -= 1
                return await super().check()

        monitor = HealthMonitor([SlowProbe(f'p{i}', clock=self.clock) for i in range(6)],
                                self.store, self.clock, max_concurrent_checks=2)

        records = await monitor.run_health_checks()

        assert len(records) == 6
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        probe = StaticProbe('rpc', error=asyncio.CancelledError(), clock=self.clock)
        monitor = HealthMonitor([probe], self.store, self.clock)

        with pytest.raises(asyncio.CancelledError):
            await monitor.run_health_checks()

    def test_configure_probes(self):
        registry = CircuitBreakerRegistry(clock=self.clock)
        monitor = HealthMonitor(health_store=self.store, clock=self.clock)

        monitor.configure_probes({
            'eth': {'type': 'rpc', 'url': 'https://eth.example.com'},
            'coingecko-api': {'type': 'circuit_breaker', 'service': 'coingecko'},
        }, registry)

        assert isinstance(monitor.probes['eth'], RpcProbe)
        assert monitor.probes['eth'].clock is self.clock
        assert isinstance(monitor.probes['coingecko-api'], CircuitBreakerProbe)
        assert monitor.probes['coingecko-api'].registry is registry

    def test_configure_probes_replaces_existing(self):
        monitor = HealthMonitor([StaticProbe('old')], self.store, self.clock)

        monitor.configure_probes({'eth': {'type': 'rpc', 'url': 'https://eth.example.com'}})

        assert list(monitor.probes) == ['eth']

    def test_configure_probes_invalid(self):
        monitor = HealthMonitor([StaticProbe('old')], self.store, self.clock)

        with pytest.raises(CheckerError):
            monitor.configure_probes({'api': {'type': 'circuit_breaker'}})

        assert list(monitor.probes) == ['old']

    @pytest.mark.asyncio
    async def test_circuit_breaker_health(self):
        """熔断器打开时组件为 down"""
        registry = CircuitBreakerRegistry(clock=self.clock)
        monitor = HealthMonitor(health_store=self.store, clock=self.clock)
        monitor.configure_probes({'cg': {'type': 'circuit_breaker', 'service': 'coingecko'}},
                                 registry)
        for _ in range(5):
            registry.record_failure('coingecko')

        records = await monitor.run_health_checks()

        assert records['cg'].status == HealthStatus.DOWN

    @pytest.mark.asyncio
    async def test_get_health_summary(self):
        monitor = HealthMonitor([
            StaticProbe('a', clock=self.clock),
            StaticProbe('b', HealthStatus.DOWN, clock=self.clock),
            StaticProbe('c', error=RuntimeError('x'), clock=self.clock),
        ], self.store, self.clock)
        await monitor.run_health_checks()

        summary = monitor.get_health_summary()

        assert summary['total_components'] == 3
        assert summary['by_status'] == {'healthy': 1, 'down': 1}
        assert summary['components']['b']['status'] == 'down'

    @pytest.mark.asyncio
    async def test_probe_with_mock_check(self):
        probe = StaticProbe('mocked', clock=self.clock)
        probe.check = AsyncMock(return_value=HealthRecord('mocked', HealthStatus.HEALTHY, 1.0))
        monitor = HealthMonitor([probe], self.store, self.clock)

        await monitor.run_health_checks()

        probe.check.assert_awaited_once()
