#!/usr/bin/env python3
"""
API 防护层主应用程序入口

组装限流器、缓存、健康监控、告警引擎和保留清理任务，
按配置启动周期任务，支持配置热更新、信号处理和优雅关闭。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from api_shield.alerts.engine import AlertEngine, parse_alert_configs
from api_shield.alerts.router import NotificationRouter
from api_shield.context import ResilienceContext
from api_shield.models.records import HealthStatus
from api_shield.resilience.circuit_breaker import CircuitBreakerRegistry
from api_shield.services.config_manager import ConfigManager
from api_shield.services.config_watcher import ConfigWatcher
from api_shield.services.health_monitor import HealthMonitor
from api_shield.services.retention import RetentionJob
from api_shield.services.scheduler import Scheduler, build_default_tasks
from api_shield.services.stores import (
    HealthStore,
    InMemoryAlertStore,
    InMemoryAuditLogStore,
    InMemoryMetricStore,
)
from api_shield.utils.clock import Clock, system_clock
from api_shield.utils.exceptions import ConfigError, ShieldError
from api_shield.utils.log_manager import get_logger, log_manager

# 版本信息
__version__ = "1.0.0"


class ShieldApp:
    """API 防护层主应用程序类"""

    def __init__(self, config_path: str, clock: Optional[Clock] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            clock: 时钟，默认使用系统时钟
        """
        self.config_path = config_path
        self.clock = clock or system_clock
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()
        self.log_overrides: Dict[str, Any] = {}

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.context: Optional[ResilienceContext] = None
        self.breakers: Optional[CircuitBreakerRegistry] = None
        self.health_store: Optional[HealthStore] = None
        self.health_monitor: Optional[HealthMonitor] = None
        self.metric_store: Optional[InMemoryMetricStore] = None
        self.alert_store: Optional[InMemoryAlertStore] = None
        self.audit_store: Optional[InMemoryAuditLogStore] = None
        self.alert_engine: Optional[AlertEngine] = None
        self.retention_job: Optional[RetentionJob] = None
        self.scheduler: Optional[Scheduler] = None

    async def initialize(self):
        """初始化应用程序组件

        Raises:
            ConfigError: 配置文件无效
        """
        try:
            self.config_manager = ConfigManager(self.config_path)
            config = self.config_manager.load_config()

            self._configure_logging(self.config_manager.get_global_config())
            self.logger = get_logger('main')
            self.logger.info("开始初始化API防护层")

            self.breakers = CircuitBreakerRegistry(clock=self.clock)
            self.metric_store = InMemoryMetricStore(self.clock)
            self.context = ResilienceContext.from_config(
                config, self.clock, breakers=self.breakers, metric_store=self.metric_store)

            state_file = self._get_state_file_path(self.config_manager.get_global_config())
            self.health_store = HealthStore(state_file)
            self.health_monitor = HealthMonitor(health_store=self.health_store, clock=self.clock)
            self.health_monitor.configure_probes(self.config_manager.get_components_config(),
                                                 self.breakers)

            self.alert_store = InMemoryAlertStore(self.clock)
            self.audit_store = InMemoryAuditLogStore()

            router = NotificationRouter.from_config(self.config_manager.get_notifications_config(),
                                                    self.clock)
            self.alert_engine = AlertEngine(
                parse_alert_configs(self.config_manager.get_alert_rules()),
                self.metric_store,
                self.alert_store,
                dispatcher=router,
                clock=self.clock,
                audit_store=self.audit_store
            )

            retention_config = self.config_manager.get_retention_config()
            self.retention_job = RetentionJob(
                self.metric_store, self.audit_store, self.alert_store,
                health_store=self.health_store,
                clock=self.clock,
                **{key: retention_config[key]
                   for key in ('metrics_days', 'audit_log_days', 'resolved_alert_days')
                   if key in retention_config}
            )

            self.scheduler = Scheduler(self.clock)
            for task in build_default_tasks(
                    self.health_monitor, self.alert_engine, self.retention_job,
                    self.context.cache, intervals=self._get_intervals()):
                self.scheduler.register(task)

            self.config_watcher = ConfigWatcher(self.config_manager,
                                                loop=asyncio.get_running_loop())
            self.config_watcher.add_change_callback(self._on_config_changed_callback)

            self.logger.info("应用程序组件初始化完成")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统，命令行参数优先于配置文件"""
        merged = dict(global_config)
        merged.update(self.log_overrides)

        log_config = {
            'log_level': merged.get('log_level', 'INFO'),
            'enable_console': True,
            'log_file': merged.get('log_file'),
        }
        if merged.get('log_file'):
            log_config['max_file_size'] = merged.get('max_log_size', 10 * 1024 * 1024)
            log_config['backup_count'] = merged.get('log_backup_count', 5)

        log_manager.configure(log_config)
        # 包内模块使用 logging.getLogger(__name__)，日志向上传递到这个记录器
        log_manager.get_logger('api_shield')

    def _get_state_file_path(self, global_config: Dict[str, Any]) -> Optional[str]:
        state_file = global_config.get('state_file')
        if state_file:
            Path(state_file).parent.mkdir(parents=True, exist_ok=True)
        return state_file

    def _get_intervals(self) -> Dict[str, float]:
        intervals = {}
        sections = {
            'health_checks': self.config_manager.get_health_config(),
            'alert_checks': self.config_manager.get_alerts_config(),
            'retention': self.config_manager.get_retention_config(),
        }
        for task_name, section in sections.items():
            if section.get('interval'):
                intervals[task_name] = section['interval']

        cleanup_interval = self.config_manager.get_cache_config().get('cleanup_interval')
        if cleanup_interval:
            intervals['cache_cleanup'] = cleanup_interval
        return intervals

    def _on_config_changed_callback(self, old_config: Dict[str, Any],
                                    new_config: Dict[str, Any]):
        """配置文件变更回调，限流配置在进程生命周期内保持不变"""
        try:
            self.logger.info("检测到配置文件变更，重新加载配置")

            self._configure_logging(self.config_manager.get_global_config())
            self.alert_engine.update_configs(
                parse_alert_configs(self.config_manager.get_alert_rules()))
            self.health_monitor.configure_probes(self.config_manager.get_components_config(),
                                                 self.breakers)

            self.logger.info("配置重新加载完成")

        except ShieldError as e:
            self.logger.error(f"重新加载配置失败: {e.format_error()}")

    async def start(self):
        """启动应用程序并等待关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动API防护层")

            self.config_watcher.start_watching()
            await self.scheduler.start()

            self.logger.info("API防护层启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止API防护层...")
        self.is_running = False

        if self.scheduler:
            await self.scheduler.stop()

        if self.config_watcher:
            self.config_watcher.stop_watching()

        if self.alert_engine:
            await self.alert_engine.wait_pending()

        if self.context:
            await self.context.cache.wait_pending()

        self.logger.info("API防护层已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    async def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态"""
        status: Dict[str, Any] = {
            'is_running': self.is_running,
            'config_path': self.config_path,
        }

        if self.scheduler:
            status['scheduler_stats'] = self.scheduler.get_scheduler_stats()

        if self.health_monitor:
            status['health'] = self.health_monitor.get_health_summary()

        if self.context:
            status['rate_limits'] = self.context.rate_limiters.get_stats()
            status['cache'] = await self.context.cache.get_stats()

        if self.breakers:
            status['circuit_breakers'] = self.breakers.get_metrics()

        if self.alert_store:
            status['active_alerts'] = [alert.to_dict() for alert in await self.alert_store.active()]

        return status


# 全局应用程序实例
app: Optional[ShieldApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='api-shield',
        description='API防护层 - 外部接口限流、结果缓存、健康监控与告警',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                    # 使用指定配置文件启动
  %(prog)s --validate config.yaml        # 验证配置文件格式
  %(prog)s --check-once config.yaml      # 执行一次健康检查
  %(prog)s --version                      # 显示版本信息

支持的探测类型:
  - rpc (JSON-RPC 节点)
  - redis (存储往返延迟)
  - circuit_breaker (由熔断器状态推导)

配置文件格式请参考 config/example.yaml
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件格式并退出')
    parser.add_argument('--check-once', action='store_true', help='执行一次健康检查后退出')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='设置日志级别（覆盖配置文件设置）')
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")

    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
        parse_alert_configs(config_manager.get_alert_rules())
    except ShieldError as e:
        print(f"❌ 配置文件验证失败: {e}")
        return False

    components = config_manager.get_components_config()
    rules = config_manager.get_alert_rules()

    print("✅ 配置文件验证成功!")
    print(f"   - 限流服务数量: {len(config_manager.get_rate_limits_config())}")
    print(f"   - 探测组件数量: {len(components)}")
    print(f"   - 告警规则数量: {len(rules)}")
    print(f"   - 通知渠道数量: {len(config_manager.get_notifications_config())}")

    if components:
        print("   - 配置的组件:")
        for name, component_config in components.items():
            print(f"     * {name} ({component_config.get('type', 'unknown')})")

    if rules:
        print("   - 配置的告警规则:")
        for rule in rules:
            condition = rule.get('condition', {})
            print(f"     * {rule.get('name')}: {condition.get('metric')} "
                  f"{condition.get('operator')} {condition.get('threshold')}")

    return True


async def check_once(config_path: str) -> bool:
    """执行一次健康检查

    Returns:
        是否所有组件都健康
    """
    print(f"正在执行健康检查: {config_path}")

    try:
        check_app = ShieldApp(config_path)
        await check_app.initialize()
        results = await check_app.health_monitor.run_health_checks()
    except ShieldError as e:
        print(f"❌ 健康检查失败: {e}")
        return False

    print(f"✅ 健康检查完成，共检查 {len(results)} 个组件:")

    all_healthy = True
    for name, record in results.items():
        if record is None:
            print(f"   ❌ {name}: 检查失败")
            all_healthy = False
        elif record.status == HealthStatus.HEALTHY:
            response_time = f"{record.response_time:.3f}s" if record.response_time is not None else "-"
            print(f"   ✅ {name}: 健康 (响应时间: {response_time})")
        else:
            print(f"   ❌ {name}: {record.status.value} (错误率: {record.error_rate:.2f})")
            all_healthy = False

    return all_healthy


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file

    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    if args.validate:
        sys.exit(0 if validate_config_file(config_path) else 1)

    if args.check_once:
        sys.exit(0 if await check_once(config_path) else 1)

    try:
        app = ShieldApp(config_path)

        if args.log_level:
            app.log_overrides['log_level'] = args.log_level
        if args.log_file:
            app.log_overrides['log_file'] = args.log_file

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        print(f"API防护层 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    except ShieldError as e:
        print(f"API防护层错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def run():
    """命令行入口"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
