"""周期任务调度器

每个周期任务在独立的循环中执行，任务抛出的异常只记录日志，
循环会在下一个周期继续执行。调度器本身不包含业务逻辑。
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.clock import Clock, system_clock
from ..utils.exceptions import ErrorCode, SchedulerError


@dataclass
class PeriodicTask:
    """周期任务定义，interval 和 jitter 单位为秒"""
    name: str
    interval: float
    job: Callable[[], Awaitable[Any]]
    jitter: float = 0.0
    run_immediately: bool = True

    def next_delay(self) -> float:
        if self.jitter > 0:
            return self.interval + random.uniform(0, self.jitter)
        return self.interval


@dataclass
class _TaskStats:
    run_count: int = 0
    error_count: int = 0
    last_run: Optional[float] = None
    last_duration: Optional[float] = None
    last_error: Optional[str] = None


class Scheduler:
    """周期任务调度器"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or system_clock
        self.tasks: Dict[str, PeriodicTask] = {}
        self.is_running = False
        self._running_tasks: Dict[str, asyncio.Task] = {}
        self._stats: Dict[str, _TaskStats] = {}
        self.logger = logging.getLogger(__name__)

    def register(self, task: PeriodicTask):
        """
        注册周期任务

        Raises:
            SchedulerError: 任务名重复或间隔无效
        """
        if task.name in self.tasks:
            raise SchedulerError(f"任务 {task.name} 已经注册", task_name=task.name)
        if task.interval <= 0:
            raise SchedulerError(f"任务 {task.name} 的执行间隔必须大于0", task_name=task.name)
        if task.jitter < 0:
            raise SchedulerError(f"任务 {task.name} 的抖动时间不能为负数", task_name=task.name)

        self.tasks[task.name] = task
        self._stats[task.name] = _TaskStats()
        self.logger.info(f"注册周期任务: {task.name}, 间隔={task.interval}秒")

        if self.is_running:
            self._start_task(task)

    async def start(self):
        """启动所有周期任务，立即返回"""
        if self.is_running:
            self.logger.warning("调度器已经在运行")
            return

        self.is_running = True
        for task in self.tasks.values():
            self._start_task(task)
        self.logger.info(f"调度器已启动，共 {len(self.tasks)} 个周期任务")

    def _start_task(self, task: PeriodicTask):
        self._running_tasks[task.name] = asyncio.get_running_loop().create_task(
            self._run_loop(task), name=f"periodic:{task.name}")

    async def stop(self):
        """停止所有周期任务并等待其结束"""
        if not self.is_running:
            return

        self.is_running = False
        self.logger.info("正在停止调度器...")

        for running in self._running_tasks.values():
            if not running.done():
                running.cancel()

        if self._running_tasks:
            await asyncio.gather(*self._running_tasks.values(), return_exceptions=True)
        self._running_tasks.clear()

        self.logger.info("调度器已停止")

    async def _run_loop(self, task: PeriodicTask):
        if not task.run_immediately:
            await self.clock.sleep(task.next_delay())

        while self.is_running:
            await self._execute(task)
            await self.clock.sleep(task.next_delay())

    async def _execute(self, task: PeriodicTask) -> Any:
        stats = self._stats[task.name]
        start_time = self.clock.time()
        stats.run_count += 1
        stats.last_run = start_time

        try:
            result = await task.job()
        except Exception as e:
            stats.error_count += 1
            stats.last_error = str(e)
            self.logger.error(f"周期任务 {task.name} 执行失败: {e}")
            return None
        finally:
            stats.last_duration = self.clock.time() - start_time

        self.logger.debug(f"周期任务 {task.name} 执行完成，耗时 {stats.last_duration:.3f}秒")
        return result

    async def run_now(self, name: str) -> Any:
        """
        立即执行一次指定任务

        Raises:
            SchedulerError: 任务不存在
        """
        task = self.tasks.get(name)
        if task is None:
            raise SchedulerError(f"任务 {name} 不存在", ErrorCode.TASK_EXECUTION_ERROR, task_name=name)

        self.logger.info(f"立即执行周期任务: {name}")
        return await self._execute(task)

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        return {
            'is_running': self.is_running,
            'total_tasks': len(self.tasks),
            'tasks': {
                name: {
                    'interval': task.interval,
                    'jitter': task.jitter,
                    'run_count': self._stats[name].run_count,
                    'error_count': self._stats[name].error_count,
                    'last_run': self._stats[name].last_run,
                    'last_duration': self._stats[name].last_duration,
                    'last_error': self._stats[name].last_error,
                }
                for name, task in self.tasks.items()
            }
        }


DEFAULT_INTERVALS = {
    'health_checks': 60,
    'alert_checks': 30,
    'retention': 24 * 60 * 60,
    'cache_cleanup': 60 * 60,
}


def build_default_tasks(health_monitor=None, alert_engine=None, retention_job=None,
                        cache=None, intervals: Optional[Dict[str, float]] = None,
                        jitter: float = 0.0) -> List[PeriodicTask]:
    """
    为已提供的组件创建默认周期任务

    Args:
        health_monitor: HealthMonitor
        alert_engine: AlertEngine
        retention_job: RetentionJob
        cache: TTLCache
        intervals: 覆盖默认间隔，键与 DEFAULT_INTERVALS 一致
        jitter: 所有任务共用的抖动上限（秒）
    """
    merged = dict(DEFAULT_INTERVALS)
    merged.update(intervals or {})

    jobs = {
        'health_checks': health_monitor.run_health_checks if health_monitor else None,
        'alert_checks': alert_engine.check_alerts if alert_engine else None,
        'retention': retention_job.run if retention_job else None,
        'cache_cleanup': cache.cleanup if cache else None,
    }

    tasks = []
    for name, job in jobs.items():
        if job is None:
            continue
        # 清理类任务不需要在启动时立即执行
        run_immediately = name in ('health_checks', 'alert_checks')
        tasks.append(PeriodicTask(name, merged[name], job, jitter, run_immediately))
    return tasks
