"""存储模块

指标、告警、审计日志和健康记录的存储接口及内存实现。
告警引擎和保留清理任务只依赖抽象接口，生产环境可以替换为数据库实现。
"""

import asyncio
import bisect
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from ..models.records import Alert, AlertStatus, AuditLogEntry, HealthRecord, Metric
from ..utils.clock import Clock, system_clock
from ..utils.exceptions import StoreError


class BaseMetricStore(ABC):
    """指标存储接口"""

    @abstractmethod
    async def record(self, name: str, value: float, timestamp: Optional[float] = None) -> Metric:
        """追加一个采样点"""
        pass

    @abstractmethod
    async def latest(self, name: str) -> Optional[Metric]:
        """返回指定指标最新的采样点"""
        pass

    @abstractmethod
    async def range(self, name: str, from_time: float, to_time: float) -> List[Metric]:
        """返回时间戳在 [from_time, to_time] 内的采样点，按时间升序"""
        pass

    @abstractmethod
    async def purge_before(self, cutoff: float) -> int:
        """删除时间戳早于 cutoff 的采样点，返回删除数量"""
        pass


class BaseAlertStore(ABC):
    """告警存储接口"""

    @abstractmethod
    async def insert(self, alert: Alert) -> Alert:
        pass

    @abstractmethod
    async def latest_for_config(self, config_id: str) -> Optional[Alert]:
        """返回该规则最近一次触发的告警"""
        pass

    @abstractmethod
    async def resolve(self, alert_id: str, resolved_at: Optional[float] = None) -> bool:
        """把告警标记为已恢复"""
        pass

    @abstractmethod
    async def purge_resolved_before(self, cutoff: float) -> int:
        """删除 resolved_at 早于 cutoff 的已恢复告警，返回删除数量"""
        pass


class BaseAuditLogStore(ABC):
    """审计日志存储接口"""

    @abstractmethod
    async def append(self, entry: AuditLogEntry) -> None:
        pass

    @abstractmethod
    async def purge_before(self, cutoff: float) -> int:
        pass


class InMemoryMetricStore(BaseMetricStore):
    """内存指标存储，每个指标的采样点按时间戳有序保存"""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or system_clock
        self._metrics: Dict[str, List[Metric]] = {}
        self._timestamps: Dict[str, List[float]] = {}
        self._lock = asyncio.Lock()

    async def record(self, name: str, value: float, timestamp: Optional[float] = None) -> Metric:
        """
        记录一个采样点

        Args:
            name: 指标名称
            value: 指标值
            timestamp: 采样时间，默认取当前时间
        """
        metric = Metric(name=name, value=float(value),
                        timestamp=self._clock.time() if timestamp is None else timestamp)

        async with self._lock:
            timestamps = self._timestamps.setdefault(name, [])
            metrics = self._metrics.setdefault(name, [])
            index = bisect.bisect_right(timestamps, metric.timestamp)
            timestamps.insert(index, metric.timestamp)
            metrics.insert(index, metric)

        return metric

    async def latest(self, name: str) -> Optional[Metric]:
        async with self._lock:
            metrics = self._metrics.get(name)
            return metrics[-1] if metrics else None

    async def range(self, name: str, from_time: float, to_time: float) -> List[Metric]:
        async with self._lock:
            timestamps = self._timestamps.get(name, [])
            start = bisect.bisect_left(timestamps, from_time)
            end = bisect.bisect_right(timestamps, to_time)
            return list(self._metrics.get(name, [])[start:end])

    async def purge_before(self, cutoff: float) -> int:
        removed = 0
        async with self._lock:
            for name in list(self._metrics.keys()):
                index = bisect.bisect_left(self._timestamps[name], cutoff)
                if index == 0:
                    continue
                removed += index
                del self._timestamps[name][:index]
                del self._metrics[name][:index]
                if not self._metrics[name]:
                    del self._metrics[name]
                    del self._timestamps[name]
        return removed

    async def names(self) -> List[str]:
        async with self._lock:
            return list(self._metrics.keys())


class InMemoryAlertStore(BaseAlertStore):
    """内存告警存储"""

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or system_clock
        self._alerts: Dict[str, Alert] = {}
        self._lock = asyncio.Lock()
        self.logger = logging.getLogger(__name__)

    async def insert(self, alert: Alert) -> Alert:
        async with self._lock:
            if alert.id in self._alerts:
                raise StoreError(f"告警 {alert.id} 已存在", details={'alert_id': alert.id})
            self._alerts[alert.id] = alert
        return alert

    async def get(self, alert_id: str) -> Optional[Alert]:
        async with self._lock:
            return self._alerts.get(alert_id)

    async def latest_for_config(self, config_id: str) -> Optional[Alert]:
        async with self._lock:
            candidates = [a for a in self._alerts.values() if a.config_id == config_id]
        if not candidates:
            return None
        return max(candidates, key=lambda a: a.triggered_at)

    async def resolve(self, alert_id: str, resolved_at: Optional[float] = None) -> bool:
        """
        把告警标记为已恢复

        Returns:
            bool: 告警是否存在且此前处于触发状态
        """
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.status == AlertStatus.RESOLVED:
                return False
            alert.status = AlertStatus.RESOLVED
            alert.resolved_at = self._clock.time() if resolved_at is None else resolved_at

        self.logger.info(f"告警已恢复: {alert.title} ({alert_id})")
        return True

    async def active(self) -> List[Alert]:
        async with self._lock:
            return [a for a in self._alerts.values() if a.status == AlertStatus.TRIGGERED]

    async def all(self) -> List[Alert]:
        async with self._lock:
            return sorted(self._alerts.values(), key=lambda a: a.triggered_at)

    async def purge_resolved_before(self, cutoff: float) -> int:
        async with self._lock:
            expired = [
                alert_id for alert_id, alert in self._alerts.items()
                if alert.status == AlertStatus.RESOLVED
                and alert.resolved_at is not None
                and alert.resolved_at < cutoff
            ]
            for alert_id in expired:
                del self._alerts[alert_id]
        return len(expired)


class InMemoryAuditLogStore(BaseAuditLogStore):
    """内存审计日志存储"""

    def __init__(self):
        self._entries: List[AuditLogEntry] = []
        self._lock = asyncio.Lock()

    async def append(self, entry: AuditLogEntry) -> None:
        async with self._lock:
            self._entries.append(entry)

    async def all(self) -> List[AuditLogEntry]:
        async with self._lock:
            return list(self._entries)

    async def purge_before(self, cutoff: float) -> int:
        async with self._lock:
            original_count = len(self._entries)
            self._entries = [e for e in self._entries if e.timestamp >= cutoff]
            return original_count - len(self._entries)


class HealthStore:
    """组件健康记录存储

    每个组件只保存最新一条记录，状态发生变化时记录日志。
    可选地把记录持久化到 JSON 文件，进程重启后恢复。
    """

    def __init__(self, persistence_file: Optional[str] = None):
        """
        Args:
            persistence_file: 持久化文件路径，为 None 时不持久化
        """
        self._records: Dict[str, HealthRecord] = {}
        self.persistence_file = persistence_file
        self.logger = logging.getLogger(__name__)

        if self.persistence_file:
            self._load_state()

    def upsert(self, record: HealthRecord) -> Optional[HealthRecord]:
        """
        写入组件健康记录

        Returns:
            Optional[HealthRecord]: 该组件之前的记录，首次写入时为 None
        """
        previous = self._records.get(record.component)
        self._records[record.component] = record

        if previous is None:
            self.logger.info(f"组件 {record.component} 初始状态: {record.status.value}")
        elif previous.status != record.status:
            self.logger.warning(
                f"组件 {record.component} 状态变化: {previous.status.value} -> {record.status.value}")

        if self.persistence_file:
            self._save_state()

        return previous

    def get(self, component: str) -> Optional[HealthRecord]:
        return self._records.get(component)

    def all(self) -> Dict[str, HealthRecord]:
        return dict(self._records)

    def purge_before(self, cutoff: float) -> int:
        """删除最后检查时间早于 cutoff 的记录"""
        stale = [name for name, record in self._records.items() if record.last_check < cutoff]
        for name in stale:
            del self._records[name]

        if stale:
            self.logger.info(f"清理了 {len(stale)} 条过期健康记录")
            if self.persistence_file:
                self._save_state()
        return len(stale)

    def _save_state(self):
        """保存记录到文件"""
        try:
            Path(self.persistence_file).parent.mkdir(parents=True, exist_ok=True)

            state_data = {
                'records': [record.to_dict() for record in self._records.values()],
                'last_updated': datetime.now().isoformat(),
            }

            with open(self.persistence_file, 'w', encoding='utf-8') as f:
                json.dump(state_data, f, ensure_ascii=False, indent=2, default=str)

        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"保存健康状态失败: {e}")

    def _load_state(self):
        """从文件加载记录"""
        if not os.path.exists(self.persistence_file):
            return

        try:
            with open(self.persistence_file, 'r', encoding='utf-8') as f:
                state_data = json.load(f)

            for record_data in state_data.get('records', []):
                record = HealthRecord.from_dict(record_data)
                self._records[record.component] = record

            self.logger.info(f"从 {self.persistence_file} 加载了 {len(self._records)} 条健康记录")

        except (OSError, KeyError, ValueError) as e:
            self.logger.error(f"加载健康状态失败: {e}")
