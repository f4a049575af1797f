"""时钟抽象

限流器、缓存、告警引擎等组件都通过时钟读取当前时间和挂起等待，
测试中注入 ManualClock 即可在不真实等待的情况下推进时间。
"""

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime


class Clock(ABC):
    """时钟基类，时间单位为秒"""

    @abstractmethod
    def time(self) -> float:
        """返回当前时间戳（秒）"""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """挂起当前协程指定秒数"""
        pass

    def now(self) -> datetime:
        """返回当前时间的 datetime 表示"""
        return datetime.fromtimestamp(self.time())


class SystemClock(Clock):
    """系统时钟"""

    def time(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """手动推进的时钟

    sleep 会立即把时间向前推进并让出一次事件循环，
    因此等待逻辑可以被确定性地测试。
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self._now = float(start)
        self.sleeps = []

    def time(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        """向前推进时间"""
        if seconds < 0:
            raise ValueError("时间不能倒退")
        self._now += seconds

    def set(self, timestamp: float) -> None:
        """直接设置当前时间"""
        self._now = float(timestamp)

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        self._now += seconds
        await asyncio.sleep(0)


# 默认时钟
system_clock = SystemClock()
