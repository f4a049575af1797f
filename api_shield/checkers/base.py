"""健康探测器基类"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from ..models.records import HealthRecord
from ..utils.clock import Clock, system_clock
from ..utils.log_manager import get_logger


class BaseProbe(ABC):
    """健康探测器抽象基类"""

    # 由 register_probe 装饰器设置
    probe_type: str = ''

    def __init__(self, name: str, config: Dict[str, Any], clock: Optional[Clock] = None):
        """
        初始化健康探测器

        Args:
            name: 组件名称，也是健康记录的 component
            config: 探测配置参数
            clock: 时钟，默认使用系统时钟
        """
        self.name = name
        self.config = config
        self.clock = clock or system_clock
        probe_type = self.probe_type or self.__class__.__name__.replace('Probe', '').lower()
        self.logger = get_logger(f'checker.{probe_type}.{self.name}')

    @abstractmethod
    async def check(self) -> HealthRecord:
        """
        执行探测并返回健康记录

        Returns:
            HealthRecord: 组件健康记录
        """
        pass

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        pass

    def get_timeout(self) -> float:
        """
        获取超时时间配置

        Returns:
            float: 超时时间（秒）
        """
        return self.config.get('timeout', 10)
