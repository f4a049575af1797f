"""健康探测器工厂"""

from typing import Any, Dict, List, Type

from .base import BaseProbe
from ..utils.exceptions import CheckerError, ErrorCode


class ProbeFactory:
    """健康探测器工厂类，按配置中的 type 创建探测器"""

    def __init__(self):
        self._probes: Dict[str, Type[BaseProbe]] = {}

    def register_probe(self, probe_type: str, probe_class: Type[BaseProbe]):
        """
        注册探测器类

        Args:
            probe_type: 探测类型名称
            probe_class: 探测器类

        Raises:
            CheckerError: 注册失败
        """
        if not issubclass(probe_class, BaseProbe):
            raise CheckerError(f"探测器类 {probe_class.__name__} 必须继承自 BaseProbe")

        if probe_type in self._probes:
            raise CheckerError(f"探测类型 '{probe_type}' 已经注册了探测器")

        self._probes[probe_type] = probe_class

    def unregister_probe(self, probe_type: str):
        self._probes.pop(probe_type, None)

    def create_probe(self, name: str, config: Dict[str, Any], **dependencies: Any) -> BaseProbe:
        """
        创建探测器实例

        Args:
            name: 组件名称
            config: 组件探测配置，必须包含 type
            **dependencies: 探测器构造所需的额外依赖，例如 clock、registry

        Returns:
            BaseProbe: 探测器实例

        Raises:
            CheckerError: 类型不支持、构造失败或配置无效
        """
        probe_type = config.get('type')
        if not probe_type:
            raise CheckerError(f"组件 '{name}' 缺少 'type' 配置",
                               ErrorCode.CHECKER_INITIALIZATION_ERROR, component=name)

        probe_class = self.get_probe_class(probe_type)

        try:
            probe = probe_class(name, config, **dependencies)
        except Exception as e:
            raise CheckerError(
                f"创建组件 '{name}' 的探测器失败: {e}",
                ErrorCode.CHECKER_INITIALIZATION_ERROR,
                component=name,
                probe_type=probe_type,
                cause=e
            )

        if not probe.validate_config():
            raise CheckerError(
                f"组件 '{name}' 的配置验证失败",
                ErrorCode.CHECKER_INITIALIZATION_ERROR,
                component=name,
                probe_type=probe_type
            )

        return probe

    def get_supported_types(self) -> List[str]:
        return list(self._probes.keys())

    def is_type_supported(self, probe_type: str) -> bool:
        return probe_type in self._probes

    def get_probe_class(self, probe_type: str) -> Type[BaseProbe]:
        """
        获取指定类型的探测器类

        Raises:
            CheckerError: 类型不支持
        """
        if probe_type not in self._probes:
            raise CheckerError(f"不支持的探测类型: '{probe_type}'",
                               ErrorCode.CHECKER_INITIALIZATION_ERROR, probe_type=probe_type)
        return self._probes[probe_type]


# 全局工厂实例
probe_factory = ProbeFactory()


def register_probe(probe_type: str):
    """
    装饰器：注册探测器类

    Args:
        probe_type: 探测类型名称
    """
    def decorator(probe_class: Type[BaseProbe]):
        probe_class.probe_type = probe_type
        probe_factory.register_probe(probe_type, probe_class)
        return probe_class

    return decorator
