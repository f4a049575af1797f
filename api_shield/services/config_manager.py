"""配置管理器"""

import os
from typing import Any, Dict, List, Optional

import yaml

from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        if not os.path.exists(self.config_path):
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              ErrorCode.CONFIG_FILE_NOT_FOUND, config_path=self.config_path)

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path, cause=e)
        except OSError as e:
            self.logger.error(f"读取配置文件失败: {e}")
            raise ConfigError(f"读取配置文件失败: {e}", ErrorCode.CONFIG_FILE_NOT_FOUND,
                              config_path=self.config_path, cause=e)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path)

        self._validate_config(config)

        self.logger.info(
            f"配置验证成功，包含 {len(config.get('rate_limits', {}) or {})} 个限流服务、"
            f"{len(self._section(config, 'health').get('components', {}) or {})} 个健康探测组件和 "
            f"{len(self._section(config, 'alerts').get('rules', []) or [])} 条告警规则")

        old_config = self.config.copy() if self.config else {}
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)

        if old_config:
            self._log_config_changes(old_config, config)
        else:
            self.logger.info("首次加载配置文件")

        return self.config

    @staticmethod
    def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
        section = config.get(name)
        return section if isinstance(section, dict) else {}

    def _validate_config(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        if 'global' in config:
            ConfigValidator.validate_global_config(config['global'])

        rate_limits = config.get('rate_limits')
        if rate_limits is not None:
            if not isinstance(rate_limits, dict):
                raise ConfigError("rate_limits配置必须是字典类型")
            for service_name, service_config in rate_limits.items():
                ConfigValidator.validate_rate_limit_config(service_name, service_config)

        if 'cache' in config:
            ConfigValidator.validate_cache_config(config['cache'])

        health = config.get('health')
        if health is not None:
            if not isinstance(health, dict):
                raise ConfigError("health配置必须是字典类型")
            ConfigValidator.validate_interval('health', health.get('interval'))
            components = health.get('components', {}) or {}
            if not isinstance(components, dict):
                raise ConfigError("health.components配置必须是字典类型")
            for component, component_config in components.items():
                ConfigValidator.validate_component_config(component, component_config)

        alerts = config.get('alerts')
        if alerts is not None:
            if not isinstance(alerts, dict):
                raise ConfigError("alerts配置必须是字典类型")
            ConfigValidator.validate_interval('alerts', alerts.get('interval'))
            rules = alerts.get('rules', []) or []
            if not isinstance(rules, list):
                raise ConfigError("alerts.rules配置必须是列表类型")
            for rule in rules:
                ConfigValidator.validate_alert_rule(rule)

        notifications = config.get('notifications')
        if notifications is not None:
            if not isinstance(notifications, list):
                raise ConfigError("notifications配置必须是列表类型")
            for channel in notifications:
                ConfigValidator.validate_notification_config(channel)

        if 'retention' in config:
            ConfigValidator.validate_retention_config(config['retention'])

    def get_global_config(self) -> Dict[str, Any]:
        return self._section(self.config, 'global')

    def get_rate_limits_config(self) -> Dict[str, Dict[str, Any]]:
        return self._section(self.config, 'rate_limits')

    def get_cache_config(self) -> Dict[str, Any]:
        return self._section(self.config, 'cache')

    def get_health_config(self) -> Dict[str, Any]:
        return self._section(self.config, 'health')

    def get_components_config(self) -> Dict[str, Dict[str, Any]]:
        return self.get_health_config().get('components', {}) or {}

    def get_alerts_config(self) -> Dict[str, Any]:
        return self._section(self.config, 'alerts')

    def get_alert_rules(self) -> List[Dict[str, Any]]:
        return self.get_alerts_config().get('rules', []) or []

    def get_notifications_config(self) -> List[Dict[str, Any]]:
        return self.config.get('notifications', []) or []

    def get_retention_config(self) -> Dict[str, Any]:
        return self._section(self.config, 'retention')

    def is_config_changed(self) -> bool:
        """
        检查配置文件是否已修改

        Returns:
            bool: 配置文件是否已修改
        """
        try:
            if not os.path.exists(self.config_path):
                return False

            current_modified = os.path.getmtime(self.config_path)
            return self.last_modified is None or current_modified > self.last_modified

        except OSError:
            return False

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件

        Raises:
            ConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        return self.load_config()

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        old_components = self._section(old_config, 'health').get('components', {}) or {}
        new_components = self._section(new_config, 'health').get('components', {}) or {}

        added = set(new_components) - set(old_components)
        if added:
            self.logger.info(f"新增探测组件: {', '.join(sorted(added))}")

        removed = set(old_components) - set(new_components)
        if removed:
            self.logger.info(f"删除探测组件: {', '.join(sorted(removed))}")

        for component in set(old_components) & set(new_components):
            if old_components[component] != new_components[component]:
                self.logger.info(f"探测组件配置已修改: {component}")

        old_rules = self._section(old_config, 'alerts').get('rules', []) or []
        new_rules = self._section(new_config, 'alerts').get('rules', []) or []
        if len(old_rules) != len(new_rules):
            self.logger.info(f"告警规则数量变更: {len(old_rules)} -> {len(new_rules)}")
        elif old_rules != new_rules:
            self.logger.info("告警规则已修改")

        if old_config.get('rate_limits') != new_config.get('rate_limits'):
            self.logger.warning("限流配置已修改，需要重启进程后生效")

        if old_config.get('global') != new_config.get('global'):
            self.logger.info("全局配置已修改")
