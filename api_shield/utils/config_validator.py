"""配置验证工具"""

from typing import Any, Dict

from .exceptions import ConfigError

SUPPORTED_PROBE_TYPES = ['rpc', 'redis', 'circuit_breaker']
SUPPORTED_CHANNEL_TYPES = ['webhook', 'http']
VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
VALID_OPERATORS = ['>', '<', '>=', '<=', '==']
VALID_SEVERITIES = ['info', 'warning', 'error', 'critical']


def _is_positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        log_level = global_config.get('log_level')
        if log_level is not None and log_level not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

        for field in ('max_log_size', 'log_backup_count'):
            value = global_config.get(field)
            if value is not None and (not isinstance(value, int) or value <= 0):
                raise ConfigError(f"{field} 必须是正整数")

    @staticmethod
    def validate_rate_limit_config(service_name: str, config: Dict[str, Any]) -> None:
        """
        验证单个服务的限流配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"服务 '{service_name}' 的限流配置必须是字典类型")

        per_minute = config.get('requests_per_minute')
        per_second = config.get('requests_per_second')
        if (per_minute is None) == (per_second is None):
            raise ConfigError(
                f"服务 '{service_name}' 必须且只能配置 requests_per_minute 或 requests_per_second 之一")

        limit = per_minute if per_minute is not None else per_second
        if not isinstance(limit, int) or limit <= 0:
            raise ConfigError(f"服务 '{service_name}' 的请求上限必须是正整数")

        min_delay = config.get('min_delay', 0)
        if not isinstance(min_delay, (int, float)) or min_delay < 0:
            raise ConfigError(f"服务 '{service_name}' 的 min_delay 不能为负数")

        max_retries = config.get('max_retries', 3)
        if not isinstance(max_retries, int) or max_retries < 0:
            raise ConfigError(f"服务 '{service_name}' 的 max_retries 必须是非负整数")

        if not _is_positive_number(config.get('backoff_multiplier', 2.0)):
            raise ConfigError(f"服务 '{service_name}' 的 backoff_multiplier 必须大于0")

    @staticmethod
    def validate_cache_config(cache_config: Dict[str, Any]) -> None:
        if not isinstance(cache_config, dict):
            raise ConfigError("cache配置必须是字典类型")

        for field in ('default_ttl', 'cleanup_interval'):
            value = cache_config.get(field)
            if value is not None and not _is_positive_number(value):
                raise ConfigError(f"cache.{field} 必须大于0")

        max_entries = cache_config.get('max_entries')
        if max_entries is not None and (not isinstance(max_entries, int) or max_entries <= 0):
            raise ConfigError("cache.max_entries 必须是正整数")

    @staticmethod
    def validate_component_config(component: str, config: Dict[str, Any]) -> None:
        """
        验证健康探测组件配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError(f"组件 '{component}' 的配置必须是字典类型")

        if 'type' not in config:
            raise ConfigError(f"组件 '{component}' 缺少必需的配置项: type")

        probe_type = config.get('type')
        if probe_type not in SUPPORTED_PROBE_TYPES:
            raise ConfigError(
                f"组件 '{component}' 的类型 '{probe_type}' 不受支持。支持的类型: {SUPPORTED_PROBE_TYPES}")

        if probe_type == 'rpc' and 'url' not in config:
            raise ConfigError(f"组件 '{component}' 缺少必需的配置项: url")
        if probe_type == 'redis' and 'host' not in config:
            raise ConfigError(f"组件 '{component}' 缺少必需的配置项: host")

    @staticmethod
    def validate_alert_rule(rule: Dict[str, Any]) -> None:
        """
        验证告警规则

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(rule, dict):
            raise ConfigError("告警规则必须是字典类型")

        for field in ('name', 'condition'):
            if field not in rule:
                raise ConfigError(f"告警规则缺少必需的配置项: {field}")

        name = rule['name']
        condition = rule['condition']
        if not isinstance(condition, dict):
            raise ConfigError(f"告警规则 '{name}' 的 condition 必须是字典类型")

        for field in ('metric', 'operator', 'threshold'):
            if field not in condition:
                raise ConfigError(f"告警规则 '{name}' 的 condition 缺少必需的配置项: {field}")

        if condition['operator'] not in VALID_OPERATORS:
            raise ConfigError(f"告警规则 '{name}' 的 operator 必须是以下值之一: {VALID_OPERATORS}")

        if not isinstance(condition['threshold'], (int, float)):
            raise ConfigError(f"告警规则 '{name}' 的 threshold 必须是数字")

        duration = condition.get('duration')
        if duration is not None and not _is_positive_number(duration):
            raise ConfigError(f"告警规则 '{name}' 的 duration 必须大于0")

        severity = rule.get('severity', 'warning')
        if severity not in VALID_SEVERITIES:
            raise ConfigError(f"告警规则 '{name}' 的 severity 必须是以下值之一: {VALID_SEVERITIES}")

        cooldown = rule.get('cooldown', 300)
        if not isinstance(cooldown, (int, float)) or cooldown < 0:
            raise ConfigError(f"告警规则 '{name}' 的 cooldown 不能为负数")

    @staticmethod
    def validate_notification_config(channel: Dict[str, Any]) -> None:
        if not isinstance(channel, dict):
            raise ConfigError("通知渠道配置必须是字典类型")

        for field in ('name', 'type', 'url'):
            if field not in channel:
                raise ConfigError(f"通知渠道配置缺少必需的配置项: {field}")

        if channel['type'] not in SUPPORTED_CHANNEL_TYPES:
            raise ConfigError(f"通知渠道类型必须是以下值之一: {SUPPORTED_CHANNEL_TYPES}")

        severity = channel.get('min_severity', 'info')
        if severity not in VALID_SEVERITIES:
            raise ConfigError(f"通知渠道 '{channel['name']}' 的 min_severity 无效: {severity}")

    @staticmethod
    def validate_retention_config(retention_config: Dict[str, Any]) -> None:
        if not isinstance(retention_config, dict):
            raise ConfigError("retention配置必须是字典类型")

        for field in ('metrics_days', 'audit_log_days', 'resolved_alert_days', 'interval'):
            value = retention_config.get(field)
            if value is not None and not _is_positive_number(value):
                raise ConfigError(f"retention.{field} 必须大于0")

    @staticmethod
    def validate_interval(section: str, value: Any) -> None:
        if value is not None and not _is_positive_number(value):
            raise ConfigError(f"{section}.interval 必须大于0")
