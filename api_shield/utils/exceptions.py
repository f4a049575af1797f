"""自定义异常类和错误代码"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    VALIDATION_ERROR = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003

    # 限流与重试错误 (3000-3999)
    RATE_LIMITED = 3000
    RETRY_EXHAUSTED = 3001
    UPSTREAM_ERROR = 3002

    # 缓存错误 (4000-4999)
    CACHE_ERROR = 4000
    CACHE_PATTERN_ERROR = 4001

    # 健康探测错误 (5000-5999)
    CHECKER_INITIALIZATION_ERROR = 5000
    CONNECTION_ERROR = 5001
    TIMEOUT_ERROR = 5002
    SERVICE_UNAVAILABLE = 5003
    INVALID_RESPONSE = 5004

    # 告警错误 (6000-6999)
    ALERT_CONFIG_ERROR = 6000
    ALERT_SEND_ERROR = 6001
    ALERT_EVALUATION_ERROR = 6002

    # 调度与存储错误 (7000-7999)
    SCHEDULER_ERROR = 7000
    TASK_EXECUTION_ERROR = 7001
    STORE_ERROR = 7002


class ShieldError(Exception):
    """防护层基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(ShieldError):
    """配置相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class RateLimitedError(ShieldError):
    """上游返回限流响应（429）"""

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        retry_after: Optional[float] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if service:
            details['service'] = service
        if retry_after is not None:
            details['retry_after'] = retry_after
        super().__init__(message, ErrorCode.RATE_LIMITED, details, **kwargs)
        self.service = service
        self.retry_after = retry_after


class CacheError(ShieldError):
    """缓存相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CACHE_ERROR,
        **kwargs
    ):
        super().__init__(message, error_code, **kwargs)


class CachePatternError(CacheError):
    """缓存失效模式格式错误"""

    def __init__(self, message: str, pattern: Any = None, **kwargs):
        details = kwargs.pop('details', {})
        details['pattern'] = pattern
        super().__init__(
            message,
            ErrorCode.CACHE_PATTERN_ERROR,
            details=details,
            recoverable=False,
            **kwargs
        )


class CheckerError(ShieldError):
    """健康探测相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONNECTION_ERROR,
        component: Optional[str] = None,
        probe_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if component:
            details['component'] = component
        if probe_type:
            details['probe_type'] = probe_type
        super().__init__(message, error_code, details, **kwargs)


class CircuitOpenError(CheckerError):
    """熔断器打开，调用被拒绝"""

    def __init__(self, message: str, service: Optional[str] = None, **kwargs):
        kwargs.setdefault('recoverable', False)
        super().__init__(message, ErrorCode.SERVICE_UNAVAILABLE, component=service, **kwargs)
        self.service = service


class AlertError(ShieldError):
    """告警相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.ALERT_SEND_ERROR,
        alert_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if alert_name:
            details['alert_name'] = alert_name
        super().__init__(message, error_code, details, **kwargs)


class AlertConfigError(AlertError):
    """告警配置异常"""

    def __init__(self, message: str, alert_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.ALERT_CONFIG_ERROR,
            alert_name=alert_name,
            recoverable=False,
            **kwargs
        )


class AlertSendError(AlertError):
    """告警发送异常"""

    def __init__(self, message: str, alert_name: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.ALERT_SEND_ERROR,
            alert_name=alert_name,
            recoverable=True,
            **kwargs
        )


class SchedulerError(ShieldError):
    """调度器相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.SCHEDULER_ERROR,
        task_name: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if task_name:
            details['task_name'] = task_name
        super().__init__(message, error_code, details, **kwargs)


class StoreError(ShieldError):
    """存储相关异常"""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, ErrorCode.STORE_ERROR, **kwargs)
