"""工具模块"""

from .clock import Clock, SystemClock, ManualClock, system_clock
from .exceptions import ShieldError, ConfigError, RateLimitedError, CachePatternError
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'Clock', 'SystemClock', 'ManualClock', 'system_clock',
    'ShieldError', 'ConfigError', 'RateLimitedError', 'CachePatternError',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
