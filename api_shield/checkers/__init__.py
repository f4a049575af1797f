"""健康探测器模块"""

from .base import BaseProbe
from .circuit_checker import CircuitBreakerProbe, status_for_state
from .factory import ProbeFactory, probe_factory, register_probe
from .rpc_checker import RpcProbe
from .storage_checker import RedisStorageProbe, StorageProbe

__all__ = ['BaseProbe', 'ProbeFactory', 'probe_factory', 'register_probe',
           'RpcProbe', 'StorageProbe', 'RedisStorageProbe',
           'CircuitBreakerProbe', 'status_for_state']
