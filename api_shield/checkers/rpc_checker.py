"""区块链 RPC 节点探测器"""

from typing import Any, Dict

import aiohttp

from .base import BaseProbe
from .factory import register_probe
from ..models.records import HealthRecord, HealthStatus


@register_probe('rpc')
class RpcProbe(BaseProbe):
    """JSON-RPC 节点探测器

    向节点发送一次 JSON-RPC 请求（默认 eth_blockNumber），
    可达即为 healthy，否则为 down，不区分降级。
    """

    def validate_config(self) -> bool:
        url = self.config.get('url')
        if not isinstance(url, str) or not url.startswith(('http://', 'https://')):
            return False

        method = self.config.get('method', 'eth_blockNumber')
        if not isinstance(method, str) or not method:
            return False

        return isinstance(self.config.get('params', []), list)

    def _build_payload(self) -> Dict[str, Any]:
        return {
            'jsonrpc': '2.0',
            'method': self.config.get('method', 'eth_blockNumber'),
            'params': self.config.get('params', []),
            'id': 1,
        }

    async def check(self) -> HealthRecord:
        """
        执行 RPC 探测

        Returns:
            HealthRecord: 可达时 error_rate 为0，否则为1
        """
        start_time = self.clock.time()
        metadata: Dict[str, Any] = {'url': self.config.get('url')}
        if 'chain' in self.config:
            metadata['chain'] = self.config['chain']

        try:
            timeout = aiohttp.ClientTimeout(total=self.get_timeout())
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.config['url'], json=self._build_payload(),
                                        headers=self.config.get('headers', {})) as response:
                    metadata['status_code'] = response.status
                    if response.status != 200:
                        raise ValueError(f"HTTP状态码异常: {response.status}")
                    body = await response.json(content_type=None)

            if not isinstance(body, dict) or 'error' in body:
                error = body.get('error') if isinstance(body, dict) else body
                raise ValueError(f"RPC 返回错误: {error}")

            result = body.get('result')
            metadata['result'] = result
            response_time = self.clock.time() - start_time
            self.logger.debug(f"RPC 节点 {self.name} 探测成功，耗时: {response_time:.3f}秒")

            return HealthRecord(
                component=self.name,
                status=HealthStatus.HEALTHY,
                last_check=self.clock.time(),
                response_time=response_time,
                error_rate=0.0,
                metadata=metadata
            )

        except Exception as e:
            self.logger.warning(f"RPC 节点 {self.name} 不可达: {e}")
            metadata['error'] = str(e)
            return HealthRecord(
                component=self.name,
                status=HealthStatus.DOWN,
                last_check=self.clock.time(),
                response_time=None,
                error_rate=1.0,
                metadata=metadata
            )
