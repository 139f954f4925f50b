"""
JSON-RPC chain client used for gas estimates, gas price and deposit balance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import Provider
from ..core.errors import UpstreamTimeout, UpstreamUnavailable, ValidationError
from ..core.userop import UserOperation, UserOpGasEstimate


class RpcErrorResponse(UpstreamUnavailable):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: Any):
        message = error.get("message") if isinstance(error, dict) else str(error)
        super().__init__(f"{method} returned an error: {message}", {"rpcError": error})
        self.message = message


@dataclass
class ChainConfig:
    rpc_url: str
    entry_point: str = ""


class JsonRpcChainClient(Provider):
    name = "chain"
    timeout_s = 3.0

    def __init__(self, config: ChainConfig, timeout_s: Optional[float] = None) -> None:
        self._config = config
        if timeout_s is not None:
            self.timeout_s = timeout_s
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def ready(self) -> bool:
        return bool(self._config.rpc_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "Chain RPC not configured"}

        try:
            result = await self._rpc_call("eth_chainId", [])
            return {"status": "healthy", "chainId": result}
        except (UpstreamTimeout, UpstreamUnavailable) as exc:
            return {"status": "error", "reason": exc.reason}

    async def estimate_gas(self, op: UserOperation) -> UserOpGasEstimate:
        params: list[Any] = [op.to_rpc_dict()]
        if self._config.entry_point:
            params.append(self._config.entry_point)
        try:
            result = await self._rpc_call("eth_estimateUserOperationGas", params)
        except RpcErrorResponse as exc:
            # Simulation reverted: a property of the operation, not of the node.
            raise ValidationError("userOp", "simulation", f"Gas estimation failed: {exc.message}") from exc
        if not isinstance(result, dict):
            raise UpstreamUnavailable("Invalid response for eth_estimateUserOperationGas")
        try:
            return UserOpGasEstimate.from_rpc(result)
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailable(f"Malformed gas estimate: {exc}") from exc

    async def get_gas_price(self) -> int:
        return self._parse_quantity(await self._rpc_call("eth_gasPrice", []), "eth_gasPrice")

    async def get_balance(self, address: str) -> int:
        result = await self._rpc_call("eth_getBalance", [address, "latest"])
        return self._parse_quantity(result, "eth_getBalance")

    async def aclose(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    @staticmethod
    def _parse_quantity(value: Any, method: str) -> int:
        if not isinstance(value, str):
            raise UpstreamUnavailable(f"Invalid response for {method}")
        try:
            return int(value, 16)
        except ValueError:
            raise UpstreamUnavailable(f"Invalid quantity from {method}: {value!r}") from None

    async def _rpc_call(self, method: str, params: list[Any]) -> Any:
        if not self._config.rpc_url:
            raise UpstreamUnavailable("Chain RPC not configured")
        if not self._client or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s)

        self._request_id += 1
        try:
            response = await self._client.post(
                self._config.rpc_url,
                json={"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeout(f"{method} timed out") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamUnavailable(f"{method} failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise UpstreamUnavailable(f"Invalid response for {method}")
        if "error" in payload:
            raise RpcErrorResponse(method, payload["error"])
        return payload.get("result")
