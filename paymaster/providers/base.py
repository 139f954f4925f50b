from abc import ABC, abstractmethod
from typing import Any, Dict, Protocol

from ..core.userop import UserOperation, UserOpGasEstimate


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: float = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class ChainClient(Protocol):
    """The narrow slice of a chain node the sponsorship engine relies on."""

    async def estimate_gas(self, op: UserOperation) -> UserOpGasEstimate:
        """Gas the operation is expected to need, per field"""
        ...

    async def get_gas_price(self) -> int:
        """Current network gas price in wei"""
        ...

    async def get_balance(self, address: str) -> int:
        """Balance of ``address`` in wei"""
        ...
