"""Chain client protocol — read/write EVM RPC abstraction."""
from typing import Any, Protocol

from ..models import FeeData, TransactionReceipt


class ChainClient(Protocol):
    """Abstract interface for blockchain RPC interactions.

    Every method raises ``ChainReadError`` (or ``SendError`` for broadcasts)
    on failure; nothing is assumed to be transient.
    """

    async def call(self, tx: dict[str, Any], block: str = "latest") -> bytes: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def get_balance(self, address: str) -> int: ...

    async def get_fee_data(self) -> FeeData: ...

    async def get_transaction_count(self, address: str) -> int: ...

    async def get_chain_id(self) -> int: ...

    async def send_transaction(self, signed_tx: bytes) -> TransactionReceipt: ...
