"""EVM JSON-RPC client with endpoint fallback."""
from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ...config import ChainConfig
from ...errors import ChainReadError, RpcError, SendError
from ...models import FeeData, TransactionReceipt

logger = logging.getLogger(__name__)


def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16)


class EvmClient:
    """EVM RPC client: reads state, dry-runs, estimates and broadcasts.

    Transport failures fall through to the next configured endpoint; a
    JSON-RPC error object is the node's answer and is raised as ``RpcError``
    without trying the others.
    """

    def __init__(self, config: ChainConfig) -> None:
        self.endpoints = list(config.rpc_endpoints)
        self.timeout = config.rpc_timeout
        self.chain_id = config.chain_id
        self.receipt_timeout = config.receipt_timeout
        self.receipt_poll_interval = config.receipt_poll_interval
        self.current_rpc_index = 0

    async def rpc_call(self, method: str, params: list[Any]) -> Any:
        """Make RPC call with fallback to alternative endpoints."""
        if not self.endpoints:
            raise ChainReadError("No RPC endpoints configured")

        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}

        ssl_context = ssl.create_default_context(cafile=certifi.where())

        last_error: Exception | None = None
        for attempt in range(len(self.endpoints)):
            rpc_index = (self.current_rpc_index + attempt) % len(self.endpoints)
            rpc_url = self.endpoints[rpc_index]

            try:
                connector = aiohttp.TCPConnector(ssl=ssl_context)
                async with aiohttp.ClientSession(connector=connector) as session:
                    async with session.post(
                        rpc_url,
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self.timeout),
                    ) as response:
                        result = await response.json()
            except Exception as e:
                last_error = e
                logger.warning("RPC endpoint %s failed: %s", rpc_url, e)
                if attempt < len(self.endpoints) - 1:
                    logger.info("Trying next endpoint...")
                continue

            if rpc_index != self.current_rpc_index:
                logger.info("Switched to RPC endpoint: %s", rpc_url)
                self.current_rpc_index = rpc_index

            if "error" in result:
                error = result["error"]
                if not isinstance(error, dict):
                    error = {"message": str(error)}
                raise RpcError(
                    f"RPC Error ({method}): {error.get('message', 'unknown error')}",
                    code=error.get("code"),
                    data=error.get("data"),
                )
            return result.get("result")

        raise ChainReadError(f"All RPC endpoints failed. Last error: {last_error}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def call(self, tx: dict[str, Any], block: str = "latest") -> bytes:
        """Execute ``tx`` against ``block`` without committing (eth_call)."""
        result = await self.rpc_call("eth_call", [tx, block])
        hex_data = result or "0x"
        return bytes.fromhex(hex_data[2:] if hex_data.startswith("0x") else hex_data)

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        return _to_int(await self.rpc_call("eth_estimateGas", [tx]))

    async def get_balance(self, address: str) -> int:
        return _to_int(await self.rpc_call("eth_getBalance", [address, "latest"]))

    async def get_transaction_count(self, address: str) -> int:
        return _to_int(
            await self.rpc_call("eth_getTransactionCount", [address, "pending"])
        )

    async def get_chain_id(self) -> int:
        return _to_int(await self.rpc_call("eth_chainId", []))

    async def get_fee_data(self) -> FeeData:
        """Legacy gas price plus EIP-1559 fields when the node supports them."""
        gas_price = _to_int(await self.rpc_call("eth_gasPrice", []))

        try:
            priority = _to_int(await self.rpc_call("eth_maxPriorityFeePerGas", []))
            block = await self.rpc_call("eth_getBlockByNumber", ["latest", False])
        except RpcError as e:
            logger.debug("EIP-1559 fee data unavailable: %s", e)
            return FeeData(gas_price=gas_price)

        base_fee = (block or {}).get("baseFeePerGas")
        if base_fee is None:
            return FeeData(gas_price=gas_price)

        return FeeData(
            gas_price=gas_price,
            max_fee_per_gas=_to_int(base_fee) * 2 + priority,
            max_priority_fee_per_gas=priority,
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def send_transaction(self, signed_tx: bytes) -> TransactionReceipt:
        """Broadcast a signed transaction and wait for its receipt."""
        try:
            tx_hash = await self.rpc_call(
                "eth_sendRawTransaction", ["0x" + signed_tx.hex()]
            )
        except ChainReadError as e:
            raise SendError(f"Broadcast rejected: {e}") from e

        logger.info("Broadcast transaction %s", tx_hash)
        return await self.wait_for_receipt(tx_hash)

    async def wait_for_receipt(self, tx_hash: str) -> TransactionReceipt:
        """Poll for the mined receipt until ``receipt_timeout`` elapses."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.receipt_timeout

        while True:
            try:
                raw = await self.rpc_call("eth_getTransactionReceipt", [tx_hash])
            except ChainReadError as e:
                logger.warning("Receipt lookup for %s failed: %s", tx_hash, e)
                raw = None

            if raw:
                receipt = TransactionReceipt.from_rpc(raw)
                logger.info(
                    "Transaction %s mined in block %d (status %d)",
                    tx_hash, receipt.block_number, receipt.status,
                )
                return receipt

            if loop.time() >= deadline:
                raise SendError(
                    f"No receipt for {tx_hash} within {self.receipt_timeout}s"
                )
            await asyncio.sleep(self.receipt_poll_interval)
