"""ERC-20 reads and approvals used by every connector."""
from __future__ import annotations

import logging

from ..chains.evm.abi import decode_single, encode_call
from ..interfaces.chain import ChainClient
from ..models import TransactionRequest

logger = logging.getLogger(__name__)


async def _read(chain: ChainClient, token: str, signature: str, args: list, type_: str):
    data = await chain.call({"to": token, "data": encode_call(signature, args)})
    return decode_single(type_, data)


async def read_balance(chain: ChainClient, token: str, owner: str) -> int:
    return await _read(chain, token, "balanceOf(address)", [owner], "uint256")


async def read_allowance(
    chain: ChainClient, token: str, owner: str, spender: str
) -> int:
    return await _read(
        chain, token, "allowance(address,address)", [owner, spender], "uint256"
    )


async def read_total_supply(chain: ChainClient, token: str) -> int:
    return await _read(chain, token, "totalSupply()", [], "uint256")


def build_approve(
    token: str, spender: str, amount: int, wallet: str
) -> TransactionRequest:
    return TransactionRequest(
        to=token,
        data=encode_call("approve(address,uint256)", [spender, amount]),
        from_address=wallet,
    )


async def build_approval(
    chain: ChainClient, token: str, wallet: str, spender: str, amount: int
) -> TransactionRequest | None:
    """Approve ``spender`` for ``amount`` unless the allowance already covers it."""
    allowance = await read_allowance(chain, token, wallet, spender)
    if allowance >= amount:
        logger.debug(
            "Allowance %d of %s for %s covers %d", allowance, token, spender, amount
        )
        return None
    logger.info("Approval needed: %s allowance %d < %d", token, allowance, amount)
    return build_approve(token, spender, amount, wallet)


class TokenRegistry:
    """Caches ERC-20 symbol and decimals per token address."""

    def __init__(self, chain: ChainClient) -> None:
        self._chain = chain
        self._symbols: dict[str, str] = {}
        self._decimals: dict[str, int] = {}

    def seed(self, symbol: str, address: str) -> None:
        """Register a configured symbol so it is never read from chain."""
        self._symbols[address.lower()] = symbol

    async def symbol(self, token: str) -> str:
        key = token.lower()
        if key not in self._symbols:
            try:
                self._symbols[key] = await _read(self._chain, token, "symbol()", [], "string")
            except Exception as e:
                logger.warning("Could not read symbol of %s: %s", token, e)
                return token
        return self._symbols[key]

    async def decimals(self, token: str) -> int:
        key = token.lower()
        if key not in self._decimals:
            self._decimals[key] = await _read(self._chain, token, "decimals()", [], "uint8")
        return self._decimals[key]
