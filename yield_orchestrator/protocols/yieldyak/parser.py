"""Pure share math and APY payload parsing for YieldYak vaults — no I/O."""
from __future__ import annotations

from typing import Any

# pricePerShare is expressed in underlying units per 1e18 shares.
SHARE_SCALE = 10**18


def shares_to_underlying(shares: int, price_per_share: int) -> int:
    return shares * price_per_share // SHARE_SCALE


def underlying_to_shares(amount: int, price_per_share: int) -> int:
    if price_per_share <= 0:
        raise ValueError("vault reports a zero price per share")
    return amount * SHARE_SCALE // price_per_share


def parse_apys(payload: Any) -> dict[str, float]:
    """Map lowercased vault address → APY percentage.

    Accepts the API's ``{address: {"apy": x, ...}}`` shape as well as a flat
    ``{address: x}``; entries without a numeric APY are dropped.

    Examples:
        {"0xAbC": {"apr": 9.1, "apy": 9.5}} → {"0xabc": 9.5}
    """
    if not isinstance(payload, dict):
        return {}

    apys: dict[str, float] = {}
    for address, entry in payload.items():
        value = entry.get("apy") if isinstance(entry, dict) else entry
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            apys[str(address).lower()] = float(value)
    return apys
