"""Pure AMM math for TraderJoe pairs — no I/O."""
from __future__ import annotations


def opportunity_id(symbol_a: str, symbol_b: str) -> str:
    """Stable opportunity id for a swap pair.

    Examples:
        ("WAVAX", "USDC") → "tj-wavax-usdc-swap"
    """
    return f"tj-{symbol_a.lower()}-{symbol_b.lower()}-swap"


def order_reserves(
    token_a: str, token0: str, reserve0: int, reserve1: int
) -> tuple[int, int]:
    """Return (reserve_a, reserve_b) given the pair's token0."""
    if token_a.lower() == token0.lower():
        return reserve0, reserve1
    return reserve1, reserve0


def quote(amount_a: int, reserve_a: int, reserve_b: int) -> int:
    """Equivalent amount of B for ``amount_a`` of A at the current ratio."""
    if amount_a <= 0:
        raise ValueError("amount must be positive")
    if reserve_a <= 0 or reserve_b <= 0:
        raise ValueError("pair has no liquidity")
    return amount_a * reserve_b // reserve_a


def removal_amounts(
    liquidity: int, reserve_a: int, reserve_b: int, total_supply: int
) -> tuple[int, int]:
    """Underlying (amount_a, amount_b) returned for burning ``liquidity``."""
    if total_supply <= 0:
        raise ValueError("pair has no liquidity")
    return liquidity * reserve_a // total_supply, liquidity * reserve_b // total_supply


def pair_tvl(
    reserve_a: int,
    decimals_a: int,
    price_a: float | None,
    reserve_b: int,
    decimals_b: int,
    price_b: float | None,
) -> float | None:
    """USD value locked in a pair; ``None`` unless both prices are known."""
    if price_a is None or price_b is None:
        return None
    return reserve_a / 10**decimals_a * price_a + reserve_b / 10**decimals_b * price_b
