"""Helpers shared by every connector — price lookup and best-effort fan-out."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, TypeVar

from ..errors import ChainReadError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def resolve_price(
    token_symbol: str,
    prices: dict[str, float],
    token_aliases: dict[str, str],
) -> float | None:
    """Resolve the price for a token, falling back to aliases.

    Returns ``None`` when neither the symbol nor its alias has a price.
    """
    price = prices.get(token_symbol)
    if price is None and token_symbol in token_aliases:
        price = prices.get(token_aliases[token_symbol])
    return price


def usd_value(raw_amount: int, decimals: int, price: float | None) -> float | None:
    """Convert base units to USD; ``None`` when the price is unknown."""
    if price is None:
        return None
    return raw_amount / 10**decimals * price


async def gather_best_effort(
    label: str, tasks: dict[str, Awaitable[list[T]]]
) -> list[T]:
    """Run per-element reads concurrently and flatten the successes.

    A failing element is logged and omitted. If every element fails the
    source as a whole is unavailable and ``ChainReadError`` is raised.
    """
    if not tasks:
        return []

    results = await asyncio.gather(*tasks.values(), return_exceptions=True)

    items: list[T] = []
    failures = 0
    last_error: BaseException | None = None
    for key, result in zip(tasks, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failures += 1
            last_error = result
            logger.warning("%s: skipping %s: %s", label, key, result)
            continue
        items.extend(result)

    if failures == len(tasks):
        raise ChainReadError(f"{label}: all {failures} reads failed. Last error: {last_error}")
    return items
