"""Unit tests for shared connector helpers."""
from __future__ import annotations

import asyncio

import pytest

from yield_orchestrator.errors import ChainReadError
from yield_orchestrator.protocols.common import (
    gather_best_effort,
    resolve_price,
    usd_value,
)


async def _ok(items: list) -> list:
    return items


async def _fail(message: str) -> list:
    raise ChainReadError(message)


class TestResolvePrice:
    def test_direct(self) -> None:
        assert resolve_price("USDC", {"USDC": 1.0}, {}) == 1.0

    def test_alias(self) -> None:
        assert resolve_price("WAVAX", {"AVAX": 30.0}, {"WAVAX": "AVAX"}) == 30.0

    def test_missing_is_none(self) -> None:
        assert resolve_price("LINK", {"AVAX": 30.0}, {"WAVAX": "AVAX"}) is None

    def test_zero_price_is_kept(self) -> None:
        assert resolve_price("DEAD", {"DEAD": 0.0}, {}) == 0.0


class TestUsdValue:
    def test_scales_by_decimals(self) -> None:
        assert usd_value(2_500_000, 6, 1.0) == pytest.approx(2.5)

    def test_unknown_price(self) -> None:
        assert usd_value(10**18, 18, None) is None


class TestGatherBestEffort:
    @pytest.mark.asyncio
    async def test_flattens_successes(self) -> None:
        items = await gather_best_effort("t", {"a": _ok([1, 2]), "b": _ok([3])})
        assert items == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_partial_failure_omits_element(self) -> None:
        items = await gather_best_effort("t", {"a": _fail("boom"), "b": _ok([3])})
        assert items == [3]

    @pytest.mark.asyncio
    async def test_total_failure_raises(self) -> None:
        with pytest.raises(ChainReadError, match="all 2 reads failed"):
            await gather_best_effort("t", {"a": _fail("x"), "b": _fail("y")})

    @pytest.mark.asyncio
    async def test_empty(self) -> None:
        assert await gather_best_effort("t", {}) == []

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        async def cancelled() -> list:
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await gather_best_effort("t", {"a": cancelled(), "b": _ok([1])})
