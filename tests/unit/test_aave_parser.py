"""Unit tests for Aave response decoding — pure functions, no I/O."""
from __future__ import annotations

import math

import pytest
from eth_abi import encode

from yield_orchestrator.protocols.aave.parser import (
    RAY,
    decode_account_data,
    decode_reserve_data,
    is_listed,
    rate_to_apr,
)

from conftest import A_USDC, DEBT_USDC, POOL

ZERO = "0x" + "00" * 20


def reserve_data_bytes(
    liquidity_rate: int, borrow_rate: int, a_token: str, debt_token: str
) -> bytes:
    return encode(
        [
            "uint256", "uint128", "uint128", "uint128", "uint128", "uint128",
            "uint40", "uint16", "address", "address", "address", "address",
            "uint128", "uint128", "uint128",
        ],
        [
            0, RAY, liquidity_rate, RAY, borrow_rate, 0,
            1_700_000_000, 3, a_token, ZERO, debt_token, POOL,
            0, 0, 0,
        ],
    )


class TestRateToApr:
    def test_five_percent(self) -> None:
        assert rate_to_apr(5 * 10**25) == pytest.approx(5.0)

    def test_zero(self) -> None:
        assert rate_to_apr(0) == 0.0


class TestDecodeReserveData:
    def test_fields(self) -> None:
        reserve = decode_reserve_data(
            reserve_data_bytes(3 * 10**25, 7 * 10**25, A_USDC, DEBT_USDC)
        )
        assert reserve.liquidity_rate == 3 * 10**25
        assert reserve.variable_borrow_rate == 7 * 10**25
        assert reserve.a_token.lower() == A_USDC
        assert reserve.variable_debt_token.lower() == DEBT_USDC


class TestDecodeAccountData:
    def test_scales_values(self) -> None:
        data = encode(
            ["uint256"] * 6,
            [1000 * 10**8, 500 * 10**8, 300 * 10**8, 8250, 8000, 165 * 10**16],
        )
        account = decode_account_data(data)
        assert account.collateral_usd == pytest.approx(1000.0)
        assert account.debt_usd == pytest.approx(500.0)
        assert account.available_borrows_usd == pytest.approx(300.0)
        assert account.liquidation_threshold == pytest.approx(0.825)
        assert account.ltv == pytest.approx(0.8)
        assert account.health_factor == pytest.approx(1.65)

    def test_no_debt_is_infinite(self) -> None:
        data = encode(["uint256"] * 6, [1000 * 10**8, 0, 0, 8250, 8000, 2**256 - 1])
        assert decode_account_data(data).health_factor == math.inf


class TestIsListed:
    def test_zero_address_is_unlisted(self) -> None:
        assert not is_listed(ZERO)

    def test_non_zero_is_listed(self) -> None:
        assert is_listed(A_USDC)
