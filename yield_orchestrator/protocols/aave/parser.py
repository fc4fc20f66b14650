"""Pure decoding of Aave v3 pool responses — no I/O."""
from __future__ import annotations

import math
from dataclasses import dataclass

from ...chains.evm.abi import decode_result

RAY = 10**27
# Aave reports account values in the market's base currency (USD, 8 decimals).
BASE_CURRENCY_DECIMALS = 8
HEALTH_FACTOR_DECIMALS = 18

# Static layout of ReserveDataLegacy as returned by Pool.getReserveData.
_RESERVE_DATA_TYPES = [
    "uint256",  # configuration
    "uint128",  # liquidityIndex
    "uint128",  # currentLiquidityRate
    "uint128",  # variableBorrowIndex
    "uint128",  # currentVariableBorrowRate
    "uint128",  # currentStableBorrowRate
    "uint40",  # lastUpdateTimestamp
    "uint16",  # id
    "address",  # aTokenAddress
    "address",  # stableDebtTokenAddress
    "address",  # variableDebtTokenAddress
    "address",  # interestRateStrategyAddress
    "uint128",  # accruedToTreasury
    "uint128",  # unbacked
    "uint128",  # isolationModeTotalDebt
]

_ACCOUNT_DATA_TYPES = ["uint256"] * 6


@dataclass(frozen=True)
class ReserveData:
    liquidity_rate: int
    variable_borrow_rate: int
    a_token: str
    variable_debt_token: str


@dataclass(frozen=True)
class AccountData:
    """User account totals, already scaled to USD and plain fractions."""

    collateral_usd: float
    debt_usd: float
    available_borrows_usd: float
    liquidation_threshold: float
    ltv: float
    health_factor: float


def decode_reserve_data(data: bytes) -> ReserveData:
    fields = decode_result(_RESERVE_DATA_TYPES, data)
    return ReserveData(
        liquidity_rate=fields[2],
        variable_borrow_rate=fields[4],
        a_token=fields[8],
        variable_debt_token=fields[10],
    )


def decode_account_data(data: bytes) -> AccountData:
    """Decode getUserAccountData.

    With no debt Aave reports ``type(uint256).max`` as the health factor;
    that and a zero debt both map to ``inf``.
    """
    collateral, debt, available, threshold_bps, ltv_bps, hf_raw = decode_result(
        _ACCOUNT_DATA_TYPES, data
    )
    scale = 10**BASE_CURRENCY_DECIMALS
    health_factor = (
        math.inf
        if debt == 0 or hf_raw == 2**256 - 1
        else hf_raw / 10**HEALTH_FACTOR_DECIMALS
    )
    return AccountData(
        collateral_usd=collateral / scale,
        debt_usd=debt / scale,
        available_borrows_usd=available / scale,
        liquidation_threshold=threshold_bps / 10_000,
        ltv=ltv_bps / 10_000,
        health_factor=health_factor,
    )


def rate_to_apr(rate_ray: int) -> float:
    """Convert a per-year ray rate to an APR percentage.

    Aave rates are already annualised, so no time scaling applies.

    Examples:
        5 * 10**25 → 5.0
    """
    return rate_ray * 100 / RAY


def is_listed(a_token: str) -> bool:
    return int(a_token, 16) != 0
