"""Safety Engine: pure checks evaluated before anything reaches a signer.

``evaluate`` is protocol-agnostic and stateless: the same action, limits and
usage always produce the same ``SafetyCheck``. Lending connectors layer a
health-factor verdict on top with ``health_factor_overlay`` and
``merge_overlay``.
"""
from __future__ import annotations

import math
import time

from .config import ProtocolConfig
from .models import ActionKind, PlanAction, SafetyCheck

BPS_DENOMINATOR = 10_000


def evaluate(
    action: PlanAction, config: ProtocolConfig, daily_usage: float
) -> SafetyCheck:
    """Evaluate an action against per-protocol limits.

    Every predicate runs; ``reason`` reports the first violation in the
    order notional → daily cap → slippage.
    """
    notional_check = action.amount_usd <= config.max_notional_per_tx
    daily_cap_check = daily_usage + action.amount_usd <= config.daily_cap
    slippage_check = action.slippage_bps <= config.max_slippage_bps

    reason = ""
    if not notional_check:
        reason = (
            f"Amount ${action.amount_usd:,.2f} exceeds max notional per tx "
            f"${config.max_notional_per_tx:,.2f}"
        )
    elif not daily_cap_check:
        reason = (
            f"Daily usage ${daily_usage + action.amount_usd:,.2f} exceeds daily cap "
            f"${config.daily_cap:,.2f}"
        )
    elif not slippage_check:
        reason = (
            f"Slippage {action.slippage_bps} bps exceeds max "
            f"{config.max_slippage_bps} bps"
        )

    return SafetyCheck(
        passed=notional_check and daily_cap_check and slippage_check,
        reason=reason,
        notional_check=notional_check,
        daily_cap_check=daily_cap_check,
        slippage_check=slippage_check,
    )


def merge_overlay(check: SafetyCheck, overlay: SafetyCheck | None) -> SafetyCheck:
    """Fold a protocol overlay into the generic result.

    The generic reason keeps priority; the overlay's reason surfaces only
    when the generic predicates all pass.
    """
    if overlay is None:
        return check
    return SafetyCheck(
        passed=check.passed and overlay.passed,
        reason=check.reason or overlay.reason,
        notional_check=check.notional_check,
        daily_cap_check=check.daily_cap_check,
        slippage_check=check.slippage_check,
        health_factor_check=overlay.health_factor_check,
    )


# ---------------------------------------------------------------------------
# Health factor
# ---------------------------------------------------------------------------


def calc_health_factor(
    collateral_usd: float, debt_usd: float, liquidation_threshold: float
) -> float:
    """health_factor = collateral * liquidation_threshold / debt.

    ``liquidation_threshold`` is a fraction (0.825 = 82.5%).
    """
    if debt_usd <= 0:
        return math.inf
    return collateral_usd * liquidation_threshold / debt_usd


def project_health_factor(
    kind: ActionKind,
    amount_usd: float,
    collateral_usd: float,
    debt_usd: float,
    liquidation_threshold: float,
) -> float:
    """Health factor after applying ``kind`` for ``amount_usd``."""
    if kind is ActionKind.BORROW:
        debt_usd += amount_usd
    elif kind is ActionKind.REPAY:
        debt_usd = max(debt_usd - amount_usd, 0.0)
    elif kind is ActionKind.WITHDRAW:
        collateral_usd = max(collateral_usd - amount_usd, 0.0)
    return calc_health_factor(collateral_usd, debt_usd, liquidation_threshold)


def health_factor_overlay(
    kind: ActionKind,
    current: float,
    projected: float,
    minimum: float,
) -> SafetyCheck:
    """Verdict for a lending action given the live and projected health factor.

    A repay never lowers the health factor, so it passes even when the
    account is still under the minimum afterwards.
    """
    ok = projected >= minimum or (kind is ActionKind.REPAY and projected >= current)
    reason = ""
    if not ok:
        reason = (
            f"Health factor {projected:.4f} after {kind.value} below minimum "
            f"{minimum:.2f} (current {current:.4f})"
        )
    return SafetyCheck(
        passed=ok,
        reason=reason,
        notional_check=True,
        daily_cap_check=True,
        slippage_check=True,
        health_factor_check=ok,
    )


# ---------------------------------------------------------------------------
# Slippage / deadline helpers
# ---------------------------------------------------------------------------


def calc_min_amount_out(amount: int, slippage_bps: int) -> int:
    """Lower bound on an output amount after slippage, in base units."""
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValueError(f"slippage_bps must be within 0-10000, got {slippage_bps}")
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def bps_to_fraction(bps: int) -> float:
    return bps / BPS_DENOMINATOR


def fraction_to_bps(fraction: float) -> int:
    return round(fraction * BPS_DENOMINATOR)


def deadline_from_now(minutes: int = 20, now: float | None = None) -> int:
    """Absolute unix timestamp ``minutes`` from ``now``."""
    if now is None:
        now = time.time()
    return int(now) + minutes * 60
