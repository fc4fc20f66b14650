"""Data models — all frozen (immutable)."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any


class ActionKind(str, Enum):
    """Closed set of operations a connector may be asked to encode."""

    SWAP = "swap"
    ADD_LIQUIDITY = "lp_add"
    REMOVE_LIQUIDITY = "lp_remove"
    SUPPLY = "supply"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    VAULT_DEPOSIT = "deposit"
    VAULT_WITHDRAW = "withdraw_vault"


# Which token field an action operates on.
_INBOUND_KINDS = frozenset(
    {ActionKind.SUPPLY, ActionKind.BORROW, ActionKind.VAULT_DEPOSIT}
)
_PAIR_KINDS = frozenset(
    {ActionKind.SWAP, ActionKind.ADD_LIQUIDITY, ActionKind.REMOVE_LIQUIDITY}
)


@dataclass(frozen=True)
class Opportunity:
    """A discoverable yield source, regenerated on every discovery call."""

    id: str
    protocol: str
    apr: float
    token_address: str
    token_symbol: str
    est_gas_usd: float
    risk_score: float
    vol: float | None = None
    il_risk: float | None = None
    tvl: float | None = None


@dataclass(frozen=True)
class Position:
    """A wallet's existing stake. ``balance`` is in token base units.

    ``balance_usd`` is ``None`` when no price was available for the token.
    """

    id: str
    protocol: str
    token_address: str
    token_symbol: str
    balance: int
    balance_usd: float | None
    apr: float | None = None
    health_factor: float | None = None


@dataclass(frozen=True)
class PlanAction:
    """A proposed state-changing operation awaiting validation/execution."""

    kind: ActionKind
    protocol: str
    from_token: str
    to_token: str
    amount: int
    amount_usd: float
    slippage_bps: int
    deadline: int
    estimated_gas: int = 0
    estimated_gas_usd: float = 0.0
    risk_score: float = 0.0

    def __post_init__(self) -> None:
        if not isinstance(self.kind, ActionKind):
            object.__setattr__(self, "kind", ActionKind(self.kind))
        if self.amount < 0:
            raise ValueError(f"amount must be non-negative, got {self.amount}")
        if self.amount_usd < 0:
            raise ValueError(f"amount_usd must be non-negative, got {self.amount_usd}")
        if not 0 <= self.slippage_bps <= 10_000:
            raise ValueError(
                f"slippage_bps must be within 0-10000, got {self.slippage_bps}"
            )
        if self.kind in _PAIR_KINDS:
            if not self.from_token or not self.to_token:
                raise ValueError(f"{self.kind.value} requires both from_token and to_token")
        elif not self.asset:
            side = "to_token" if self.kind in _INBOUND_KINDS else "from_token"
            raise ValueError(f"{self.kind.value} requires {side}")

    @property
    def asset(self) -> str:
        """The token the protocol call operates on.

        Supply, borrow and vault deposits move value *into* ``to_token``;
        everything else is keyed on ``from_token``.
        """
        if self.kind in _INBOUND_KINDS:
            return self.to_token
        return self.from_token


@dataclass(frozen=True)
class SafetyCheck:
    """Outcome of one Safety Engine evaluation."""

    passed: bool
    notional_check: bool
    daily_cap_check: bool
    slippage_check: bool
    reason: str = ""
    health_factor_check: bool | None = None


@dataclass(frozen=True)
class TransactionRequest:
    """An unsigned EVM call. ``gas`` is attached after estimation."""

    to: str
    data: str
    from_address: str
    value: int = 0
    gas: int | None = None

    def with_gas(self, gas: int) -> TransactionRequest:
        return replace(self, gas=gas)

    def to_rpc(self) -> dict[str, Any]:
        """Render as a JSON-RPC call object (hex quantities)."""
        tx: dict[str, Any] = {
            "from": self.from_address,
            "to": self.to,
            "data": self.data,
            "value": hex(self.value),
        }
        if self.gas is not None:
            tx["gas"] = hex(self.gas)
        return tx


@dataclass(frozen=True)
class DryRunResult:
    success: bool
    return_data: bytes = b""
    error: str | None = None


@dataclass(frozen=True)
class FeeData:
    gas_price: int
    max_fee_per_gas: int | None = None
    max_priority_fee_per_gas: int | None = None


@dataclass(frozen=True)
class TransactionReceipt:
    """Mined receipt. ``raw`` keeps the node's full response."""

    transaction_hash: str
    status: int
    block_number: int
    gas_used: int
    effective_gas_price: int = 0
    logs: tuple[dict[str, Any], ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, raw: dict[str, Any]) -> TransactionReceipt:
        return cls(
            transaction_hash=raw.get("transactionHash", ""),
            status=_quantity(raw.get("status")),
            block_number=_quantity(raw.get("blockNumber")),
            gas_used=_quantity(raw.get("gasUsed")),
            effective_gas_price=_quantity(raw.get("effectiveGasPrice")),
            logs=tuple(raw.get("logs", [])),
            raw=dict(raw),
        )


@dataclass(frozen=True)
class BuildResult:
    """What ``build_transaction`` hands back: the gas-limited tx and its dry run."""

    transaction: TransactionRequest
    dry_run: DryRunResult


def _quantity(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(str(value), 16) if str(value).startswith("0x") else int(value)
