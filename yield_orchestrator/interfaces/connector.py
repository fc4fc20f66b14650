"""Connector — the capability set every protocol adapter satisfies."""
from __future__ import annotations

from typing import Protocol

from ..config import ProtocolConfig
from ..models import (
    ActionKind,
    BuildResult,
    Opportunity,
    PlanAction,
    Position,
    SafetyCheck,
    TransactionReceipt,
    TransactionRequest,
)
from .chain import ChainClient
from .signer import Signer


class Connector(Protocol):
    """Discovery, position reads, build and send for one protocol.

    Callers hold this type only; branching on protocol kind happens inside
    the concrete adapter.
    """

    chain: ChainClient
    config: ProtocolConfig

    @property
    def protocol_name(self) -> str: ...

    @property
    def supported_actions(self) -> frozenset[ActionKind]: ...

    async def discover_opportunities(self) -> list[Opportunity]: ...

    async def read_positions(self, wallet: str) -> list[Position]: ...

    async def check_action(self, action: PlanAction, wallet: str) -> SafetyCheck | None:
        """Protocol-specific overlay run after the generic Safety Engine.

        Returns ``None`` when the protocol has nothing to add.
        """
        ...

    async def encode_action(self, action: PlanAction, wallet: str) -> TransactionRequest: ...

    async def build_approval(
        self, token: str, wallet: str, amount: int
    ) -> TransactionRequest | None:
        """ERC-20 approve for the spender this protocol pulls ``token`` through.

        Returns ``None`` when the existing allowance already covers ``amount``.
        """
        ...

    async def build_transaction(self, action: PlanAction, wallet: str) -> BuildResult: ...

    async def send_transaction(
        self, tx: TransactionRequest, signer: Signer
    ) -> TransactionReceipt: ...
