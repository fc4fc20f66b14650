"""Orchestration service — wires config into chain clients, connectors and pipelines."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from ..aggregator import Aggregator, summarize, top_by_rate, total_balance_usd
from ..chains.evm import EvmClient
from ..config import AppConfig
from ..errors import SendError
from ..interfaces.connector import Connector
from ..interfaces.ledger import UsageLedger
from ..interfaces.price_oracle import PriceOracle
from ..interfaces.signer import Signer
from ..ledger import InMemoryUsageLedger
from ..models import ActionKind, Opportunity, PlanAction, Position, TransactionReceipt
from ..oracles import PythOracle
from ..pipeline import ActionPipeline
from ..protocols.aave import AaveAdapter
from ..protocols.traderjoe import TraderJoeAdapter
from ..protocols.yieldyak import YieldYakAdapter
from ..safety import deadline_from_now

logger = logging.getLogger(__name__)

# Registry of connector factories keyed by protocol name.
_PROTOCOL_FACTORIES: dict[str, Any] = {
    "traderjoe": TraderJoeAdapter,
    "aave": AaveAdapter,
    "yieldyak": YieldYakAdapter,
}


class Orchestrator:
    """Discovers opportunities, reads positions and drives action pipelines."""

    def __init__(
        self,
        config: AppConfig,
        ledger: UsageLedger | None = None,
        oracle: PriceOracle | None = None,
    ) -> None:
        self._config = config
        self._ledger: UsageLedger = ledger or InMemoryUsageLedger()
        self._oracle: PriceOracle = oracle or PythOracle(config.price_oracle.pyth)

        # Build chain clients
        self._chain_clients: dict[str, EvmClient] = {}
        for chain_name, chain_cfg in config.chains.items():
            self._chain_clients[chain_name] = EvmClient(chain_cfg)

        # Build connectors
        self._connectors: dict[str, Connector] = {}
        for proto_name, proto_cfg in config.protocols.items():
            factory = _PROTOCOL_FACTORIES.get(proto_name)
            if not factory:
                logger.warning("No connector factory for protocol '%s'", proto_name)
                continue
            chain_client = self._chain_clients[proto_cfg.chain]
            self._connectors[proto_name] = factory(
                chain_client, proto_cfg, self._oracle, self._ledger
            )

        self._aggregator = Aggregator(list(self._connectors.values()))

    @property
    def connectors(self) -> dict[str, Connector]:
        return dict(self._connectors)

    @property
    def aggregator(self) -> Aggregator:
        return self._aggregator

    @property
    def ledger(self) -> UsageLedger:
        return self._ledger

    def connector(self, protocol: str) -> Connector:
        try:
            return self._connectors[protocol]
        except KeyError:
            raise ValueError(f"No connector configured for protocol '{protocol}'") from None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def discover(self) -> list[Opportunity]:
        return await self._aggregator.discover_all()

    async def positions(self, wallet: str) -> list[Position]:
        """Positions across the protocols configured for ``wallet``.

        Unknown wallets are read across every connector.
        """
        protocols = next(
            (w.protocols for w in self._config.wallets if w.address.lower() == wallet.lower()),
            (),
        )
        if not protocols:
            return await self._aggregator.read_all_positions(wallet)
        aggregator = Aggregator(
            [self._connectors[p] for p in protocols if p in self._connectors]
        )
        return await aggregator.read_all_positions(wallet)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def make_action(
        self,
        kind: ActionKind | str,
        protocol: str,
        from_token: str,
        to_token: str,
        amount: int,
        amount_usd: float,
        slippage_bps: int | None = None,
        deadline_minutes: int | None = None,
    ) -> PlanAction:
        """Build a ``PlanAction`` filling slippage, deadline and gas from config."""
        cfg = self.connector(protocol).config
        minutes = (
            deadline_minutes if deadline_minutes is not None else cfg.default_deadline_minutes
        )
        return PlanAction(
            kind=ActionKind(kind),
            protocol=protocol,
            from_token=from_token,
            to_token=to_token,
            amount=amount,
            amount_usd=amount_usd,
            slippage_bps=slippage_bps if slippage_bps is not None else cfg.default_slippage_bps,
            deadline=deadline_from_now(minutes),
            estimated_gas_usd=cfg.estimated_gas_usd,
        )

    def plan(
        self, action: PlanAction, wallet: str, step_timeout: float | None = None
    ) -> ActionPipeline:
        return ActionPipeline(
            self.connector(action.protocol), action, wallet, self._ledger, step_timeout
        )

    async def build(
        self, action: PlanAction, wallet: str, abort_on_revert: bool = False
    ) -> ActionPipeline:
        """Validate, encode, dry-run and estimate; never sends."""
        pipeline = self.plan(action, wallet)
        await pipeline.prepare(abort_on_revert=abort_on_revert)
        return pipeline

    async def execute(
        self, action: PlanAction, wallet: str, signer: Signer
    ) -> TransactionReceipt:
        """Build then send, refusing to broadcast a transaction whose dry run reverted."""
        pipeline = await self.build(action, wallet, abort_on_revert=True)
        dry_run = pipeline.dry_run_result
        if dry_run is not None and not dry_run.success:
            raise SendError(f"Dry run reverted, not sending: {dry_run.error}")
        return await pipeline.send(signer)

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _format_wallet(address: str) -> str:
        if len(address) > 16:
            return f"{address[:10]}...{address[-6:]}"
        return address

    @staticmethod
    def _now_str() -> str:
        return datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

    @staticmethod
    def _usd(value: float | None) -> str:
        return f"${value:,.2f}" if value is not None else "n/a"

    def format_opportunities(self, opportunities: list[Opportunity], top: int = 10) -> str:
        summary = summarize(opportunities)
        lines = [f"📈 Opportunities ({summary.count})", ""]
        for opp in top_by_rate(opportunities, top):
            lines.append(
                f"{opp.protocol:<10} {opp.token_symbol:<14} APR {opp.apr:>7.2f}%  "
                f"risk {opp.risk_score:.2f}  TVL {self._usd(opp.tvl)}"
            )
        if summary.best is not None:
            lines += [
                "",
                f"Best: {summary.best.id} at {summary.best.apr:.2f}%",
                f"Average risk: {summary.average_risk:.2f}",
                "By protocol: "
                + ", ".join(f"{name} {n}" for name, n in sorted(summary.by_protocol.items())),
            ]
        lines += ["", f"{self._now_str()} UTC"]
        return "\n".join(lines)

    def format_positions(self, wallet: str, positions: list[Position]) -> str:
        lines = [f"💼 {self._format_wallet(wallet)}", ""]
        if not positions:
            lines.append("No active positions found.")
        for pos in positions:
            hf = "" if pos.health_factor is None else f"  HF {pos.health_factor:.2f}"
            apr = "" if pos.apr is None else f"  APR {pos.apr:.2f}%"
            lines.append(
                f"{pos.protocol:<10} {pos.token_symbol:<10} {self._usd(pos.balance_usd)}{apr}{hf}"
            )
        lines += [
            "",
            f"Total: {self._usd(total_balance_usd(positions))}",
            f"{self._now_str()} UTC",
        ]
        return "\n".join(lines)
