"""Action pipeline — validate, build, dry-run, estimate and send one action.

States::

    PLANNED → VALIDATED → BUILT → DRY_RUN → GAS_ESTIMATED → SENT → CONFIRMED
                                                                  ↘ REVERTED
    REJECTED        (planning-time safety rejection)
    SEND_REJECTED   (final safety rejection immediately before signing)
    FAILED          (unsupported action, chain read/estimate/send failure,
                     timeout or cancellation)

Steps are strictly sequential and each one checks the state it starts from.
Only ``send`` has an external side effect, and it always waits for the
receipt.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, NoReturn, TypeVar

from .chains.evm.abi import checksum, decode_revert_reason
from .errors import (
    ActionBuildError,
    ChainReadError,
    GasEstimationError,
    HealthFactorError,
    OrchestratorError,
    PipelineStateError,
    RevertedError,
    RpcError,
    SendError,
    UnsupportedActionError,
    ValidationError,
)
from .interfaces.chain import ChainClient
from .interfaces.connector import Connector
from .interfaces.ledger import UsageLedger
from .interfaces.signer import Signer
from .ledger import InMemoryUsageLedger
from .models import (
    BuildResult,
    DryRunResult,
    PlanAction,
    SafetyCheck,
    TransactionReceipt,
    TransactionRequest,
)
from .safety import evaluate, merge_overlay

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineState(str, Enum):
    PLANNED = "planned"
    VALIDATED = "validated"
    BUILT = "built"
    DRY_RUN = "dry_run"
    GAS_ESTIMATED = "gas_estimated"
    SENT = "sent"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"
    REJECTED = "rejected"
    SEND_REJECTED = "send_rejected"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        PipelineState.CONFIRMED,
        PipelineState.REVERTED,
        PipelineState.REJECTED,
        PipelineState.SEND_REJECTED,
        PipelineState.FAILED,
    }
)


@dataclass(frozen=True)
class Transition:
    state: PipelineState
    detail: str = ""
    at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ActionPipeline:
    """Drives a single ``PlanAction`` through one connector.

    Args:
        connector: The connector for ``action.protocol``.
        action: The action to execute; consumed once.
        wallet: Address the transaction is sent from.
        ledger: Source of daily usage; read fresh at validation and again
            immediately before signing, when the notional is also reserved.
        step_timeout: Optional per-call timeout in seconds. A timed-out or
            cancelled call leaves the pipeline ``FAILED``; nothing is retried.
    """

    def __init__(
        self,
        connector: Connector,
        action: PlanAction,
        wallet: str,
        ledger: UsageLedger | None = None,
        step_timeout: float | None = None,
    ) -> None:
        if action.protocol != connector.protocol_name:
            raise ValueError(
                f"Action targets '{action.protocol}' but connector is "
                f"'{connector.protocol_name}'"
            )
        self._connector = connector
        self._ledger: UsageLedger = ledger or InMemoryUsageLedger()
        self._step_timeout = step_timeout
        self.action = action
        self.wallet = wallet

        self.state = PipelineState.PLANNED
        self.history: list[Transition] = [Transition(PipelineState.PLANNED)]
        self.check: SafetyCheck | None = None
        self.final_check: SafetyCheck | None = None
        self.transaction: TransactionRequest | None = None
        self.dry_run_result: DryRunResult | None = None
        self.receipt: TransactionReceipt | None = None
        self.error: str | None = None

    @property
    def chain(self) -> ChainClient:
        return self._connector.chain

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _transition(self, state: PipelineState, detail: str = "") -> None:
        self.state = state
        self.history.append(Transition(state, detail))
        log = logger.warning if state in TERMINAL_STATES - {PipelineState.CONFIRMED} else logger.info
        log(
            "%s %s via %s → %s%s",
            self.action.kind.value,
            self.action.asset,
            self.action.protocol,
            state.value,
            f" ({detail})" if detail else "",
        )

    def _fail(self, message: str) -> None:
        self.error = message
        self._transition(PipelineState.FAILED, message)

    def _require(self, expected: PipelineState, step: str) -> None:
        if self.state is not expected:
            raise PipelineStateError(
                f"Cannot {step} from state '{self.state.value}'; "
                f"expected '{expected.value}'"
            )

    async def _guard(self, awaitable: Awaitable[T], what: str) -> T:
        """Await one chain call, recording timeouts and cancellation as FAILED."""
        try:
            if self._step_timeout is None:
                return await awaitable
            return await asyncio.wait_for(awaitable, self._step_timeout)
        except asyncio.TimeoutError as e:
            message = f"{what} timed out after {self._step_timeout}s"
            self._fail(message)
            raise ChainReadError(message) from e
        except asyncio.CancelledError:
            self._fail(f"{what} cancelled")
            raise

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def _read_check_inputs(self) -> tuple[SafetyCheck | None, float]:
        """Protocol overlay and fresh daily usage; a failed read ends the pipeline."""
        try:
            overlay = await self._guard(
                self._connector.check_action(self.action, self.wallet),
                "health factor read",
            )
            usage = await self._guard(
                self._ledger.get_daily_usage(self.action.protocol), "daily usage read"
            )
        except OrchestratorError as e:
            if not self.is_terminal:
                self._fail(str(e))
            raise
        except Exception as e:
            error = ChainReadError(f"Safety check inputs could not be read: {e}")
            self._fail(str(error))
            raise error from e
        return overlay, usage

    async def validate(self) -> SafetyCheck:
        """PLANNED → VALIDATED, or REJECTED with the check's reason."""
        self._require(PipelineState.PLANNED, "validate")

        overlay, usage = await self._read_check_inputs()
        check = merge_overlay(evaluate(self.action, self._connector.config, usage), overlay)
        self.check = check

        if not check.passed:
            self._reject(PipelineState.REJECTED, check, "plan")

        self._transition(PipelineState.VALIDATED)
        return check

    def _reject(self, state: PipelineState, check: SafetyCheck, stage: str) -> NoReturn:
        self.error = check.reason
        self._transition(state, check.reason)
        generic_ok = check.notional_check and check.daily_cap_check and check.slippage_check
        if generic_ok and check.health_factor_check is False:
            raise HealthFactorError(check, stage=stage)
        raise ValidationError(check, stage=stage)

    async def build(self) -> TransactionRequest:
        """VALIDATED → BUILT; unsupported kinds and encode failures → FAILED."""
        self._require(PipelineState.VALIDATED, "build")

        if self.action.kind not in self._connector.supported_actions:
            error = UnsupportedActionError(self.action.kind, self.action.protocol)
            self._fail(str(error))
            raise error

        try:
            tx = await self._guard(
                self._connector.encode_action(self.action, self.wallet), "encode"
            )
        except OrchestratorError as e:
            if not self.is_terminal:
                self._fail(str(e))
            raise
        except Exception as e:
            error = ActionBuildError(f"Could not encode {self.action.kind.value}: {e}")
            self._fail(str(error))
            raise error from e

        self.transaction = tx
        self._transition(PipelineState.BUILT, f"to {tx.to}")
        return tx

    async def dry_run(self) -> DryRunResult:
        """BUILT → DRY_RUN. A revert is reported in the result, not raised."""
        self._require(PipelineState.BUILT, "dry-run")
        assert self.transaction is not None

        try:
            data = await self._guard(self.chain.call(self.transaction.to_rpc()), "dry run")
            result = DryRunResult(success=True, return_data=data)
        except RpcError as e:
            result = DryRunResult(
                success=False, error=decode_revert_reason(e.data) or str(e)
            )
        except OrchestratorError as e:
            if not self.is_terminal:
                self._fail(f"Dry run failed: {e}")
            raise
        except Exception as e:
            error = ChainReadError(f"Dry run failed: {e}")
            self._fail(str(error))
            raise error from e

        self.dry_run_result = result
        self._transition(
            PipelineState.DRY_RUN, "ok" if result.success else f"reverted: {result.error}"
        )
        return result

    async def estimate_gas(self) -> TransactionRequest:
        """DRY_RUN → GAS_ESTIMATED with the gas limit attached."""
        self._require(PipelineState.DRY_RUN, "estimate gas")
        assert self.transaction is not None

        try:
            gas = await self._guard(
                self.chain.estimate_gas(self.transaction.to_rpc()), "gas estimation"
            )
        except Exception as e:
            if self.is_terminal:
                raise
            error = GasEstimationError(f"Gas estimation failed: {e}")
            self._fail(str(error))
            raise error from e

        self.transaction = self.transaction.with_gas(gas)
        self._transition(PipelineState.GAS_ESTIMATED, f"gas {gas}")
        return self.transaction

    async def prepare(self, abort_on_revert: bool = False) -> BuildResult:
        """Run validate → build → dry-run → estimate.

        With ``abort_on_revert`` a failed dry run stops before estimation,
        leaving the pipeline in ``DRY_RUN`` and the transaction without a
        gas limit.
        """
        await self.validate()
        tx = await self.build()
        dry_run = await self.dry_run()
        if not dry_run.success and abort_on_revert:
            return BuildResult(transaction=tx, dry_run=dry_run)
        tx = await self.estimate_gas()
        return BuildResult(transaction=tx, dry_run=dry_run)

    async def _reserve(self) -> SafetyCheck:
        """Final check against live data, holding the notional if it passes.

        The reservation is the authoritative daily-cap check: a concurrent
        send may take the remaining headroom between the read and the
        reservation, in which case the check is re-run on fresh usage.
        """
        config = self._connector.config
        overlay, usage = await self._read_check_inputs()
        check = merge_overlay(evaluate(self.action, config, usage), overlay)
        while check.passed and not await self._ledger.try_reserve(
            self.action.protocol, self.action.amount_usd, config.daily_cap
        ):
            usage = await self._ledger.get_daily_usage(self.action.protocol)
            check = merge_overlay(evaluate(self.action, config, usage), overlay)
        return check

    async def send(self, signer: Signer) -> TransactionReceipt:
        """GAS_ESTIMATED → SENT → CONFIRMED | REVERTED.

        Re-runs the Safety Engine and the connector's overlay against live
        data first; a rejection here ends in ``SEND_REJECTED``. The notional
        stays reserved in the ledger while the transaction is in flight and
        is committed only on confirmation.
        """
        self._require(PipelineState.GAS_ESTIMATED, "send")
        assert self.transaction is not None

        check = await self._reserve()
        self.final_check = check
        if not check.passed:
            self._reject(PipelineState.SEND_REJECTED, check, "send")

        protocol, amount_usd = self.action.protocol, self.action.amount_usd
        confirmed = False
        self._transition(PipelineState.SENT)
        try:
            receipt = await self._guard(
                self._connector.send_transaction(self.transaction, signer), "send"
            )
            confirmed = True
        except RevertedError as e:
            self.receipt = e.receipt
            self.error = str(e)
            self._transition(PipelineState.REVERTED, e.receipt.transaction_hash)
            raise
        except OrchestratorError as e:
            if not self.is_terminal:
                self._fail(str(e))
            raise
        except Exception as e:
            error = SendError(f"Send failed: {e}")
            self._fail(str(error))
            raise error from e
        finally:
            if not confirmed:
                await self._ledger.release(protocol, amount_usd)

        self.receipt = receipt
        self._transition(PipelineState.CONFIRMED, receipt.transaction_hash)
        await self._ledger.commit(protocol, amount_usd)
        return receipt


# ---------------------------------------------------------------------------
# Broadcasting (shared by every connector's send_transaction)
# ---------------------------------------------------------------------------


async def sign_and_send(
    chain: ChainClient, tx: TransactionRequest, signer: Signer
) -> TransactionReceipt:
    """Fill nonce, chain id and fees, sign, broadcast and await the receipt.

    Raises ``RevertedError`` when the mined receipt has status 0.
    """
    if tx.gas is None:
        raise PipelineStateError("Transaction has no gas limit; estimate gas first")
    if signer.address.lower() != tx.from_address.lower():
        raise SendError(
            f"Signer {signer.address} does not match sender {tx.from_address}"
        )

    try:
        nonce = await chain.get_transaction_count(signer.address)
        chain_id = await chain.get_chain_id()
        fees = await chain.get_fee_data()
    except ChainReadError as e:
        raise SendError(f"Could not prepare transaction for signing: {e}") from e

    try:
        to = checksum(tx.to)
    except (TypeError, ValueError) as e:
        raise SendError(f"Invalid destination address {tx.to}: {e}") from e

    unsigned: dict[str, Any] = {
        "to": to,
        "data": tx.data,
        "value": tx.value,
        "gas": tx.gas,
        "nonce": nonce,
        "chainId": chain_id,
    }
    if fees.max_fee_per_gas is not None and fees.max_priority_fee_per_gas is not None:
        unsigned["maxFeePerGas"] = fees.max_fee_per_gas
        unsigned["maxPriorityFeePerGas"] = fees.max_priority_fee_per_gas
    else:
        unsigned["gasPrice"] = fees.gas_price

    try:
        raw = signer.sign_transaction(unsigned)
    except Exception as e:
        raise SendError(f"Signing failed: {e}") from e
    receipt = await chain.send_transaction(raw)
    if not receipt.succeeded:
        raise RevertedError(receipt)
    return receipt
