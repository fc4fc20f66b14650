"""Exception taxonomy for discovery, validation and execution."""
from __future__ import annotations

from .models import ActionKind, SafetyCheck, TransactionReceipt


class OrchestratorError(Exception):
    """Base class for every error raised by the orchestrator."""


class ValidationError(OrchestratorError):
    """The Safety Engine (or a protocol overlay) rejected an action.

    ``stage`` is ``"plan"`` for the build-time check and ``"send"`` for the
    final check that guards broadcasting.
    """

    def __init__(self, check: SafetyCheck, stage: str = "plan") -> None:
        self.check = check
        self.stage = stage
        prefix = "Final safety check failed" if stage == "send" else "Safety check failed"
        super().__init__(f"{prefix}: {check.reason}")


class HealthFactorError(ValidationError):
    """A lending action would leave the account below its minimum health factor."""


class UnsupportedActionError(OrchestratorError):
    def __init__(self, kind: ActionKind, protocol: str) -> None:
        self.kind = kind
        self.protocol = protocol
        super().__init__(f"Unsupported action type: {kind.value}")


class ActionBuildError(OrchestratorError):
    """A supported action could not be encoded (unknown asset, bad amount...)."""


class ChainReadError(OrchestratorError):
    """A chain read (call, balance, fee data, estimate) failed."""


class RpcError(ChainReadError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None, data: object = None) -> None:
        self.code = code
        self.data = data
        super().__init__(message)


class GasEstimationError(ChainReadError):
    pass


class SendError(OrchestratorError):
    """Broadcasting failed or no receipt was obtained."""


class RevertedError(SendError):
    def __init__(self, receipt: TransactionReceipt) -> None:
        self.receipt = receipt
        super().__init__(
            f"Transaction {receipt.transaction_hash} reverted in block "
            f"{receipt.block_number} (gas used {receipt.gas_used})"
        )


class PipelineStateError(OrchestratorError):
    """A pipeline step was invoked out of order."""
