"""Multi-protocol DeFi yield orchestrator."""
from .config import load_config
from .ledger import InMemoryUsageLedger
from .pipeline import ActionPipeline, PipelineState
from .services import Orchestrator
from .signers import LocalAccountSigner

__all__ = [
    "ActionPipeline",
    "InMemoryUsageLedger",
    "LocalAccountSigner",
    "Orchestrator",
    "PipelineState",
    "load_config",
]
