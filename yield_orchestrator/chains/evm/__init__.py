"""EVM JSON-RPC client and ABI helpers."""
from .client import EvmClient

__all__ = ["EvmClient"]
