"""Protocol interfaces for the yield orchestrator."""
from .chain import ChainClient
from .connector import Connector
from .ledger import UsageLedger
from .price_oracle import PriceOracle
from .signer import Signer

__all__ = ["ChainClient", "Connector", "PriceOracle", "Signer", "UsageLedger"]
