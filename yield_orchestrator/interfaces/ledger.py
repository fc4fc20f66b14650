"""Usage ledger protocol — the caller-owned record of daily notional."""
from typing import Protocol


class UsageLedger(Protocol):
    async def get_daily_usage(self, protocol: str) -> float:
        """Recorded usage today plus any amounts currently reserved."""
        ...

    async def record_usage(self, protocol: str, amount_usd: float) -> None: ...

    async def try_reserve(self, protocol: str, amount_usd: float, daily_cap: float) -> bool:
        """Atomically reserve ``amount_usd`` unless it would exceed ``daily_cap``."""
        ...

    async def release(self, protocol: str, amount_usd: float) -> None: ...

    async def commit(self, protocol: str, amount_usd: float) -> None: ...
