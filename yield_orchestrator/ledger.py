"""In-memory daily usage ledger keyed by protocol and UTC day."""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Callable

logger = logging.getLogger(__name__)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


class InMemoryUsageLedger:
    """Daily notional per protocol, reset at UTC midnight.

    Amounts reserved for in-flight sends count towards the day's usage until
    they are committed or released. Process-local; callers that need
    durability supply their own ``UsageLedger``.
    """

    def __init__(self, today: Callable[[], date] = _utc_today) -> None:
        self._today = today
        self._usage: dict[tuple[str, date], float] = defaultdict(float)
        self._reserved: dict[str, float] = defaultdict(float)
        self._lock = asyncio.Lock()

    def _total(self, protocol: str) -> float:
        return self._usage.get((protocol, self._today()), 0.0) + self._reserved.get(
            protocol, 0.0
        )

    async def get_daily_usage(self, protocol: str) -> float:
        return self._total(protocol)

    async def record_usage(self, protocol: str, amount_usd: float) -> None:
        key = (protocol, self._today())
        self._usage[key] += amount_usd
        logger.info(
            "Recorded $%.2f for %s (today: $%.2f)", amount_usd, protocol, self._usage[key]
        )

    async def try_reserve(self, protocol: str, amount_usd: float, daily_cap: float) -> bool:
        """Hold ``amount_usd`` against today's cap; ``False`` if it would exceed it."""
        async with self._lock:
            if self._total(protocol) + amount_usd > daily_cap:
                logger.warning(
                    "Reservation of $%.2f for %s refused (in use: $%.2f, cap $%.2f)",
                    amount_usd, protocol, self._total(protocol), daily_cap,
                )
                return False
            self._reserved[protocol] += amount_usd
            return True

    async def release(self, protocol: str, amount_usd: float) -> None:
        async with self._lock:
            self._reserved[protocol] = max(self._reserved[protocol] - amount_usd, 0.0)

    async def commit(self, protocol: str, amount_usd: float) -> None:
        """Turn a reservation into recorded usage."""
        async with self._lock:
            self._reserved[protocol] = max(self._reserved[protocol] - amount_usd, 0.0)
        await self.record_usage(protocol, amount_usd)
