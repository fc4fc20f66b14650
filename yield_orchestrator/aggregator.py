"""Aggregator — fans discovery and position reads out across connectors."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from .interfaces.connector import Connector
from .models import Opportunity, Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpportunitySummary:
    count: int
    average_risk: float | None
    best: Opportunity | None
    by_protocol: dict[str, int] = field(default_factory=dict)


class Aggregator:
    """Concurrent, failure-isolated reads over a fixed set of connectors.

    A connector that raises contributes an empty list and is logged; the
    others' results are returned in connector order.
    """

    def __init__(self, connectors: list[Connector]) -> None:
        self._connectors = list(connectors)

    @property
    def connectors(self) -> list[Connector]:
        return list(self._connectors)

    async def discover_all(self) -> list[Opportunity]:
        results = await asyncio.gather(
            *(c.discover_opportunities() for c in self._connectors),
            return_exceptions=True,
        )
        return self._flatten(results, "discovery")

    async def read_all_positions(self, wallet: str) -> list[Position]:
        results = await asyncio.gather(
            *(c.read_positions(wallet) for c in self._connectors),
            return_exceptions=True,
        )
        return self._flatten(results, f"positions for {wallet}")

    def _flatten(self, results: list, what: str) -> list:
        items: list = []
        for connector, result in zip(self._connectors, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(
                    "%s %s failed: %s", connector.protocol_name, what, result
                )
                continue
            items.extend(result)
        return items


# ---------------------------------------------------------------------------
# Pure reductions
# ---------------------------------------------------------------------------


def best_by_rate(opportunities: list[Opportunity]) -> Opportunity | None:
    """Highest APR; ties keep the first seen."""
    best: Opportunity | None = None
    for opp in opportunities:
        if best is None or opp.apr > best.apr:
            best = opp
    return best


def top_by_rate(opportunities: list[Opportunity], n: int) -> list[Opportunity]:
    return sorted(opportunities, key=lambda o: o.apr, reverse=True)[: max(n, 0)]


def group_by_protocol(opportunities: list[Opportunity]) -> dict[str, list[Opportunity]]:
    grouped: dict[str, list[Opportunity]] = {}
    for opp in opportunities:
        grouped.setdefault(opp.protocol, []).append(opp)
    return grouped


def average_risk(opportunities: list[Opportunity]) -> float | None:
    if not opportunities:
        return None
    return sum(o.risk_score for o in opportunities) / len(opportunities)


def total_balance_usd(positions: list[Position]) -> float:
    """Sum of known USD balances; unpriced positions are skipped."""
    return sum(p.balance_usd for p in positions if p.balance_usd is not None)


def summarize(opportunities: list[Opportunity]) -> OpportunitySummary:
    return OpportunitySummary(
        count=len(opportunities),
        average_risk=average_risk(opportunities),
        best=best_by_rate(opportunities),
        by_protocol={
            name: len(opps) for name, opps in group_by_protocol(opportunities).items()
        },
    )
