"""Pyth Network price oracle service."""
from __future__ import annotations

import logging
import ssl
from typing import Any

import aiohttp
import certifi

from ..config import PythConfig

logger = logging.getLogger(__name__)


def _parse_prices(payload: dict[str, Any], feeds: dict[str, str]) -> dict[str, float]:
    """Map Hermes ``parsed`` entries back onto configured symbols.

    Feed ids are compared without a ``0x`` prefix and case-insensitively,
    since Hermes returns bare lowercase hex.
    """
    id_to_assets: dict[str, list[str]] = {}
    for asset, feed_id in feeds.items():
        id_to_assets.setdefault(_normalize_id(feed_id), []).append(asset)

    prices: dict[str, float] = {}
    for item in payload.get("parsed", []):
        assets = id_to_assets.get(_normalize_id(item.get("id", "")))
        if not assets:
            continue
        price_data = item.get("price", {})
        price = int(price_data.get("price", 0)) * 10 ** int(price_data.get("expo", 0))
        for asset in assets:
            prices[asset] = price
    return prices


def _normalize_id(feed_id: str) -> str:
    feed_id = feed_id.lower()
    return feed_id[2:] if feed_id.startswith("0x") else feed_id


class PythOracle:
    """Fetch USD prices from the Pyth Hermes API.

    Used only for valuing positions and TVL; an unreachable oracle yields an
    empty mapping and every dependent USD figure becomes ``None``.
    """

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.price_feeds = dict(config.feeds)

    async def fetch_prices(self, symbols: list[str] | None = None) -> dict[str, float]:
        """Fetch current prices from Pyth Network.

        Args:
            symbols: Optional list of symbols to fetch. If None, fetches all
                     configured feeds.
        """
        feeds = self.price_feeds
        if symbols is not None:
            feeds = {k: v for k, v in self.price_feeds.items() if k in symbols}

        feed_ids = sorted(set(feeds.values()))
        if not feed_ids:
            return {}

        query_params = "&".join(f"ids[]={fid}" for fid in feed_ids)
        url = f"{self.hermes_url}?{query_params}"

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return {}
                    prices = _parse_prices(await response.json(), feeds)
        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return {}

        for asset, price in sorted(prices.items()):
            logger.debug("  %s: $%.4f", asset, price)
        logger.info("Fetched %d prices from Pyth Network", len(prices))
        return prices
