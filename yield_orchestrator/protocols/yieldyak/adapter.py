"""YieldYak connector — auto-compounding vault deposits and withdrawals."""
from __future__ import annotations

import logging
import ssl

import aiohttp
import certifi

from ...chains.evm.abi import decode_single, encode_call
from ...config import ProtocolConfig
from ...errors import ActionBuildError
from ...interfaces.chain import ChainClient
from ...interfaces.ledger import UsageLedger
from ...interfaces.price_oracle import PriceOracle
from ...interfaces.signer import Signer
from ...models import (
    ActionKind,
    BuildResult,
    Opportunity,
    PlanAction,
    Position,
    SafetyCheck,
    TransactionReceipt,
    TransactionRequest,
)
from ...pipeline import ActionPipeline, sign_and_send
from .. import erc20
from ..common import gather_best_effort, resolve_price, usd_value
from . import parser

logger = logging.getLogger(__name__)

VAULT_RISK_SCORE = 0.3


class YieldYakAdapter:
    """Vault connector for YieldYak compounders."""

    def __init__(
        self,
        chain: ChainClient,
        config: ProtocolConfig,
        oracle: PriceOracle | None = None,
        ledger: UsageLedger | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self._oracle = oracle
        self._ledger = ledger
        self._apy_url = config.apy_url
        self._tokens = erc20.TokenRegistry(chain)
        for symbol, address in config.tokens.items():
            self._tokens.seed(symbol, address)
        # vault address (lowercase) → underlying token
        self._underlying: dict[str, str] = {}

    @property
    def protocol_name(self) -> str:
        return "yieldyak"

    @property
    def supported_actions(self) -> frozenset[ActionKind]:
        return frozenset({ActionKind.VAULT_DEPOSIT, ActionKind.VAULT_WITHDRAW})

    # ------------------------------------------------------------------
    # Chain / API reads
    # ------------------------------------------------------------------

    async def _prices(self) -> dict[str, float]:
        if self._oracle is None:
            return {}
        return await self._oracle.fetch_prices()

    async def fetch_apys(self) -> dict[str, float]:
        """Fetch vault APYs from the YieldYak API; empty on any failure."""
        if not self._apy_url:
            return {}

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self._apy_url) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching YieldYak APYs: HTTP %s", response.status
                        )
                        return {}
                    return parser.parse_apys(await response.json())
        except Exception as e:
            logger.error("Error fetching YieldYak APYs: %s", e)
            return {}

    async def _read_uint(self, vault: str, signature: str) -> int:
        data = await self.chain.call({"to": vault, "data": encode_call(signature)})
        return decode_single("uint256", data)

    async def price_per_share(self, vault: str) -> int:
        return await self._read_uint(vault, "pricePerShare()")

    async def underlying_token(self, vault: str) -> str:
        key = vault.lower()
        if key not in self._underlying:
            data = await self.chain.call({"to": vault, "data": encode_call("token()")})
            self._underlying[key] = decode_single("address", data)
        return self._underlying[key]

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _vault_opportunity(
        self,
        name: str,
        vault: str,
        apys: dict[str, float],
        prices: dict[str, float],
    ) -> list[Opportunity]:
        total_shares = await self._read_uint(vault, "totalSupply()")
        pps = await self.price_per_share(vault)
        token = await self.underlying_token(vault)

        apy = apys.get(vault.lower())
        if apy is None:
            logger.warning("YieldYak: no APY published for vault %s; skipping", name)
            return []

        symbol = await self._tokens.symbol(token)
        price = resolve_price(symbol, prices, self.config.token_aliases)
        tvl = usd_value(
            parser.shares_to_underlying(total_shares, pps),
            await self._tokens.decimals(token),
            price,
        )
        return [
            Opportunity(
                id=f"yy-{name.lower()}",
                protocol=self.protocol_name,
                apr=apy,
                token_address=token,
                token_symbol=symbol,
                est_gas_usd=self.config.estimated_gas_usd,
                risk_score=VAULT_RISK_SCORE,
                tvl=tvl,
            )
        ]

    async def discover_opportunities(self) -> list[Opportunity]:
        """One opportunity per configured vault with a published APY."""
        apys = await self.fetch_apys()
        prices = await self._prices()
        tasks = {
            name: self._vault_opportunity(name, vault, apys, prices)
            for name, vault in self.config.vaults.items()
        }
        opportunities = await gather_best_effort("yieldyak discovery", tasks)
        logger.info("YieldYak: %d opportunities", len(opportunities))
        return opportunities

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def _vault_position(
        self,
        name: str,
        vault: str,
        wallet: str,
        apys: dict[str, float],
        prices: dict[str, float],
    ) -> list[Position]:
        shares = await erc20.read_balance(self.chain, vault, wallet)
        if shares <= 0:
            return []

        pps = await self.price_per_share(vault)
        token = await self.underlying_token(vault)
        symbol = await self._tokens.symbol(token)
        underlying = parser.shares_to_underlying(shares, pps)
        price = resolve_price(symbol, prices, self.config.token_aliases)

        return [
            Position(
                id=f"yy-{name.lower()}",
                protocol=self.protocol_name,
                token_address=vault,
                token_symbol=symbol,
                balance=shares,
                balance_usd=usd_value(
                    underlying, await self._tokens.decimals(token), price
                ),
                apr=apys.get(vault.lower()),
            )
        ]

    async def read_positions(self, wallet: str) -> list[Position]:
        """Vault share balances valued through ``pricePerShare``."""
        apys = await self.fetch_apys()
        prices = await self._prices()
        tasks = {
            name: self._vault_position(name, vault, wallet, apys, prices)
            for name, vault in self.config.vaults.items()
        }
        return await gather_best_effort("yieldyak positions", tasks)

    # ------------------------------------------------------------------
    # Build / send
    # ------------------------------------------------------------------

    async def check_action(self, action: PlanAction, wallet: str) -> SafetyCheck | None:
        return None

    async def resolve_vault(self, token: str) -> str:
        """Find the configured vault for a vault name, vault address or underlying."""
        if token in self.config.vaults:
            return self.config.vaults[token]

        target = self.config.tokens.get(token, token).lower()
        for vault in self.config.vaults.values():
            if vault.lower() == target:
                return vault
        for vault in self.config.vaults.values():
            if (await self.underlying_token(vault)).lower() == target:
                return vault
        raise ActionBuildError(f"No vault configured for token {token}")

    async def encode_action(self, action: PlanAction, wallet: str) -> TransactionRequest:
        vault = await self.resolve_vault(action.asset)

        if action.kind is ActionKind.VAULT_DEPOSIT:
            data = encode_call("deposit(uint256)", [action.amount])
        elif action.kind is ActionKind.VAULT_WITHDRAW:
            pps = await self.price_per_share(vault)
            try:
                shares = parser.underlying_to_shares(action.amount, pps)
            except ValueError as e:
                raise ActionBuildError(str(e)) from e
            if shares == 0:
                raise ActionBuildError(
                    f"Withdrawal of {action.amount} is less than one vault share"
                )
            data = encode_call("withdraw(uint256)", [shares])
        else:
            raise ActionBuildError(f"YieldYak cannot encode {action.kind.value}")

        return TransactionRequest(to=vault, data=data, from_address=wallet)

    async def build_approval(
        self, token: str, wallet: str, amount: int
    ) -> TransactionRequest | None:
        vault = await self.resolve_vault(token)
        underlying = await self.underlying_token(vault)
        return await erc20.build_approval(self.chain, underlying, wallet, vault, amount)

    async def build_transaction(self, action: PlanAction, wallet: str) -> BuildResult:
        return await ActionPipeline(self, action, wallet, self._ledger).prepare()

    async def send_transaction(
        self, tx: TransactionRequest, signer: Signer
    ) -> TransactionReceipt:
        return await sign_and_send(self.chain, tx, signer)
