"""Aave v3 connector — supply, withdraw, borrow and repay against the pool."""
from __future__ import annotations

import logging

from ...chains.evm.abi import encode_call
from ...config import ProtocolConfig
from ...errors import ActionBuildError, ChainReadError
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
from ...safety import health_factor_overlay, project_health_factor
from .. import erc20
from ..common import gather_best_effort, resolve_price, usd_value
from . import parser

logger = logging.getLogger(__name__)

VARIABLE_RATE_MODE = 2
REFERRAL_CODE = 0

SUPPLY_RISK_SCORE = 0.2
BORROW_RISK_SCORE = 0.6

_HEALTH_FACTOR_KINDS = frozenset(
    {ActionKind.BORROW, ActionKind.REPAY, ActionKind.WITHDRAW}
)


class AaveAdapter:
    """Lending connector for an Aave v3 pool."""

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
        self._pool = config.contracts.get("pool", "")
        self._tokens = erc20.TokenRegistry(chain)
        for symbol, address in config.tokens.items():
            self._tokens.seed(symbol, address)

    @property
    def protocol_name(self) -> str:
        return "aave"

    @property
    def supported_actions(self) -> frozenset[ActionKind]:
        return frozenset(
            {ActionKind.SUPPLY, ActionKind.WITHDRAW, ActionKind.BORROW, ActionKind.REPAY}
        )

    # ------------------------------------------------------------------
    # Chain reads
    # ------------------------------------------------------------------

    def _address(self, token: str) -> str:
        return self.config.tokens.get(token, token)

    async def _prices(self) -> dict[str, float]:
        if self._oracle is None:
            return {}
        return await self._oracle.fetch_prices()

    async def get_reserve_data(self, asset: str) -> parser.ReserveData:
        data = await self.chain.call(
            {"to": self._pool, "data": encode_call("getReserveData(address)", [asset])}
        )
        return parser.decode_reserve_data(data)

    async def get_account_data(self, wallet: str) -> parser.AccountData:
        data = await self.chain.call(
            {
                "to": self._pool,
                "data": encode_call("getUserAccountData(address)", [wallet]),
            }
        )
        return parser.decode_account_data(data)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _reserve_opportunities(
        self, symbol: str, asset: str, prices: dict[str, float]
    ) -> list[Opportunity]:
        reserve = await self.get_reserve_data(asset)
        if not parser.is_listed(reserve.a_token):
            logger.info("Aave: %s is not listed", symbol)
            return []

        price = resolve_price(symbol, prices, self.config.token_aliases)
        tvl = None
        if price is not None:
            supplied = await erc20.read_total_supply(self.chain, reserve.a_token)
            tvl = usd_value(supplied, await self._tokens.decimals(asset), price)

        return [
            Opportunity(
                id=f"aave-supply-{symbol.lower()}",
                protocol=self.protocol_name,
                apr=parser.rate_to_apr(reserve.liquidity_rate),
                token_address=asset,
                token_symbol=symbol,
                est_gas_usd=self.config.estimated_gas_usd,
                risk_score=SUPPLY_RISK_SCORE,
                tvl=tvl,
            ),
            Opportunity(
                id=f"aave-borrow-{symbol.lower()}",
                protocol=self.protocol_name,
                apr=-parser.rate_to_apr(reserve.variable_borrow_rate),
                token_address=asset,
                token_symbol=symbol,
                est_gas_usd=self.config.estimated_gas_usd,
                risk_score=BORROW_RISK_SCORE,
                tvl=tvl,
            ),
        ]

    async def discover_opportunities(self) -> list[Opportunity]:
        """Supply and variable-borrow markets for each configured reserve.

        Borrow APRs are negative: they are a cost to the wallet.
        """
        prices = await self._prices()
        tasks = {
            symbol: self._reserve_opportunities(symbol, asset, prices)
            for symbol, asset in self.config.tokens.items()
        }
        opportunities = await gather_best_effort("aave discovery", tasks)
        logger.info("Aave: %d opportunities", len(opportunities))
        return opportunities

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def _reserve_positions(
        self,
        symbol: str,
        asset: str,
        wallet: str,
        prices: dict[str, float],
        health_factor: float | None,
    ) -> list[Position]:
        reserve = await self.get_reserve_data(asset)
        if not parser.is_listed(reserve.a_token):
            return []

        decimals = await self._tokens.decimals(asset)
        price = resolve_price(symbol, prices, self.config.token_aliases)
        positions: list[Position] = []

        supplied = await erc20.read_balance(self.chain, reserve.a_token, wallet)
        if supplied > 0:
            positions.append(
                Position(
                    id=f"aave-supply-{symbol.lower()}",
                    protocol=self.protocol_name,
                    token_address=asset,
                    token_symbol=symbol,
                    balance=supplied,
                    balance_usd=usd_value(supplied, decimals, price),
                    apr=parser.rate_to_apr(reserve.liquidity_rate),
                    health_factor=health_factor,
                )
            )

        borrowed = await erc20.read_balance(
            self.chain, reserve.variable_debt_token, wallet
        )
        if borrowed > 0:
            positions.append(
                Position(
                    id=f"aave-borrow-{symbol.lower()}",
                    protocol=self.protocol_name,
                    token_address=asset,
                    token_symbol=symbol,
                    balance=borrowed,
                    balance_usd=usd_value(borrowed, decimals, price),
                    apr=-parser.rate_to_apr(reserve.variable_borrow_rate),
                    health_factor=health_factor,
                )
            )

        return positions

    async def read_positions(self, wallet: str) -> list[Position]:
        """aToken and variable-debt balances, tagged with the account health factor."""
        prices = await self._prices()

        health_factor: float | None
        try:
            account = await self.get_account_data(wallet)
            health_factor = account.health_factor
        except ChainReadError as e:
            logger.warning("Aave: could not read account data for %s: %s", wallet, e)
            health_factor = None

        tasks = {
            symbol: self._reserve_positions(symbol, asset, wallet, prices, health_factor)
            for symbol, asset in self.config.tokens.items()
        }
        return await gather_best_effort("aave positions", tasks)

    # ------------------------------------------------------------------
    # Build / send
    # ------------------------------------------------------------------

    async def check_action(self, action: PlanAction, wallet: str) -> SafetyCheck | None:
        """Block borrows and withdrawals that would breach ``min_health_factor``."""
        minimum = self.config.min_health_factor
        if minimum is None or action.kind not in _HEALTH_FACTOR_KINDS:
            return None

        account = await self.get_account_data(wallet)
        projected = project_health_factor(
            action.kind,
            action.amount_usd,
            account.collateral_usd,
            account.debt_usd,
            account.liquidation_threshold,
        )
        logger.info(
            "Aave %s: health factor %.4f → %.4f (minimum %.2f)",
            action.kind.value, account.health_factor, projected, minimum,
        )
        return health_factor_overlay(
            action.kind, account.health_factor, projected, minimum
        )

    def _listed_asset(self, token: str) -> str:
        asset = self._address(token)
        listed = {address.lower() for address in self.config.tokens.values()}
        if asset.lower() not in listed:
            raise ActionBuildError(f"Asset {token} is not configured for Aave")
        return asset

    async def encode_action(self, action: PlanAction, wallet: str) -> TransactionRequest:
        asset = self._listed_asset(action.asset)

        if action.kind is ActionKind.SUPPLY:
            data = encode_call(
                "supply(address,uint256,address,uint16)",
                [asset, action.amount, wallet, REFERRAL_CODE],
            )
        elif action.kind is ActionKind.WITHDRAW:
            data = encode_call(
                "withdraw(address,uint256,address)", [asset, action.amount, wallet]
            )
        elif action.kind is ActionKind.BORROW:
            data = encode_call(
                "borrow(address,uint256,uint256,uint16,address)",
                [asset, action.amount, VARIABLE_RATE_MODE, REFERRAL_CODE, wallet],
            )
        elif action.kind is ActionKind.REPAY:
            data = encode_call(
                "repay(address,uint256,uint256,address)",
                [asset, action.amount, VARIABLE_RATE_MODE, wallet],
            )
        else:
            raise ActionBuildError(f"Aave cannot encode {action.kind.value}")

        return TransactionRequest(to=self._pool, data=data, from_address=wallet)

    async def build_approval(
        self, token: str, wallet: str, amount: int
    ) -> TransactionRequest | None:
        return await erc20.build_approval(
            self.chain, self._address(token), wallet, self._pool, amount
        )

    async def build_transaction(self, action: PlanAction, wallet: str) -> BuildResult:
        return await ActionPipeline(self, action, wallet, self._ledger).prepare()

    async def send_transaction(
        self, tx: TransactionRequest, signer: Signer
    ) -> TransactionReceipt:
        return await sign_and_send(self.chain, tx, signer)
