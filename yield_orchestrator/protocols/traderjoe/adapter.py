"""TraderJoe connector — v1-style router swaps and liquidity on Avalanche."""
from __future__ import annotations

import logging

from ...chains.evm.abi import ZERO_ADDRESS, decode_result, decode_single, encode_call
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
from ...safety import calc_min_amount_out
from .. import erc20
from ..common import gather_best_effort, resolve_price, usd_value
from . import parser

logger = logging.getLogger(__name__)

_SWAP = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"
_ADD_LIQUIDITY = (
    "addLiquidity(address,address,uint256,uint256,uint256,uint256,address,uint256)"
)
_REMOVE_LIQUIDITY = (
    "removeLiquidity(address,address,uint256,uint256,uint256,address,uint256)"
)

SWAP_RISK_SCORE = 0.2


class TraderJoeAdapter:
    """Swap and LP connector for the TraderJoe router."""

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
        self._router = config.contracts.get("router", "")
        self._factory = config.contracts.get("factory", "")
        self._tokens = erc20.TokenRegistry(chain)
        for symbol, address in config.tokens.items():
            self._tokens.seed(symbol, address)

    @property
    def protocol_name(self) -> str:
        return "traderjoe"

    @property
    def supported_actions(self) -> frozenset[ActionKind]:
        return frozenset(
            {ActionKind.SWAP, ActionKind.ADD_LIQUIDITY, ActionKind.REMOVE_LIQUIDITY}
        )

    # ------------------------------------------------------------------
    # Chain reads
    # ------------------------------------------------------------------

    def _address(self, token: str) -> str:
        """Accept either a configured symbol or a raw address."""
        return self.config.tokens.get(token, token)

    async def _prices(self) -> dict[str, float]:
        if self._oracle is None:
            return {}
        return await self._oracle.fetch_prices()

    async def _get_pair(self, token_a: str, token_b: str) -> str:
        data = await self.chain.call(
            {
                "to": self._factory,
                "data": encode_call("getPair(address,address)", [token_a, token_b]),
            }
        )
        return decode_single("address", data)

    async def _get_reserves(self, pair: str, token_a: str) -> tuple[int, int]:
        data = await self.chain.call(
            {"to": pair, "data": encode_call("getReserves()")}
        )
        reserve0, reserve1, _ = decode_result(["uint112", "uint112", "uint32"], data)
        token0 = decode_single(
            "address",
            await self.chain.call({"to": pair, "data": encode_call("token0()")}),
        )
        return parser.order_reserves(token_a, token0, reserve0, reserve1)

    async def _require_pair(self, token_a: str, token_b: str) -> str:
        pair = await self._get_pair(token_a, token_b)
        if pair.lower() == ZERO_ADDRESS:
            raise ActionBuildError(f"No TraderJoe pair for {token_a}/{token_b}")
        return pair

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def _pair_opportunity(
        self, symbol_a: str, symbol_b: str, prices: dict[str, float]
    ) -> list[Opportunity]:
        token_a = self._address(symbol_a)
        token_b = self._address(symbol_b)

        pair = await self._get_pair(token_a, token_b)
        if pair.lower() == ZERO_ADDRESS:
            logger.info("No TraderJoe pair for %s/%s", symbol_a, symbol_b)
            return []

        reserve_a, reserve_b = await self._get_reserves(pair, token_a)
        aliases = self.config.token_aliases
        tvl = parser.pair_tvl(
            reserve_a,
            await self._tokens.decimals(token_a),
            resolve_price(symbol_a, prices, aliases),
            reserve_b,
            await self._tokens.decimals(token_b),
            resolve_price(symbol_b, prices, aliases),
        )

        return [
            Opportunity(
                id=parser.opportunity_id(symbol_a, symbol_b),
                protocol=self.protocol_name,
                apr=0.0,
                token_address=token_a,
                token_symbol=f"{symbol_a}-{symbol_b}",
                est_gas_usd=self.config.estimated_gas_usd,
                risk_score=SWAP_RISK_SCORE,
                tvl=tvl,
            )
        ]

    async def discover_opportunities(self) -> list[Opportunity]:
        """One swap opportunity per configured pair that exists on-chain.

        Swaps earn no yield, so ``apr`` is 0.0.
        """
        prices = await self._prices()
        tasks = {
            f"{a}/{b}": self._pair_opportunity(a, b, prices)
            for a, b in self.config.pairs
        }
        opportunities = await gather_best_effort("traderjoe discovery", tasks)
        logger.info("TraderJoe: %d opportunities", len(opportunities))
        return opportunities

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    async def _token_position(
        self, symbol: str, address: str, wallet: str, prices: dict[str, float]
    ) -> list[Position]:
        balance = await erc20.read_balance(self.chain, address, wallet)
        if balance <= 0:
            return []
        decimals = await self._tokens.decimals(address)
        price = resolve_price(symbol, prices, self.config.token_aliases)
        return [
            Position(
                id=f"tj-balance-{symbol.lower()}",
                protocol=self.protocol_name,
                token_address=address,
                token_symbol=symbol,
                balance=balance,
                balance_usd=usd_value(balance, decimals, price),
                apr=0.0,
            )
        ]

    async def read_positions(self, wallet: str) -> list[Position]:
        """Wallet balances of the configured tokens (non-zero only)."""
        prices = await self._prices()
        tasks = {
            symbol: self._token_position(symbol, address, wallet, prices)
            for symbol, address in self.config.tokens.items()
        }
        return await gather_best_effort("traderjoe positions", tasks)

    # ------------------------------------------------------------------
    # Build / send
    # ------------------------------------------------------------------

    async def check_action(self, action: PlanAction, wallet: str) -> SafetyCheck | None:
        return None

    async def _encode_swap(self, action: PlanAction, wallet: str) -> str:
        path = [self._address(action.from_token), self._address(action.to_token)]
        data = await self.chain.call(
            {
                "to": self._router,
                "data": encode_call(
                    "getAmountsOut(uint256,address[])", [action.amount, path]
                ),
            }
        )
        amounts = decode_single("uint256[]", data)
        min_out = calc_min_amount_out(amounts[-1], action.slippage_bps)
        return encode_call(
            _SWAP, [action.amount, min_out, path, wallet, action.deadline]
        )

    async def _encode_add_liquidity(self, action: PlanAction, wallet: str) -> str:
        token_a = self._address(action.from_token)
        token_b = self._address(action.to_token)
        pair = await self._require_pair(token_a, token_b)
        reserve_a, reserve_b = await self._get_reserves(pair, token_a)
        try:
            amount_b = parser.quote(action.amount, reserve_a, reserve_b)
        except ValueError as e:
            raise ActionBuildError(f"Cannot add liquidity: {e}") from e
        return encode_call(
            _ADD_LIQUIDITY,
            [
                token_a,
                token_b,
                action.amount,
                amount_b,
                calc_min_amount_out(action.amount, action.slippage_bps),
                calc_min_amount_out(amount_b, action.slippage_bps),
                wallet,
                action.deadline,
            ],
        )

    async def _encode_remove_liquidity(self, action: PlanAction, wallet: str) -> str:
        token_a = self._address(action.from_token)
        token_b = self._address(action.to_token)
        pair = await self._require_pair(token_a, token_b)
        reserve_a, reserve_b = await self._get_reserves(pair, token_a)
        total_supply = await erc20.read_total_supply(self.chain, pair)
        try:
            amount_a, amount_b = parser.removal_amounts(
                action.amount, reserve_a, reserve_b, total_supply
            )
        except ValueError as e:
            raise ActionBuildError(f"Cannot remove liquidity: {e}") from e
        return encode_call(
            _REMOVE_LIQUIDITY,
            [
                token_a,
                token_b,
                action.amount,
                calc_min_amount_out(amount_a, action.slippage_bps),
                calc_min_amount_out(amount_b, action.slippage_bps),
                wallet,
                action.deadline,
            ],
        )

    async def encode_action(self, action: PlanAction, wallet: str) -> TransactionRequest:
        if action.kind is ActionKind.SWAP:
            data = await self._encode_swap(action, wallet)
        elif action.kind is ActionKind.ADD_LIQUIDITY:
            data = await self._encode_add_liquidity(action, wallet)
        elif action.kind is ActionKind.REMOVE_LIQUIDITY:
            data = await self._encode_remove_liquidity(action, wallet)
        else:
            raise ActionBuildError(f"TraderJoe cannot encode {action.kind.value}")
        return TransactionRequest(to=self._router, data=data, from_address=wallet)

    async def build_approval(
        self, token: str, wallet: str, amount: int
    ) -> TransactionRequest | None:
        return await erc20.build_approval(
            self.chain, self._address(token), wallet, self._router, amount
        )

    async def build_transaction(self, action: PlanAction, wallet: str) -> BuildResult:
        return await ActionPipeline(self, action, wallet, self._ledger).prepare()

    async def send_transaction(
        self, tx: TransactionRequest, signer: Signer
    ) -> TransactionReceipt:
        return await sign_and_send(self.chain, tx, signer)
