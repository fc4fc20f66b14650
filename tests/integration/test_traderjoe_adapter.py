"""Integration tests for TraderJoeAdapter against the fake chain."""
from __future__ import annotations

import pytest

from yield_orchestrator.chains.evm.abi import ZERO_ADDRESS, encode_call
from yield_orchestrator.config import ProtocolConfig
from yield_orchestrator.errors import (
    ActionBuildError,
    ChainReadError,
    UnsupportedActionError,
)
from yield_orchestrator.models import ActionKind
from yield_orchestrator.protocols.traderjoe import TraderJoeAdapter
from yield_orchestrator.safety import calc_min_amount_out

from conftest import (
    DEADLINE,
    FACTORY,
    PAIR,
    ROUTER,
    USDC,
    WALLET,
    WAVAX,
    FakeChain,
    make_action,
)

SWAP_SIGNATURE = "swapExactTokensForTokens(uint256,uint256,address[],address,uint256)"
RESERVE_WAVAX = 1_000 * 10**18
RESERVE_USDC = 30_000 * 10**6


@pytest.fixture()
def chain(fake_chain: FakeChain) -> FakeChain:
    fake_chain.on_call(FACTORY, "getPair(address,address)", ["address"], [PAIR])
    fake_chain.on_call(
        PAIR,
        "getReserves()",
        ["uint112", "uint112", "uint32"],
        [RESERVE_WAVAX, RESERVE_USDC, 1_700_000_000],
    )
    fake_chain.on_call(PAIR, "token0()", ["address"], [WAVAX])
    fake_chain.on_call(WAVAX, "decimals()", ["uint8"], [18])
    fake_chain.on_call(USDC, "decimals()", ["uint8"], [6])
    fake_chain.on_call(
        ROUTER,
        "getAmountsOut(uint256,address[])",
        ["uint256[]"],
        [[10**18, 30 * 10**6]],
    )
    fake_chain.on_call(ROUTER, SWAP_SIGNATURE, ["uint256[]"], [[10**18, 30 * 10**6]])
    return fake_chain


@pytest.fixture()
def adapter(chain, traderjoe_config, price_oracle) -> TraderJoeAdapter:
    return TraderJoeAdapter(chain, traderjoe_config, price_oracle)


class TestDiscovery:
    @pytest.mark.asyncio
    async def test_pair_opportunity(self, adapter: TraderJoeAdapter) -> None:
        opportunities = await adapter.discover_opportunities()

        assert len(opportunities) == 1
        opp = opportunities[0]
        assert opp.id == "tj-wavax-usdc-swap"
        assert opp.protocol == "traderjoe"
        assert opp.apr == 0.0
        assert opp.token_symbol == "WAVAX-USDC"
        assert opp.token_address == WAVAX
        assert opp.est_gas_usd == 4.0
        # 1000 WAVAX at $30 (via the AVAX alias) + 30,000 USDC at $1
        assert opp.tvl == pytest.approx(60_000.0)

    @pytest.mark.asyncio
    async def test_reserves_follow_token0(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(
            PAIR,
            "getReserves()",
            ["uint112", "uint112", "uint32"],
            [RESERVE_USDC, RESERVE_WAVAX, 1_700_000_000],
        )
        chain.on_call(PAIR, "token0()", ["address"], [USDC])

        [opp] = await adapter.discover_opportunities()
        assert opp.tvl == pytest.approx(60_000.0)

    @pytest.mark.asyncio
    async def test_no_oracle_leaves_tvl_unknown(
        self, chain: FakeChain, traderjoe_config: ProtocolConfig
    ) -> None:
        [opp] = await TraderJoeAdapter(chain, traderjoe_config).discover_opportunities()
        assert opp.tvl is None

    @pytest.mark.asyncio
    async def test_missing_pair_is_omitted(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(FACTORY, "getPair(address,address)", ["address"], [ZERO_ADDRESS])
        assert await adapter.discover_opportunities() == []

    @pytest.mark.asyncio
    async def test_unreachable_factory_raises(
        self, fake_chain: FakeChain, traderjoe_config: ProtocolConfig
    ) -> None:
        adapter = TraderJoeAdapter(fake_chain, traderjoe_config)
        with pytest.raises(ChainReadError, match="all 1 reads failed"):
            await adapter.discover_opportunities()


class TestPositions:
    @pytest.mark.asyncio
    async def test_non_zero_balances_only(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(WAVAX, "balanceOf(address)", ["uint256"], [2 * 10**18], args=[WALLET])
        chain.on_call(USDC, "balanceOf(address)", ["uint256"], [0], args=[WALLET])

        positions = await adapter.read_positions(WALLET)

        assert len(positions) == 1
        pos = positions[0]
        assert pos.id == "tj-balance-wavax"
        assert pos.token_symbol == "WAVAX"
        assert pos.balance == 2 * 10**18
        assert pos.balance_usd == pytest.approx(60.0)
        assert pos.apr == 0.0


class TestEncode:
    @pytest.mark.asyncio
    async def test_swap_uses_quote_and_deadline(self, adapter: TraderJoeAdapter) -> None:
        tx = await adapter.encode_action(make_action(), WALLET)

        min_out = calc_min_amount_out(30 * 10**6, 50)
        assert min_out == 29_850_000
        assert tx.to == ROUTER
        assert tx.from_address == WALLET
        assert tx.data == encode_call(
            SWAP_SIGNATURE, [10**18, min_out, [WAVAX, USDC], WALLET, DEADLINE]
        )

    @pytest.mark.asyncio
    async def test_swap_accepts_symbols(self, adapter: TraderJoeAdapter) -> None:
        by_symbol = await adapter.encode_action(
            make_action(from_token="WAVAX", to_token="USDC"), WALLET
        )
        by_address = await adapter.encode_action(make_action(), WALLET)
        assert by_symbol.data == by_address.data

    @pytest.mark.asyncio
    async def test_add_liquidity_quotes_other_side(self, adapter: TraderJoeAdapter) -> None:
        action = make_action(kind=ActionKind.ADD_LIQUIDITY, amount=10 * 10**18)
        tx = await adapter.encode_action(action, WALLET)

        amount_b = 300 * 10**6
        assert tx.data == encode_call(
            "addLiquidity(address,address,uint256,uint256,uint256,uint256,address,uint256)",
            [
                WAVAX,
                USDC,
                10 * 10**18,
                amount_b,
                calc_min_amount_out(10 * 10**18, 50),
                calc_min_amount_out(amount_b, 50),
                WALLET,
                DEADLINE,
            ],
        )

    @pytest.mark.asyncio
    async def test_remove_liquidity_from_share_of_supply(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(PAIR, "totalSupply()", ["uint256"], [100 * 10**18])
        action = make_action(kind=ActionKind.REMOVE_LIQUIDITY, amount=10 * 10**18)

        tx = await adapter.encode_action(action, WALLET)

        assert tx.data == encode_call(
            "removeLiquidity(address,address,uint256,uint256,uint256,address,uint256)",
            [
                WAVAX,
                USDC,
                10 * 10**18,
                calc_min_amount_out(100 * 10**18, 50),
                calc_min_amount_out(3_000 * 10**6, 50),
                WALLET,
                DEADLINE,
            ],
        )

    @pytest.mark.asyncio
    async def test_liquidity_without_pair_fails(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(FACTORY, "getPair(address,address)", ["address"], [ZERO_ADDRESS])
        with pytest.raises(ActionBuildError, match="No TraderJoe pair"):
            await adapter.encode_action(make_action(kind=ActionKind.ADD_LIQUIDITY), WALLET)


class TestBuild:
    @pytest.mark.asyncio
    async def test_build_transaction_runs_pipeline(self, adapter: TraderJoeAdapter) -> None:
        result = await adapter.build_transaction(make_action(), WALLET)

        assert result.dry_run.success
        assert result.transaction.to == ROUTER
        assert result.transaction.gas == 210_000

    @pytest.mark.asyncio
    async def test_build_is_idempotent(self, adapter: TraderJoeAdapter) -> None:
        first = await adapter.build_transaction(make_action(), WALLET)
        second = await adapter.build_transaction(make_action(), WALLET)
        assert first.transaction == second.transaction

    @pytest.mark.asyncio
    async def test_supply_is_unsupported(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        action = make_action(kind=ActionKind.SUPPLY, from_token="")
        with pytest.raises(UnsupportedActionError, match="Unsupported action type: supply"):
            await adapter.build_transaction(action, WALLET)
        chain.estimate_gas.assert_not_awaited()


class TestApproval:
    @pytest.mark.asyncio
    async def test_approval_needed(self, chain: FakeChain, adapter: TraderJoeAdapter) -> None:
        chain.on_call(
            WAVAX, "allowance(address,address)", ["uint256"], [0], args=[WALLET, ROUTER]
        )
        tx = await adapter.build_approval("WAVAX", WALLET, 10**18)

        assert tx is not None
        assert tx.to == WAVAX
        assert tx.data == encode_call("approve(address,uint256)", [ROUTER, 10**18])

    @pytest.mark.asyncio
    async def test_allowance_already_covers(
        self, chain: FakeChain, adapter: TraderJoeAdapter
    ) -> None:
        chain.on_call(
            WAVAX,
            "allowance(address,address)",
            ["uint256"],
            [10**19],
            args=[WALLET, ROUTER],
        )
        assert await adapter.build_approval(WAVAX, WALLET, 10**18) is None
