"""Shared test fixtures, sample data and an in-memory fake chain."""
from __future__ import annotations

import textwrap
from pathlib import Path
from typing import Any, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_abi import encode

from yield_orchestrator.chains.evm.abi import encode_call, function_selector
from yield_orchestrator.config import (
    AppConfig,
    ChainConfig,
    PriceOracleConfig,
    ProtocolConfig,
    PythConfig,
    WalletConfig,
)
from yield_orchestrator.errors import RpcError
from yield_orchestrator.ledger import InMemoryUsageLedger
from yield_orchestrator.models import (
    ActionKind,
    FeeData,
    PlanAction,
    TransactionReceipt,
)

# Digit-only addresses are identical in checksum and lowercase form.
WALLET = "0x" + "99" * 20
ROUTER = "0x" + "10" * 20
FACTORY = "0x" + "20" * 20
PAIR = "0x" + "30" * 20
POOL = "0x" + "40" * 20
VAULT = "0x" + "50" * 20
WAVAX = "0x" + "11" * 20
USDC = "0x" + "12" * 20
LINK = "0x" + "13" * 20
A_WAVAX = "0x" + "21" * 20
DEBT_WAVAX = "0x" + "22" * 20
A_USDC = "0x" + "23" * 20
DEBT_USDC = "0x" + "24" * 20

TX_HASH = "0x" + "ab" * 32
DEADLINE = 1_900_000_000


# ---------------------------------------------------------------------------
# Fake chain
# ---------------------------------------------------------------------------


class FakeChain:
    """ChainClient double that answers eth_call from registered responses.

    Responses are keyed by (contract, selector) or, when call arguments are
    given, by (contract, exact call data); exact matches win.
    """

    def __init__(self) -> None:
        self._responses: dict[tuple[str, str], bytes] = {}
        self._errors: dict[tuple[str, str], Exception] = {}
        self.calls: list[dict[str, Any]] = []

        self.estimate_gas = AsyncMock(return_value=210_000)
        self.get_balance = AsyncMock(return_value=0)
        self.get_fee_data = AsyncMock(
            return_value=FeeData(
                gas_price=25 * 10**9,
                max_fee_per_gas=52 * 10**9,
                max_priority_fee_per_gas=2 * 10**9,
            )
        )
        self.get_transaction_count = AsyncMock(return_value=7)
        self.get_chain_id = AsyncMock(return_value=43114)
        self.send_transaction = AsyncMock(return_value=make_receipt(status=1))

    @staticmethod
    def _key(to: str, signature: str, args: Sequence[Any] | None) -> tuple[str, str]:
        if args is None:
            return to.lower(), "0x" + function_selector(signature).hex()
        return to.lower(), encode_call(signature, args)

    def on_call(
        self,
        to: str,
        signature: str,
        types: Sequence[str] = (),
        values: Sequence[Any] = (),
        args: Sequence[Any] | None = None,
    ) -> None:
        self._responses[self._key(to, signature, args)] = encode(list(types), list(values))

    def fail_call(
        self,
        to: str,
        signature: str,
        error: Exception,
        args: Sequence[Any] | None = None,
    ) -> None:
        self._errors[self._key(to, signature, args)] = error

    def calls_to(self, signature: str) -> list[dict[str, Any]]:
        selector = "0x" + function_selector(signature).hex()
        return [c for c in self.calls if c["data"].startswith(selector)]

    async def call(self, tx: dict[str, Any], block: str = "latest") -> bytes:
        self.calls.append(tx)
        to = tx["to"].lower()
        data = tx["data"]
        for key in ((to, data), (to, data[:10])):
            if key in self._errors:
                raise self._errors[key]
            if key in self._responses:
                return self._responses[key]
        raise RpcError("execution reverted", code=3, data=None)


def make_receipt(status: int = 1) -> TransactionReceipt:
    return TransactionReceipt(
        transaction_hash=TX_HASH,
        status=status,
        block_number=1234,
        gas_used=180_000,
        effective_gas_price=27 * 10**9,
    )


@pytest.fixture()
def fake_chain() -> FakeChain:
    return FakeChain()


@pytest.fixture()
def ledger() -> InMemoryUsageLedger:
    return InMemoryUsageLedger()


@pytest.fixture()
def signer() -> MagicMock:
    signer = MagicMock()
    signer.address = WALLET
    signer.sign_transaction = MagicMock(return_value=b"\x02\xf8signed")
    return signer


@pytest.fixture()
def price_oracle() -> AsyncMock:
    oracle = AsyncMock()
    oracle.fetch_prices.return_value = {"AVAX": 30.0, "USDC": 1.0}
    return oracle


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_chain_config() -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=("https://rpc1.example.com", "https://rpc2.example.com"),
        rpc_timeout=10,
        receipt_timeout=5,
        receipt_poll_interval=0.0,
    )


@pytest.fixture()
def traderjoe_config() -> ProtocolConfig:
    return ProtocolConfig(
        name="traderjoe",
        chain="avalanche",
        max_notional_per_tx=250.0,
        daily_cap=1000.0,
        max_slippage_bps=500,
        estimated_gas_usd=4.0,
        contracts={"router": ROUTER, "factory": FACTORY},
        tokens={"WAVAX": WAVAX, "USDC": USDC},
        token_aliases={"WAVAX": "AVAX"},
        pairs=(("WAVAX", "USDC"),),
    )


@pytest.fixture()
def aave_config() -> ProtocolConfig:
    return ProtocolConfig(
        name="aave",
        chain="avalanche",
        max_notional_per_tx=500.0,
        daily_cap=2000.0,
        default_slippage_bps=0,
        max_slippage_bps=100,
        min_health_factor=1.3,
        contracts={"pool": POOL},
        tokens={"WAVAX": WAVAX, "USDC": USDC},
        token_aliases={"WAVAX": "AVAX"},
    )


@pytest.fixture()
def yieldyak_config() -> ProtocolConfig:
    return ProtocolConfig(
        name="yieldyak",
        chain="avalanche",
        default_slippage_bps=0,
        max_slippage_bps=100,
        estimated_gas_usd=2.5,
        tokens={"WAVAX": WAVAX},
        token_aliases={"WAVAX": "AVAX"},
        vaults={"avax": VAULT},
        apy_url="https://apy.example.com/apys",
    )


@pytest.fixture()
def sample_pyth_config() -> PythConfig:
    return PythConfig(
        hermes_url="https://hermes.pyth.network/v2/updates/price/latest",
        feeds={"AVAX": "abc123", "USDC": "def456"},
    )


@pytest.fixture()
def sample_app_config(
    sample_chain_config: ChainConfig,
    traderjoe_config: ProtocolConfig,
    aave_config: ProtocolConfig,
    yieldyak_config: ProtocolConfig,
    sample_pyth_config: PythConfig,
) -> AppConfig:
    return AppConfig(
        chains={"avalanche": sample_chain_config},
        protocols={
            "traderjoe": traderjoe_config,
            "aave": aave_config,
            "yieldyak": yieldyak_config,
        },
        price_oracle=PriceOracleConfig(provider="pyth", pyth=sample_pyth_config),
        wallets=(
            WalletConfig(label="test-wallet", address=WALLET, protocols=("aave",)),
        ),
    )


# ---------------------------------------------------------------------------
# Action fixtures
# ---------------------------------------------------------------------------


def make_action(**overrides: Any) -> PlanAction:
    fields: dict[str, Any] = {
        "kind": ActionKind.SWAP,
        "protocol": "traderjoe",
        "from_token": WAVAX,
        "to_token": USDC,
        "amount": 10**18,
        "amount_usd": 200.0,
        "slippage_bps": 50,
        "deadline": DEADLINE,
    }
    fields.update(overrides)
    return PlanAction(**fields)


@pytest.fixture()
def swap_action() -> PlanAction:
    return make_action()


# ---------------------------------------------------------------------------
# Config YAML fixture
# ---------------------------------------------------------------------------

SAMPLE_YAML = textwrap.dedent("""\
    wallets:
      - label: test-wallet
        address: "${TEST_WALLET_ADDRESS}"
        protocols: [traderjoe, aave]
    chains:
      avalanche:
        rpc_endpoints: ["https://rpc.example.com"]
        rpc_timeout: 10
        chain_id: 43114
    protocols:
      traderjoe:
        chain: avalanche
        max_notional_per_tx: 250
        daily_cap: 1000
        max_slippage_bps: 500
        contracts:
          router: "0x1010101010101010101010101010101010101010"
          factory: "0x2020202020202020202020202020202020202020"
        tokens: {WAVAX: "0x1111111111111111111111111111111111111111"}
        token_aliases: {WAVAX: AVAX}
        pairs:
          - [WAVAX, USDC]
      aave:
        chain: avalanche
        min_health_factor: 1.5
        contracts: {pool: "0x4040404040404040404040404040404040404040"}
    price_oracle:
      provider: pyth
      pyth:
        hermes_url: "https://hermes.example.com"
        feeds: {AVAX: "aaa", USDC: "bbb"}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("TEST_WALLET_ADDRESS", WALLET)
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
