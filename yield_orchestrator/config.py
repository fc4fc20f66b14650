"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    chain_id: int = 43114
    receipt_timeout: int = 120
    receipt_poll_interval: float = 2.0


@dataclass(frozen=True)
class ProtocolConfig:
    """Per-protocol limits plus the addresses its connector needs."""

    name: str = ""
    chain: str = ""
    max_notional_per_tx: float = 250.0
    daily_cap: float = 1000.0
    default_slippage_bps: int = 50
    max_slippage_bps: int = 500
    default_deadline_minutes: int = 20
    estimated_gas_usd: float = 3.0
    min_health_factor: float | None = None
    contracts: dict[str, str] = field(default_factory=dict)
    tokens: dict[str, str] = field(default_factory=dict)
    token_aliases: dict[str, str] = field(default_factory=dict)
    pairs: tuple[tuple[str, str], ...] = ()
    vaults: dict[str, str] = field(default_factory=dict)
    apy_url: str = ""


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PriceOracleConfig:
    provider: str = "pyth"
    pyth: PythConfig = field(default_factory=PythConfig)


@dataclass(frozen=True)
class WalletConfig:
    label: str = ""
    address: str = ""
    protocols: tuple[str, ...] = ()


@dataclass(frozen=True)
class AppConfig:
    chains: dict[str, ChainConfig] = field(default_factory=dict)
    protocols: dict[str, ProtocolConfig] = field(default_factory=dict)
    price_oracle: PriceOracleConfig = field(default_factory=PriceOracleConfig)
    wallets: tuple[WalletConfig, ...] = ()


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_chains(raw: dict[str, Any]) -> dict[str, ChainConfig]:
    chains: dict[str, ChainConfig] = {}
    for name, cfg in raw.items():
        chains[name] = ChainConfig(
            rpc_endpoints=tuple(cfg.get("rpc_endpoints", [])),
            rpc_timeout=int(cfg.get("rpc_timeout", 30)),
            chain_id=int(cfg.get("chain_id", 43114)),
            receipt_timeout=int(cfg.get("receipt_timeout", 120)),
            receipt_poll_interval=float(cfg.get("receipt_poll_interval", 2.0)),
        )
    return chains


def _build_protocols(raw: dict[str, Any]) -> dict[str, ProtocolConfig]:
    protocols: dict[str, ProtocolConfig] = {}
    for name, cfg in raw.items():
        min_hf = cfg.get("min_health_factor")
        protocols[name] = ProtocolConfig(
            name=name,
            chain=cfg.get("chain", ""),
            max_notional_per_tx=float(cfg.get("max_notional_per_tx", 250.0)),
            daily_cap=float(cfg.get("daily_cap", 1000.0)),
            default_slippage_bps=int(cfg.get("default_slippage_bps", 50)),
            max_slippage_bps=int(cfg.get("max_slippage_bps", 500)),
            default_deadline_minutes=int(cfg.get("default_deadline_minutes", 20)),
            estimated_gas_usd=float(cfg.get("estimated_gas_usd", 3.0)),
            min_health_factor=float(min_hf) if min_hf is not None else None,
            contracts=dict(cfg.get("contracts", {})),
            tokens=dict(cfg.get("tokens", {})),
            token_aliases=dict(cfg.get("token_aliases", {})),
            pairs=tuple(tuple(p) for p in cfg.get("pairs", [])),
            vaults=dict(cfg.get("vaults", {})),
            apy_url=cfg.get("apy_url", ""),
        )
    return protocols


def _build_price_oracle(raw: dict[str, Any]) -> PriceOracleConfig:
    pyth_raw = raw.get("pyth", {})
    return PriceOracleConfig(
        provider=raw.get("provider", "pyth"),
        pyth=PythConfig(
            hermes_url=pyth_raw.get("hermes_url", PythConfig.hermes_url),
            feeds=dict(pyth_raw.get("feeds", {})),
        ),
    )


def _build_wallets(raw: list[dict[str, Any]]) -> tuple[WalletConfig, ...]:
    return tuple(
        WalletConfig(
            label=w.get("label", ""),
            address=w.get("address", ""),
            protocols=tuple(w.get("protocols", [])),
        )
        for w in raw
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from the package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        chains=_build_chains(raw.get("chains", {})),
        protocols=_build_protocols(raw.get("protocols", {})),
        price_oracle=_build_price_oracle(raw.get("price_oracle", {})),
        wallets=_build_wallets(raw.get("wallets", [])),
    )

    _validate(cfg)
    logger.info("Configuration loaded from %s", config_path)
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chains:
        raise ValueError("At least one chain must be configured")

    for name, proto in cfg.protocols.items():
        if proto.chain not in cfg.chains:
            raise ValueError(
                f"Protocol '{name}' references unknown chain '{proto.chain}'"
            )
        if proto.max_notional_per_tx < 0 or proto.daily_cap < 0:
            raise ValueError(f"Protocol '{name}' has a negative cap")
        if not 0 <= proto.max_slippage_bps <= 10_000:
            raise ValueError(
                f"Protocol '{name}' max_slippage_bps must be within 0-10000"
            )
        if proto.default_slippage_bps > proto.max_slippage_bps:
            raise ValueError(
                f"Protocol '{name}' default_slippage_bps exceeds max_slippage_bps"
            )

    for wallet in cfg.wallets:
        if not wallet.address:
            raise ValueError(f"Wallet '{wallet.label}' has no address")
        for proto in wallet.protocols:
            if proto not in cfg.protocols:
                raise ValueError(
                    f"Wallet '{wallet.label}' references unknown protocol '{proto}'"
                )
