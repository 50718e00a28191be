"""
TOML-based configuration for the wallet core.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from nami_core.config import load_config
    cfg = load_config("nami.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib  # type: ignore[import]
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[import,no-redef]

from nami_core import __version__

NETWORK_ID = ("mainnet", "testnet")


@dataclass
class NetworkSettings:
    """Active network; ``node`` overrides the provider's default endpoint."""
    id: str = "mainnet"
    node: str | None = None


@dataclass
class ProviderEndpoint:
    """Endpoints and credentials of a single data provider."""
    mainnet: str = ""
    testnet: str = ""
    project_id_mainnet: str = ""
    project_id_testnet: str = ""
    auth_header: str = "project_id"
    timeout_seconds: float = 20.0

    def node(self, network_id: str) -> str:
        return self.mainnet if network_id == "mainnet" else self.testnet

    def project_id(self, network_id: str) -> str:
        if network_id == "mainnet":
            return self.project_id_mainnet
        return self.project_id_testnet


def _blockfrost() -> ProviderEndpoint:
    return ProviderEndpoint(
        mainnet="https://cardano-mainnet.blockfrost.io/api/v0",
        testnet="https://cardano-testnet.blockfrost.io/api/v0",
        auth_header="project_id",
    )


def _tangocrypto() -> ProviderEndpoint:
    return ProviderEndpoint(
        mainnet="https://cardano-mainnet.tangocrypto.com/v1",
        testnet="https://cardano-testnet.tangocrypto.com/v1",
        auth_header="x-api-key",
    )


@dataclass
class ProviderSettings:
    """Data-provider selection and per-provider endpoints."""
    id: str = "blockfrost"
    blockfrost: ProviderEndpoint = field(default_factory=_blockfrost)
    tangocrypto: ProviderEndpoint = field(default_factory=_tangocrypto)
    price_url: str = "https://api.coingecko.com/api/v3/simple/price"

    def endpoint(self, provider_id: str | None = None) -> ProviderEndpoint:
        provider_id = provider_id or self.id
        if provider_id == "blockfrost":
            return self.blockfrost
        if provider_id == "tangocrypto":
            return self.tangocrypto
        raise ValueError(f"Unknown provider: {provider_id!r}")


@dataclass
class StorageConfig:
    """Persistence settings."""
    backend: str = "sqlite"   # "sqlite" or "memory"
    path: str = "data/nami.db"


@dataclass
class SessionConfig:
    """Unlock session lifetime."""
    timeout_seconds: float = 300.0


@dataclass
class BalanceRefreshConfig:
    """Bounded poll used while refreshing an account balance."""
    interval_seconds: float = 0.1
    max_attempts: int = 50


@dataclass
class AppConfig:
    """Running application version consumed by the migration engine."""
    version: str = __version__


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class NamiConfig:
    """Top-level configuration container."""
    network: NetworkSettings = field(default_factory=NetworkSettings)
    provider: ProviderSettings = field(default_factory=ProviderSettings)
    storage: StorageConfig = field(default_factory=StorageConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    balance_refresh: BalanceRefreshConfig = field(default_factory=BalanceRefreshConfig)
    app: AppConfig = field(default_factory=AppConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if not hasattr(dc, key_under):
            continue
        current = getattr(dc, key_under)
        if isinstance(value, dict) and hasattr(current, "__dataclass_fields__"):
            _merge(current, value)
        else:
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> NamiConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        NAMI_NETWORK          -> network.id
        NAMI_NODE             -> network.node
        NAMI_PROVIDER         -> provider.id
        NAMI_DB_PATH          -> storage.path  (forces the sqlite backend)
        NAMI_SESSION_TIMEOUT  -> session.timeout_seconds
        NAMI_LOG_LEVEL        -> logging.level
        NAMI_LOG_FMT          -> logging.format
        NAMI_<PROVIDER>_PROJECT_ID_<NETWORK>
                              -> provider.<provider>.project_id_<network>
    """
    cfg = NamiConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("network", cfg.network),
                ("provider", cfg.provider),
                ("storage", cfg.storage),
                ("session", cfg.session),
                ("balance_refresh", cfg.balance_refresh),
                ("app", cfg.app),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("NAMI_NETWORK"):
        cfg.network.id = v.lower()
    if v := os.environ.get("NAMI_NODE"):
        cfg.network.node = v
    if v := os.environ.get("NAMI_PROVIDER"):
        cfg.provider.id = v.lower()
    if v := os.environ.get("NAMI_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.backend = "sqlite"
    if v := os.environ.get("NAMI_SESSION_TIMEOUT"):
        cfg.session.timeout_seconds = float(v)
    if v := os.environ.get("NAMI_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("NAMI_LOG_FMT"):
        cfg.logging.format = v
    for provider_id in ("blockfrost", "tangocrypto"):
        endpoint = cfg.provider.endpoint(provider_id)
        for network_id in NETWORK_ID:
            env = f"NAMI_{provider_id.upper()}_PROJECT_ID_{network_id.upper()}"
            if v := os.environ.get(env):
                setattr(endpoint, f"project_id_{network_id}", v)

    if cfg.network.id not in NETWORK_ID:
        raise ValueError(f"Unknown network id: {cfg.network.id!r}")
    cfg.provider.endpoint()  # validates provider.id
    return cfg
