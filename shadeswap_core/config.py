"""
TOML-based configuration for a ShadeSwap gate.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from shadeswap_core.config import load_config
    cfg = load_config("shadeswap.toml")
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
    import tomli as tomllib  # type: ignore[import,no-redef]

from shadeswap_core.crypto_utils import ZERO_ADDRESS
from shadeswap_core.vault import NATIVE_TOKEN


@dataclass
class TreeConfig:
    """Commitment accumulator shape."""
    height: int = 20
    root_history_size: int = 30


@dataclass
class PoolConfig:
    """Deposit pool settings."""
    owner: str = ZERO_ADDRESS
    denomination: int = 10**18
    token: str = NATIVE_TOKEN


@dataclass
class GateConfig:
    """Claim policy."""
    max_fee_bps: int = 1000
    relayers: list[str] = field(default_factory=list)
    routers: list[str] = field(default_factory=list)
    domain: str = "shadeswap"            # mixed into every ring-claim message
    verification_key: str = ""          # snarkjs verification_key.json (empty = ZK claims disabled)
    snarkjs_command: list[str] = field(default_factory=lambda: ["npx", "snarkjs"])


@dataclass
class ExchangeConfig:
    """Reference constant-product venue seeded at start-up (0 reserves = none)."""
    token_out: str = "USD"
    reserve_in: int = 0
    reserve_out: int = 0
    trading_fee: int = 30               # basis points


@dataclass
class APIConfig:
    """REST API settings."""
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    api_key: str = ""                 # require this key on POST endpoints (empty = no auth)
    rate_limit_rpm: int = 120          # max requests per minute per IP (0 = unlimited)
    cors_origins: list[str] = field(default_factory=list)  # allowed CORS origins (empty = no CORS)
    max_body_bytes: int = 65_536


@dataclass
class StorageConfig:
    """Persistence settings."""
    enabled: bool = False
    path: str = "data/shadeswap.db"


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class ShadeSwapConfig:
    """Top-level configuration container."""
    tree: TreeConfig = field(default_factory=TreeConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    gate: GateConfig = field(default_factory=GateConfig)
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    api: APIConfig = field(default_factory=APIConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def _split(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def load_config(path: str | None = None) -> ShadeSwapConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        SHADESWAP_OWNER        -> pool.owner
        SHADESWAP_RELAYERS     -> gate.relayers   (comma-separated)
        SHADESWAP_API_PORT     -> api.port        (also enables the API)
        SHADESWAP_API_KEY      -> api.api_key
        SHADESWAP_CORS_ORIGINS -> api.cors_origins (comma-separated)
        SHADESWAP_LOG_LEVEL    -> logging.level
        SHADESWAP_LOG_FMT      -> logging.format
        SHADESWAP_DB_PATH      -> storage.path    (also enables storage)
    """
    cfg = ShadeSwapConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("tree", cfg.tree),
                ("pool", cfg.pool),
                ("gate", cfg.gate),
                ("exchange", cfg.exchange),
                ("api", cfg.api),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("SHADESWAP_OWNER"):
        cfg.pool.owner = v
    if v := os.environ.get("SHADESWAP_RELAYERS"):
        cfg.gate.relayers = _split(v)
    if v := os.environ.get("SHADESWAP_API_PORT"):
        cfg.api.port = int(v)
        cfg.api.enabled = True
    if v := os.environ.get("SHADESWAP_API_KEY"):
        cfg.api.api_key = v
    if v := os.environ.get("SHADESWAP_CORS_ORIGINS"):
        cfg.api.cors_origins = _split(v)
    if v := os.environ.get("SHADESWAP_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("SHADESWAP_LOG_FMT"):
        cfg.logging.format = v
    if v := os.environ.get("SHADESWAP_DB_PATH"):
        cfg.storage.path = v
        cfg.storage.enabled = True

    return cfg
