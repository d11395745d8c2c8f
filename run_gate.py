#!/usr/bin/env python3
"""
ShadeSwap Gate Runner — starts a privacy gate with:
  - deposit pool, nullifier registry and claim verification
  - the reference constant-product exchange (optional)
  - SQLite persistence and restore (optional)
  - the REST API

Usage:
    python run_gate.py --config shadeswap.toml --api-port 8080 \\
                       --owner 0x00000000000000000000000000000000000000aa

Environment variables (alternative to flags):
    SHADESWAP_OWNER, SHADESWAP_API_PORT, SHADESWAP_API_KEY, SHADESWAP_DB_PATH,
    SHADESWAP_RELAYERS, SHADESWAP_LOG_LEVEL, SHADESWAP_LOG_FMT
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import sys

# ---------------------------------------------------------------------------
# Ensure the project root is in sys.path so imports work before pip install
# ---------------------------------------------------------------------------
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from shadeswap_core.api import APIServer  # noqa: E402
from shadeswap_core.config import ShadeSwapConfig, load_config  # noqa: E402
from shadeswap_core.engine import ShadeSwapEngine, system_address  # noqa: E402
from shadeswap_core.logging_config import setup_logging  # noqa: E402
from shadeswap_core.storage import EngineStore  # noqa: E402

logger = logging.getLogger("shadeswap.runner")

LIQUIDITY_PROVIDER = system_address("liquidity")


def build_engine(cfg: ShadeSwapConfig) -> tuple[ShadeSwapEngine, EngineStore | None]:
    """Engine plus (optionally) its restored and attached store."""
    engine = ShadeSwapEngine(cfg)
    store = None
    if cfg.storage.enabled:
        store = EngineStore(cfg.storage.path)
        store.restore(engine)
        store.attach(engine)

    ex = cfg.exchange
    if ex.reserve_in > 0 and ex.reserve_out > 0:
        # Restored reserves come back with the vault snapshot; seed only fresh engines.
        if engine.executor.adopt_pool(cfg.pool.token, ex.token_out, ex.trading_fee) is not None:
            return engine, store
        engine.fund(LIQUIDITY_PROVIDER, ex.reserve_in, cfg.pool.token)
        engine.fund(LIQUIDITY_PROVIDER, ex.reserve_out, ex.token_out)
        engine.create_exchange_pool(
            LIQUIDITY_PROVIDER, ex.token_out, ex.reserve_in, ex.reserve_out, ex.trading_fee,
        )
    return engine, store


def parse_args():
    p = argparse.ArgumentParser(description="ShadeSwap privacy gate")
    p.add_argument("--config", default=None, help="Path to shadeswap.toml config file")
    p.add_argument("--owner", default=None, help="Owner address (admin operations)")
    p.add_argument("--api-host", default=None, help="API listen host")
    p.add_argument("--api-port", type=int, default=None, help="API listen port (enables the API)")
    p.add_argument("--db", default=None, help="SQLite path (enables storage)")
    p.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING, ...")
    p.add_argument("--log-format", choices=["human", "json"], default=None)
    return p.parse_args()


async def main():
    args = parse_args()

    # Load config (TOML + env overrides), then CLI flags on top
    cfg = load_config(args.config)
    if args.owner:
        cfg.pool.owner = args.owner
    if args.api_host:
        cfg.api.host = args.api_host
    if args.api_port is not None:
        cfg.api.port = args.api_port
        cfg.api.enabled = True
    if args.db:
        cfg.storage.path = args.db
        cfg.storage.enabled = True
    if args.log_level:
        cfg.logging.level = args.log_level
    if args.log_format:
        cfg.logging.format = args.log_format

    setup_logging(cfg.logging.level, cfg.logging.format, cfg.logging.file)

    engine, store = build_engine(cfg)
    if not cfg.gate.verification_key:
        logger.warning(
            "No [gate] verification_key configured: ZK claims will be rejected, "
            "ring-signature claims still work."
        )

    api = None
    if cfg.api.enabled:
        api = APIServer(engine, cfg.api.host, cfg.api.port, api_config=cfg.api, store=store)
        await api.start()
    else:
        logger.warning("API disabled; the gate has no way to receive claims")

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        if api is not None:
            await api.stop()
        if store is not None:
            store.close()


def main_sync():
    """Synchronous entry point for console_scripts."""
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(main())


if __name__ == "__main__":
    main_sync()
