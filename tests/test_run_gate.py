"""
Tests for the gate runner's engine assembly (run_gate.py).
"""

from __future__ import annotations

from run_gate import LIQUIDITY_PROVIDER, build_engine, main_sync
from shadeswap_core.config import ShadeSwapConfig


def _config(**exchange):
    cfg = ShadeSwapConfig()
    cfg.pool.denomination = 1_000
    for key, value in exchange.items():
        setattr(cfg.exchange, key, value)
    return cfg


class TestBuildEngine:
    def test_without_storage_or_exchange(self):
        engine, store = build_engine(_config())
        assert store is None
        assert engine.executor.pools == {}

    def test_seeds_exchange(self):
        engine, _ = build_engine(_config(reserve_in=50_000, reserve_out=100_000))
        pool = engine.executor.get_pool("NATIVE", "USD")
        assert (pool.reserve_a, pool.reserve_b) == (50_000, 100_000)
        assert engine.balance_of(LIQUIDITY_PROVIDER) == 0

    def test_storage_restores_previous_run(self, tmp_path):
        cfg = _config(reserve_in=50_000, reserve_out=100_000)
        cfg.storage.enabled = True
        cfg.storage.path = str(tmp_path / "gate.db")

        engine, store = build_engine(cfg)
        engine.deposit("0x" + "a1" * 20, 77)
        store.close()

        again, store = build_engine(cfg)
        try:
            assert again.is_commitment_exists(77)
            assert again.pool.balance == 1_000
        finally:
            store.close()

    def test_restart_readopts_exchange_pool(self, tmp_path):
        cfg = _config(reserve_in=50_000, reserve_out=100_000)
        cfg.storage.enabled = True
        cfg.storage.path = str(tmp_path / "gate.db")

        engine, store = build_engine(cfg)
        engine.fund("0x" + "c0" * 20, 1_000)
        engine.swap("0x" + "c0" * 20, b"", token_out="USD", amount_in=1_000)
        reserves = engine.executor.get_pool("NATIVE", "USD").to_dict()
        store.close()

        again, store = build_engine(cfg)
        try:
            assert again.executor.get_pool("NATIVE", "USD").to_dict() == reserves
            assert again.balance_of(LIQUIDITY_PROVIDER) == 0
        finally:
            store.close()


class TestEntryPoint:
    def test_console_script_target(self):
        assert callable(main_sync)
        assert main_sync.__module__ == "run_gate"
