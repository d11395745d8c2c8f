"""
Tests for the constant-product swap executor (exchange.py).
"""

from __future__ import annotations

import pytest

from shadeswap_core.errors import InsufficientBalance, InsufficientLiquidity, ValidationError
from shadeswap_core.exchange import ConstantProductExecutor, quote
from shadeswap_core.journal import Journal
from shadeswap_core.vault import Vault

LP = "0x" + "1f" * 20
TRADER = "0x" + "2e" * 20
VENUE = "0x" + "3d" * 20


@pytest.fixture
def journal():
    return Journal()


@pytest.fixture
def vault(journal):
    v = Vault(journal)
    v.credit(LP, 1_000_000, "NATIVE")
    v.credit(LP, 2_000_000, "USD")
    v.credit(TRADER, 10_000, "NATIVE")
    return v


@pytest.fixture
def executor(vault, journal):
    ex = ConstantProductExecutor(vault, VENUE, journal)
    ex.create_pool(LP, "NATIVE", 100_000, "USD", 200_000, trading_fee=30)
    return ex


class TestQuote:
    def test_no_fee(self):
        assert quote(1000, 1000, 1000, 0) == 500

    def test_fee_reduces_output(self):
        assert quote(1000, 1000, 1000, 30) < quote(1000, 1000, 1000, 0)

    def test_rounds_down(self):
        assert quote(3, 10, 1, 0) == 2


class TestPools:
    def test_create_moves_reserves(self, executor, vault):
        pool = executor.get_pool("USD", "NATIVE")
        assert (pool.reserve_a, pool.reserve_b) == (100_000, 200_000)
        assert vault.balance_of(VENUE, "NATIVE") == 100_000
        assert vault.balance_of(VENUE, "USD") == 200_000

    def test_duplicate_pool(self, executor):
        with pytest.raises(ValidationError):
            executor.create_pool(LP, "USD", 1, "NATIVE", 1)

    @pytest.mark.parametrize("kwargs", [
        {"token_b": "NATIVE"},
        {"amount_a": 0},
        {"trading_fee": 1001},
    ])
    def test_bad_pool(self, vault, journal, kwargs):
        ex = ConstantProductExecutor(vault, VENUE, journal)
        args = {"provider": LP, "token_a": "NATIVE", "amount_a": 10, "token_b": "USD",
                "amount_b": 10, "trading_fee": 0}
        args.update(kwargs)
        with pytest.raises(ValidationError):
            ex.create_pool(**args)


class TestSwap:
    def test_swap_pays_receiver(self, executor, vault):
        expected = quote(100_000, 200_000, 1_000, 30)
        out = executor.swap(TRADER, "NATIVE", 1_000, "USD", LP)
        assert out == expected
        assert vault.balance_of(TRADER, "NATIVE") == 9_000
        assert vault.balance_of(LP, "USD") == 1_800_000 + expected
        pool = executor.get_pool("NATIVE", "USD")
        assert pool.reserve_a == 101_000
        assert pool.reserve_b == 200_000 - expected

    def test_invariant_never_decreases(self, executor):
        pool = executor.get_pool("NATIVE", "USD")
        k = pool.invariant
        executor.swap(TRADER, "NATIVE", 5_000, "USD", TRADER)
        assert pool.invariant >= k

    def test_reverse_direction(self, executor, vault):
        executor.swap(TRADER, "NATIVE", 1_000, "USD", TRADER)
        usd = vault.balance_of(TRADER, "USD")
        out = executor.swap(TRADER, "USD", usd, "NATIVE", TRADER)
        assert 0 < out < 1_000

    def test_unknown_pair(self, executor):
        with pytest.raises(ValidationError):
            executor.swap(TRADER, "NATIVE", 1, "EUR", TRADER)

    def test_dust_input_has_no_output(self, executor, vault):
        vault.credit(LP, 10, "EUR")
        executor.create_pool(LP, "NATIVE", 500_000, "EUR", 10)
        with pytest.raises(InsufficientLiquidity):
            executor.swap(TRADER, "NATIVE", 1, "EUR", TRADER)

    def test_payer_without_funds(self, executor):
        with pytest.raises(InsufficientBalance):
            executor.swap(TRADER, "NATIVE", 20_000, "USD", TRADER)

    def test_rollback_restores_reserves(self, executor, vault, journal):
        pool = executor.get_pool("NATIVE", "USD")
        with pytest.raises(RuntimeError):
            with journal.atomic():
                executor.swap(TRADER, "NATIVE", 1_000, "USD", TRADER)
                raise RuntimeError("settlement failed")
        assert (pool.reserve_a, pool.reserve_b) == (100_000, 200_000)
        assert vault.balance_of(TRADER, "NATIVE") == 10_000
        assert vault.balance_of(TRADER, "USD") == 0


class TestAdoptPool:
    def test_adopts_held_reserves(self, vault, journal):
        vault.credit(VENUE, 40, "NATIVE")
        vault.credit(VENUE, 80, "USD")
        pool = ConstantProductExecutor(vault, VENUE, journal).adopt_pool("NATIVE", "USD", 30)
        assert (pool.reserve_a, pool.reserve_b, pool.trading_fee) == (40, 80, 30)

    def test_nothing_to_adopt(self, vault, journal):
        assert ConstantProductExecutor(vault, VENUE, journal).adopt_pool("NATIVE", "USD") is None
