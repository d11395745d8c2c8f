"""
Tests for SQLite persistence (storage.py).

Covers:
  - Schema creation and version guard
  - Event rows written only for committed operations
  - Snapshot rows (balances, meta-addresses, request sequences, stats)
  - restore() reproducing tree, registry, balances, sequences and stats
  - Context manager lifecycle
"""

from __future__ import annotations

import pytest

from shadeswap_core import auth
from shadeswap_core.auth import sign_request
from shadeswap_core.engine import ShadeSwapEngine
from shadeswap_core.errors import InvalidDepositAmount, NullifierAlreadyUsed, Unauthorized
from shadeswap_core.storage import EngineStore


@pytest.fixture
def store(tmp_path):
    """Fresh EngineStore in a temp directory."""
    s = EngineStore(str(tmp_path / "state" / "test.db"))
    yield s
    s.close()


@pytest.fixture
def attached(engine, store):
    store.attach(engine)
    return engine


class TestSchema:
    def test_tables_created(self, store):
        tables = store._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        names = {r["name"] for r in tables}
        for table in ("deposits", "spent_claims", "announcements", "meta_addresses",
                      "balances", "sequences", "stats", "schema_version"):
            assert table in names

    def test_schema_version(self, store):
        assert store.schema_version == EngineStore.CURRENT_SCHEMA_VERSION

    def test_newer_schema_refused(self, tmp_path):
        path = str(tmp_path / "future.db")
        with EngineStore(path) as s:
            s._conn.execute("UPDATE schema_version SET version = 99")
            s._conn.commit()
        with pytest.raises(RuntimeError):
            EngineStore(path)

    def test_empty_database(self, store):
        assert store.load_deposits() == []
        assert store.load_spent_claims() == set()
        assert store.load_stats() == (0, 0)
        assert store.load_announcements() == []


class TestPersistence:
    def test_deposits_in_leaf_order(self, attached, store, accounts):
        for c in (30, 10, 20):
            attached.deposit(accounts.alice, c)
        assert store.load_deposits() == [30, 10, 20]

    def test_rejected_operation_writes_nothing(self, attached, store, accounts):
        with pytest.raises(InvalidDepositAmount):
            attached.deposit(accounts.alice, 5, amount=1)
        assert store.load_deposits() == []
        assert store.load_balances() == []

    def test_claim_rows(self, attached, store, accounts, zk_payload, stealth_keys):
        root = attached.deposit(accounts.alice, 5).root
        attached.register_stealth_meta(accounts.bob, stealth_keys.meta)
        attached.swap(accounts.carol, zk_payload(root, 0xAB, accounts.bob))

        assert store.load_spent_claims() == {"0x" + "00" * 31 + "ab"}
        (row,) = store.load_announcements()
        assert row["id"] == 1
        assert row["scheme_id"] == 1
        assert row["ephemeral_pub_key"].startswith("0x")
        assert store.load_meta_addresses() == {accounts.bob: stealth_keys.meta}
        assert store.load_stats() == (1, attached.pool.denomination)

    def test_large_amounts_survive(self, attached, store, accounts):
        attached.fund(accounts.carol, 10**30, "USD")
        assert (accounts.carol, "USD", 10**30) in store.load_balances()

    def test_announcement_paging(self, attached, store, ring_depositors, ring_payload,
                                 stealth_keys, accounts):
        ring = [pub for _, pub in ring_depositors]
        for index, (priv, _) in enumerate(ring_depositors[:3]):
            attached.swap(accounts.carol, ring_payload(priv, ring, index,
                                                       stealth_keys.meta.to_bytes()))
        assert [a["id"] for a in store.load_announcements(since=1, limit=1)] == [2]
        assert len(store.load_announcements(limit=10)) == 3


class TestRestore:
    def test_round_trip(self, attached, store, config, snark, accounts, zk_payload):
        for c in (101, 102, 103):
            attached.deposit(accounts.alice, c)
        root = attached.pool.current_root
        attached.swap(accounts.carol, zk_payload(root, 0xAB, accounts.bob))

        fresh = ShadeSwapEngine(config, snark_backend=snark)
        assert store.restore(fresh) == 3
        assert fresh.pool.current_root == root
        assert fresh.accumulator.history.recent() == attached.accumulator.history.recent()
        assert fresh.is_spent(0xAB)
        assert fresh.balance_of(accounts.bob) == attached.balance_of(accounts.bob)
        assert fresh.pool.balance == 2 * attached.pool.denomination
        assert fresh.get_stats() == attached.get_stats()

    def test_restored_engine_rejects_replay(self, attached, store, config, snark, accounts,
                                            zk_payload):
        root = attached.deposit(accounts.alice, 101).root
        attached.deposit(accounts.alice, 102)
        payload = zk_payload(root, 0xAB, accounts.bob)
        attached.swap(accounts.carol, payload)

        fresh = ShadeSwapEngine(config, snark_backend=snark)
        store.restore(fresh)
        with pytest.raises(NullifierAlreadyUsed):
            fresh.swap(accounts.carol, payload)

    def test_request_sequences_survive(self, attached, store, config, snark, key_holders):
        dave = key_holders.dave
        denomination = attached.pool.denomination
        attached.fund(dave.address, 2 * denomination)
        request = sign_request(
            dave.key, attached.authenticator.domain, auth.DEPOSIT, 0,
            auth.deposit_fields(5, denomination),
        )
        attached.deposit(dave.address, 5, request=request)
        assert store.load_sequences() == {dave.address: 1}

        fresh = ShadeSwapEngine(config, snark_backend=snark)
        store.restore(fresh)
        assert fresh.next_sequence(dave.address) == 1
        with pytest.raises(Unauthorized):
            fresh.deposit(dave.address, 6, request=request)
        assert fresh.balance_of(dave.address) == denomination
