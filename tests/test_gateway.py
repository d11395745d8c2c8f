"""
Tests for the release gateway and the deposit pool (gateway.py, pool.py).
"""

from __future__ import annotations

import pytest

from shadeswap_core.errors import (
    DuplicateCommitment,
    InsufficientBalance,
    InvalidDepositAmount,
    Unauthorized,
    ValidationError,
)
from shadeswap_core.events import DepositEvent, EventLog, FundsReleased
from shadeswap_core.gateway import ReleaseGateway
from shadeswap_core.journal import Journal
from shadeswap_core.merkle import CommitmentAccumulator
from shadeswap_core.nullifier import NullifierRegistry
from shadeswap_core.pool import PrivacyPool
from shadeswap_core.vault import Vault

OWNER = "0x" + "aa" * 20
ROUTER = "0x" + "55" * 20
POOL = "0x" + "99" * 20
GATE = "0x" + "98" * 20
ALICE = "0x" + "a1" * 20


@pytest.fixture
def journal():
    return Journal()


@pytest.fixture
def vault(journal):
    v = Vault(journal)
    v.credit(POOL, 5_000)
    return v


@pytest.fixture
def events(journal):
    return EventLog(journal)


@pytest.fixture
def gateway(vault, events, journal):
    return ReleaseGateway(vault, POOL, OWNER, events, journal)


@pytest.fixture
def pool(vault, events, journal):
    return PrivacyPool(
        POOL, OWNER, CommitmentAccumulator(height=4, journal=journal),
        NullifierRegistry(journal), vault, events, denomination=100,
        journal=journal, clock=lambda: 1234.0,
    )


class TestReleaseGateway:
    def test_unauthorized_router(self, gateway):
        with pytest.raises(Unauthorized):
            gateway.release_for_swap(ROUTER, 100)

    def test_authorized_release(self, gateway, vault, events):
        gateway.authorize_router(OWNER, ROUTER)
        gateway.release_for_swap(ROUTER, 100)
        assert vault.balance_of(ROUTER) == 100
        assert vault.balance_of(POOL) == 4_900
        (event,) = events.of_type(FundsReleased)
        assert (event.router, event.amount) == (ROUTER, 100)

    def test_only_owner_manages_routers(self, gateway):
        with pytest.raises(Unauthorized):
            gateway.authorize_router(ROUTER, ROUTER)
        gateway.authorize_router(OWNER, ROUTER)
        with pytest.raises(Unauthorized):
            gateway.deauthorize_router(ROUTER, ROUTER)

    def test_deauthorized_router_blocked(self, gateway):
        gateway.authorize_router(OWNER, ROUTER)
        gateway.deauthorize_router(OWNER, ROUTER)
        assert not gateway.is_authorized(ROUTER)
        with pytest.raises(Unauthorized):
            gateway.release_for_swap(ROUTER, 1)

    @pytest.mark.parametrize("amount", [0, -1, True])
    def test_bad_amount(self, gateway, amount):
        gateway.authorize_router(OWNER, ROUTER)
        with pytest.raises(ValidationError):
            gateway.release_for_swap(ROUTER, amount)

    def test_cannot_overdraw_pool(self, gateway):
        gateway.authorize_router(OWNER, ROUTER)
        with pytest.raises(InsufficientBalance):
            gateway.release_for_swap(ROUTER, 5_001)

    def test_release_rolled_back_with_unit(self, gateway, vault, events, journal):
        gateway.authorize_router(OWNER, ROUTER)
        with pytest.raises(RuntimeError):
            with journal.atomic():
                gateway.release_token_for_swap(ROUTER, "NATIVE", 100)
                raise RuntimeError("exchange failed")
        assert vault.balance_of(POOL) == 5_000
        assert vault.balance_of(ROUTER) == 0
        assert events.of_type(FundsReleased) == []


class TestPrivacyPool:
    def test_deposit(self, pool, vault, events):
        vault.credit(ALICE, 100)
        receipt = pool.deposit(ALICE, 77, 100)
        assert receipt.leaf_index == 0
        assert receipt.root == pool.current_root
        assert pool.is_known_root(receipt.root)
        assert pool.is_commitment_exists(77)
        assert pool.get_deposit_count() == 1
        assert pool.balance == 5_100
        (event,) = events.of_type(DepositEvent)
        assert (event.commitment, event.leaf_index, event.timestamp) == (77, 0, 1234.0)
        assert receipt.to_dict()["commitment"] == "0x4d"

    @pytest.mark.parametrize("amount", [0, 99, 101])
    def test_wrong_amount(self, pool, vault, amount):
        vault.credit(ALICE, 200)
        with pytest.raises(InvalidDepositAmount):
            pool.deposit(ALICE, 77, amount)
        assert pool.get_deposit_count() == 0

    def test_depositor_without_funds_leaves_tree_untouched(self, pool):
        root = pool.current_root
        with pytest.raises(InsufficientBalance):
            pool.deposit(ALICE, 77, 100)
        assert pool.current_root == root
        assert not pool.is_commitment_exists(77)

    def test_duplicate_commitment(self, pool, vault):
        vault.credit(ALICE, 200)
        pool.deposit(ALICE, 77, 100)
        with pytest.raises(DuplicateCommitment):
            pool.deposit(ALICE, 77, 100)
        assert vault.balance_of(ALICE) == 100

    def test_bind_gate_owner_only_and_once(self, pool):
        with pytest.raises(Unauthorized):
            pool.bind_gate(ALICE, GATE)
        pool.bind_gate(OWNER, GATE)
        assert pool.nullifiers.gate == GATE
        with pytest.raises(Unauthorized):
            pool.bind_gate(OWNER, ALICE)

    def test_zero_denomination(self, vault, events):
        with pytest.raises(ValueError):
            PrivacyPool(POOL, OWNER, CommitmentAccumulator(height=2), NullifierRegistry(),
                        vault, events, denomination=0)
