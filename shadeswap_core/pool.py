"""
PrivacyPool: the deposit side of the engine.

A deposit moves exactly one denomination of value from the depositor into
the pool account and appends the depositor's commitment to the
accumulator.  Everything a claimant later needs to know (is this root
still fresh, has this claim been redeemed, is my commitment in) is
answered here.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from shadeswap_core.crypto_utils import short
from shadeswap_core.errors import InvalidDepositAmount, Unauthorized
from shadeswap_core.events import DepositEvent, EventLog
from shadeswap_core.journal import Journal
from shadeswap_core.merkle import CommitmentAccumulator
from shadeswap_core.nullifier import NullifierRegistry
from shadeswap_core.vault import NATIVE_TOKEN, Vault

logger = logging.getLogger("shadeswap.pool")


@dataclass(frozen=True)
class DepositReceipt:
    commitment: int
    leaf_index: int
    root: int
    timestamp: float

    def to_dict(self) -> dict:
        return {
            "commitment": hex(self.commitment),
            "leaf_index": self.leaf_index,
            "root": hex(self.root),
            "timestamp": self.timestamp,
        }


class PrivacyPool:
    """Fixed-denomination deposit pool over a commitment accumulator."""

    def __init__(
        self,
        account: str,
        owner: str,
        accumulator: CommitmentAccumulator,
        nullifiers: NullifierRegistry,
        vault: Vault,
        events: EventLog,
        denomination: int,
        token: str = NATIVE_TOKEN,
        journal: Journal | None = None,
        clock: Callable[[], float] = time.time,
    ):
        if denomination <= 0:
            raise ValueError("denomination must be positive")
        self.account = account
        self.owner = owner
        self.accumulator = accumulator
        self.nullifiers = nullifiers
        self.vault = vault
        self.events = events
        self.denomination = denomination
        self.token = token
        self._journal = journal or Journal()
        self._clock = clock

    # ── deposits ─────────────────────────────────────────────────

    def deposit(self, depositor: str, commitment: int, amount: int) -> DepositReceipt:
        if amount != self.denomination:
            raise InvalidDepositAmount(
                f"deposit must be exactly {self.denomination} {self.token}, got {amount}"
            )
        with self._journal.atomic():
            leaf_index, root = self.accumulator.insert(commitment)
            self.vault.transfer(depositor, self.account, amount, self.token)
            now = self._clock()
            self.events.emit(DepositEvent(commitment=commitment, leaf_index=leaf_index, timestamp=now))
        logger.info(f"Deposit #{leaf_index} from {short(depositor)} accepted")
        return DepositReceipt(commitment, leaf_index, root, now)

    # ── queries ──────────────────────────────────────────────────

    def is_known_root(self, root: int) -> bool:
        return self.accumulator.is_known_root(root)

    def is_spent(self, identifier: int | bytes | str) -> bool:
        return self.nullifiers.is_spent(identifier)

    def is_commitment_exists(self, commitment: int) -> bool:
        return self.accumulator.contains(commitment)

    def get_deposit_count(self) -> int:
        return self.accumulator.leaf_count

    @property
    def current_root(self) -> int:
        return self.accumulator.root

    @property
    def balance(self) -> int:
        return self.vault.balance_of(self.account, self.token)

    # ── admin ────────────────────────────────────────────────────

    def bind_gate(self, caller: str, gate_id: str) -> None:
        if caller != self.owner:
            raise Unauthorized("only the owner may bind the gate")
        self.nullifiers.bind(gate_id)
        logger.info(f"Nullifier registry bound to gate {gate_id}")
