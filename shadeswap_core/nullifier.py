"""
Double-spend prevention.

The registry holds every claim identifier that has been redeemed: the
nullifier hash of a ZK claim or the key image of a ring claim.  An entry is
written exactly once and never cleared.  Only the bound privacy gate may
write; anyone may read.
"""

from __future__ import annotations

import logging

from shadeswap_core.crypto_utils import claim_key, short
from shadeswap_core.errors import AlreadyUsed, Unauthorized
from shadeswap_core.journal import Journal

logger = logging.getLogger("shadeswap.nullifier")


class NullifierRegistry:
    """Set of spent claim keys, writable only by the bound gate."""

    def __init__(self, journal: Journal | None = None):
        self._spent: set[str] = set()
        self._gate: str | None = None
        self._journal = journal or Journal()

    @property
    def gate(self) -> str | None:
        return self._gate

    def bind(self, gate_id: str) -> None:
        """Grant write access to *gate_id*.  May only happen once."""
        if self._gate is not None:
            raise Unauthorized("nullifier registry is already bound to a gate")
        self._gate = gate_id

        def undo() -> None:
            self._gate = None

        self._journal.record(undo)

    def is_spent(self, identifier: int | bytes | str) -> bool:
        return claim_key(identifier) in self._spent

    def mark_spent(self, caller: str, identifier: int | bytes | str) -> str:
        """Burn *identifier*.  Returns the canonical claim key."""
        if self._gate is None or caller != self._gate:
            raise Unauthorized("only the privacy gate may mark claims spent")
        key = claim_key(identifier)
        if key in self._spent:
            raise AlreadyUsed(f"claim {short(key)} already redeemed")
        self._spent.add(key)
        self._journal.record(lambda: self._spent.discard(key))
        logger.debug(f"Claim {short(key)} marked spent")
        return key

    def restore(self, keys: set[str]) -> None:
        """Reload persisted keys at start-up (before any claim is processed)."""
        self._spent.update(claim_key(k) for k in keys)

    def spent_keys(self) -> set[str]:
        return set(self._spent)

    def __len__(self) -> int:
        return len(self._spent)
