"""
Value accounting for the engine.

Balances are integer amounts in the token's smallest unit, keyed by
(holder, token).  The pool, the gate, routers, relayers and stealth
addresses are all just holders.  ``credit`` brings value in from outside
the engine (an attached transfer, an exchange payout); ``transfer`` moves
it between holders.  Every change is journaled.
"""

from __future__ import annotations

from collections import defaultdict

from shadeswap_core.errors import InsufficientBalance, ValidationError
from shadeswap_core.journal import Journal

NATIVE_TOKEN = "NATIVE"


class Vault:
    """Integer balance book for every holder the engine touches."""

    def __init__(self, journal: Journal | None = None):
        self._balances: dict[str, dict[str, int]] = defaultdict(dict)
        self._journal = journal or Journal()

    def balance_of(self, holder: str, token: str = NATIVE_TOKEN) -> int:
        return self._balances.get(holder, {}).get(token, 0)

    def holdings(self, holder: str) -> dict[str, int]:
        return {t: v for t, v in self._balances.get(holder, {}).items() if v}

    def _set(self, holder: str, token: str, value: int) -> None:
        book = self._balances[holder]
        previous = book.get(token, 0)
        book[token] = value

        def undo() -> None:
            book[token] = previous

        self._journal.record(undo)

    @staticmethod
    def _check_amount(amount: int) -> None:
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError(f"amount must be a non-negative integer, got {amount!r}")

    def credit(self, holder: str, amount: int, token: str = NATIVE_TOKEN) -> None:
        self._check_amount(amount)
        if amount:
            self._set(holder, token, self.balance_of(holder, token) + amount)

    def debit(self, holder: str, amount: int, token: str = NATIVE_TOKEN) -> None:
        self._check_amount(amount)
        have = self.balance_of(holder, token)
        if have < amount:
            raise InsufficientBalance(
                f"{holder} holds {have} {token}, needs {amount}"
            )
        if amount:
            self._set(holder, token, have - amount)

    def transfer(self, src: str, dst: str, amount: int, token: str = NATIVE_TOKEN) -> None:
        self.debit(src, amount, token)
        self.credit(dst, amount, token)

    def total(self, token: str = NATIVE_TOKEN) -> int:
        return sum(book.get(token, 0) for book in self._balances.values())

    def snapshot(self) -> list[tuple[str, str, int]]:
        return [
            (holder, token, value)
            for holder, book in self._balances.items()
            for token, value in book.items()
            if value
        ]

    def restore(self, rows: list[tuple[str, str, int]]) -> None:
        """Reload persisted balances at start-up."""
        self._balances.clear()
        for holder, token, value in rows:
            self._balances[holder][token] = value
