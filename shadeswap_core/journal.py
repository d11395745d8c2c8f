"""
All-or-nothing execution for multi-step engine operations.

Every component that owns mutable state records an undo callback for each
mutation it makes.  ``Journal.atomic()`` opens a unit of work; if the body
raises, the undo callbacks recorded since the unit opened are replayed in
reverse order and the exception propagates.  Work deferred with
``defer()`` (event delivery, persistence) only runs once the outermost
unit commits, so an aborted operation leaves no observable trace.

Units nest: an inner unit that fails rolls back to its own start, the
outer unit decides whether to carry on.

Usage:
    journal = Journal()
    with journal.atomic():
        registry.mark_spent(gate_id, key)    # records its own undo
        journal.defer(lambda: log.append(evt))
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Callable, Iterator

logger = logging.getLogger("shadeswap.journal")


class Journal:
    """Undo log plus deferred-on-commit queue."""

    def __init__(self) -> None:
        self._undo: list[Callable[[], None]] = []
        self._deferred: list[Callable[[], None]] = []
        self._depth = 0
        self.commits = 0
        self.rollbacks = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def record(self, undo: Callable[[], None]) -> None:
        """Register how to reverse a mutation that was just applied."""
        if self._depth:
            self._undo.append(undo)

    def defer(self, action: Callable[[], None]) -> None:
        """Run *action* when the outermost unit commits (now, if none is open)."""
        if self._depth:
            self._deferred.append(action)
        else:
            action()

    @contextmanager
    def atomic(self) -> Iterator[Journal]:
        undo_mark = len(self._undo)
        deferred_mark = len(self._deferred)
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            self._rollback(undo_mark, deferred_mark)
            raise
        self._depth -= 1
        if self._depth == 0:
            self._commit()

    def _rollback(self, undo_mark: int, deferred_mark: int) -> None:
        undone = 0
        while len(self._undo) > undo_mark:
            self._undo.pop()()
            undone += 1
        del self._deferred[deferred_mark:]
        if self._depth == 0:
            self.rollbacks += 1
        logger.debug(f"Rolled back {undone} mutation(s)")

    def _commit(self) -> None:
        self._undo.clear()
        deferred, self._deferred = self._deferred, []
        self.commits += 1
        for action in deferred:
            action()
