"""
Append-only commitment accumulator.

A fixed-height incremental Merkle tree over deposit commitments.  Only the
rightmost filled subtree at each level is kept, so an insertion touches
exactly ``height`` nodes:

    at each level, if the running index is even the current node becomes
    the filled subtree for that level and is paired with the zero hash;
    if odd it is paired with the stored filled subtree.  The index is
    halved on the way up.

Every root produced by an insertion is written to a circular history of
``root_history_size`` slots.  A proof must reference one of those recent
roots; anything older is deliberately forgotten.

The compression function is injectable but must be the same for the
zero-hash precomputation and for insertion, otherwise roots silently
diverge from what provers compute.
"""

from __future__ import annotations

import logging
from typing import Callable

from shadeswap_core.crypto_utils import (
    SNARK_SCALAR_FIELD,
    bytes32_to_int,
    hash_pair,
    keccak256,
)
from shadeswap_core.errors import (
    CapacityExceeded,
    DuplicateCommitment,
    InvalidCommitment,
    OutOfFieldRange,
)
from shadeswap_core.journal import Journal

logger = logging.getLogger("shadeswap.merkle")

DEFAULT_HEIGHT = 20
DEFAULT_ROOT_HISTORY = 30
ZERO_VALUE = bytes32_to_int(keccak256(b"shadeswap")) % SNARK_SCALAR_FIELD


def compute_zero_hashes(
    height: int, hasher: Callable[[int, int], int] = hash_pair,
) -> list[int]:
    """zero[i] is the root of an empty subtree of height i (len = height + 1)."""
    zeros = [ZERO_VALUE]
    for _ in range(height):
        zeros.append(hasher(zeros[-1], zeros[-1]))
    return zeros


class RootHistory:
    """Circular buffer of the most recent roots."""

    def __init__(self, size: int = DEFAULT_ROOT_HISTORY, journal: Journal | None = None):
        if size < 1:
            raise ValueError("root history size must be >= 1")
        self.size = size
        self._roots: list[int] = [0] * size
        self._cursor = 0          # slot the next root is written to
        self._written = 0
        self._journal = journal or Journal()

    def push(self, root: int) -> None:
        slot, old_root = self._cursor, self._roots[self._cursor]
        self._roots[slot] = root
        self._cursor = (slot + 1) % self.size
        self._written += 1

        def undo() -> None:
            self._roots[slot] = old_root
            self._cursor = slot
            self._written -= 1

        self._journal.record(undo)

    def contains(self, root: int) -> bool:
        if root == 0:
            return False
        for known in self._roots:
            if known == root:
                return True
        return False

    @property
    def latest(self) -> int:
        if self._written == 0:
            return 0
        return self._roots[(self._cursor - 1) % self.size]

    def recent(self) -> list[int]:
        """Known roots, newest first."""
        count = min(self._written, self.size)
        return [self._roots[(self._cursor - 1 - i) % self.size] for i in range(count)]

    def __len__(self) -> int:
        return min(self._written, self.size)


class CommitmentAccumulator:
    """Incremental Merkle tree with bounded root history."""

    def __init__(
        self,
        height: int = DEFAULT_HEIGHT,
        root_history_size: int = DEFAULT_ROOT_HISTORY,
        hasher: Callable[[int, int], int] = hash_pair,
        journal: Journal | None = None,
    ):
        if not 1 <= height <= 32:
            raise ValueError("tree height must be between 1 and 32")
        self.height = height
        self.capacity = 1 << height
        self._hasher = hasher
        self._journal = journal or Journal()
        self.zero_hashes = compute_zero_hashes(height, hasher)
        self.filled_subtrees: list[int] = list(self.zero_hashes[:height])
        self.history = RootHistory(root_history_size, self._journal)
        self._root = self.zero_hashes[height]
        self._leaves: list[int] = []
        self._index: dict[int, int] = {}

    # ── queries ──────────────────────────────────────────────────

    @property
    def root(self) -> int:
        return self._root

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def contains(self, commitment: int) -> bool:
        return commitment in self._index

    def leaf_index(self, commitment: int) -> int | None:
        return self._index.get(commitment)

    def leaves(self) -> list[int]:
        return list(self._leaves)

    def is_known_root(self, root: int) -> bool:
        return self.history.contains(root)

    # ── insertion ────────────────────────────────────────────────

    def _check(self, commitment: int) -> None:
        if isinstance(commitment, bool) or not isinstance(commitment, int):
            raise InvalidCommitment("commitment must be an integer field element")
        if commitment <= 0:
            raise InvalidCommitment("commitment must be positive")
        if commitment >= SNARK_SCALAR_FIELD:
            raise OutOfFieldRange("commitment is not below the field modulus")
        if commitment in self._index:
            raise DuplicateCommitment("commitment already inserted")
        if len(self._leaves) >= self.capacity:
            raise CapacityExceeded(f"tree is full ({self.capacity} leaves)")

    def insert(self, commitment: int) -> tuple[int, int]:
        """Append a commitment.  Returns (leaf_index, new_root)."""
        self._check(commitment)
        leaf_index = len(self._leaves)
        old_root = self._root
        changed: list[tuple[int, int]] = []

        index = leaf_index
        node = commitment
        for level in range(self.height):
            if index % 2 == 0:
                changed.append((level, self.filled_subtrees[level]))
                self.filled_subtrees[level] = node
                left, right = node, self.zero_hashes[level]
            else:
                left, right = self.filled_subtrees[level], node
            node = self._hasher(left, right)
            index //= 2

        self._root = node
        self._leaves.append(commitment)
        self._index[commitment] = leaf_index

        def undo() -> None:
            for level, previous in reversed(changed):
                self.filled_subtrees[level] = previous
            self._leaves.pop()
            del self._index[commitment]
            self._root = old_root

        self._journal.record(undo)
        self.history.push(node)
        logger.debug(f"Leaf {leaf_index} inserted, root={node:#x}")
        return leaf_index, node
