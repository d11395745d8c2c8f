"""
Exchange collaborators.

The gate never prices anything itself: it hands released value to a
``SwapExecutor`` and trusts the output amount it reports.  The
constant-product executor below (x · y = k with a basis-point trading
fee) is what the node runner and the tests plug in; a production
deployment swaps in a real venue behind the same protocol.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Protocol

from shadeswap_core.errors import InsufficientLiquidity, ValidationError
from shadeswap_core.journal import Journal
from shadeswap_core.vault import Vault

logger = logging.getLogger("shadeswap.exchange")

MAX_TRADING_FEE = 1000  # 10% in basis points


class SwapExecutor(Protocol):
    def swap(
        self, payer: str, token_in: str, amount_in: int, token_out: str, receiver: str,
    ) -> int:
        """Take *amount_in* from *payer*, pay the output to *receiver*, return it."""
        ...


@dataclass
class LiquidityPool:
    """Reserves for one token pair."""
    pool_id: str
    token_a: str
    token_b: str
    reserve_a: int = 0
    reserve_b: int = 0
    trading_fee: int = 0  # basis points

    @property
    def invariant(self) -> int:
        return self.reserve_a * self.reserve_b

    def reserves(self, token_in: str) -> tuple[int, int]:
        if token_in == self.token_a:
            return self.reserve_a, self.reserve_b
        return self.reserve_b, self.reserve_a

    def to_dict(self) -> dict:
        return {
            "pool_id": self.pool_id,
            "token_a": self.token_a,
            "token_b": self.token_b,
            "reserve_a": self.reserve_a,
            "reserve_b": self.reserve_b,
            "trading_fee": self.trading_fee,
        }


def quote(reserve_in: int, reserve_out: int, amount_in: int, trading_fee: int) -> int:
    """Constant-product output for *amount_in*, rounded down."""
    amount_after_fee = amount_in * (10_000 - trading_fee)
    return amount_after_fee * reserve_out // (reserve_in * 10_000 + amount_after_fee)


class ConstantProductExecutor:
    """
    x · y = k pools whose reserves are held in the vault under *account*.

    The full input is added to the reserve and the fee stays in the pool,
    so k never decreases across a swap.
    """

    def __init__(self, vault: Vault, account: str, journal: Journal | None = None):
        self.vault = vault
        self.account = account
        self._journal = journal or Journal()
        self.pools: dict[str, LiquidityPool] = {}

    @staticmethod
    def _pool_id(token_a: str, token_b: str) -> str:
        first, second = sorted((token_a, token_b))
        return hashlib.sha256(f"{first}/{second}".encode()).hexdigest()[:40]

    def get_pool(self, token_a: str, token_b: str) -> LiquidityPool | None:
        return self.pools.get(self._pool_id(token_a, token_b))

    def create_pool(
        self,
        provider: str,
        token_a: str,
        amount_a: int,
        token_b: str,
        amount_b: int,
        trading_fee: int = 0,
    ) -> LiquidityPool:
        if token_a == token_b:
            raise ValidationError("pool tokens must differ")
        if amount_a <= 0 or amount_b <= 0:
            raise ValidationError("initial reserves must be positive")
        if not 0 <= trading_fee <= MAX_TRADING_FEE:
            raise ValidationError(f"trading fee must be 0-{MAX_TRADING_FEE} basis points")
        pid = self._pool_id(token_a, token_b)
        if pid in self.pools:
            raise ValidationError("pool already exists")

        self.vault.transfer(provider, self.account, amount_a, token_a)
        self.vault.transfer(provider, self.account, amount_b, token_b)
        pool = LiquidityPool(pid, token_a, token_b, amount_a, amount_b, trading_fee)
        self.pools[pid] = pool
        self._journal.record(lambda: self.pools.pop(pid, None))
        logger.info(f"Pool {token_a}/{token_b} created with {amount_a}/{amount_b}")
        return pool

    def adopt_pool(self, token_a: str, token_b: str, trading_fee: int = 0) -> LiquidityPool | None:
        """Re-register a pool from reserves the account already holds (after a restore)."""
        reserve_a = self.vault.balance_of(self.account, token_a)
        reserve_b = self.vault.balance_of(self.account, token_b)
        if reserve_a <= 0 or reserve_b <= 0:
            return None
        pid = self._pool_id(token_a, token_b)
        pool = LiquidityPool(pid, token_a, token_b, reserve_a, reserve_b, trading_fee)
        self.pools[pid] = pool
        return pool

    def swap(
        self, payer: str, token_in: str, amount_in: int, token_out: str, receiver: str,
    ) -> int:
        pool = self.get_pool(token_in, token_out)
        if pool is None:
            raise ValidationError(f"no pool for {token_in}/{token_out}")
        if isinstance(amount_in, bool) or not isinstance(amount_in, int) or amount_in <= 0:
            raise ValidationError("swap amount must be a positive integer")

        reserve_in, reserve_out = pool.reserves(token_in)
        out = quote(reserve_in, reserve_out, amount_in, pool.trading_fee)
        if out <= 0 or out >= reserve_out:
            raise InsufficientLiquidity(f"pool cannot pay out for {amount_in} {token_in}")

        self.vault.transfer(payer, self.account, amount_in, token_in)
        self.vault.transfer(self.account, receiver, out, token_out)
        previous = (pool.reserve_a, pool.reserve_b)
        if token_in == pool.token_a:
            pool.reserve_a += amount_in
            pool.reserve_b -= out
        else:
            pool.reserve_b += amount_in
            pool.reserve_a -= out

        def undo() -> None:
            pool.reserve_a, pool.reserve_b = previous

        self._journal.record(undo)
        logger.debug(f"Swapped {amount_in} {token_in} for {out} {token_out}")
        return out
