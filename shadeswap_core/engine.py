"""
ShadeSwapEngine: the one owned state object behind a gate process.

It wires every component onto a shared ``Journal`` and exposes the
documented operations.  Each mutating operation holds the engine lock and
runs inside one ``journal.atomic()`` unit, so operations are applied in a
single global order and a failure anywhere (bad proof, spent nullifier,
exchange error) leaves no trace.

The engine runs its own router: a private swap releases one denomination
from the pool to the router, trades it on the configured executor with
the gate as receiver, and lets the gate route the output.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator

from shadeswap_core import auth
from shadeswap_core.auth import RequestAuthenticator, SignedRequest
from shadeswap_core.config import ShadeSwapConfig
from shadeswap_core.crypto_utils import keccak256, normalize_address
from shadeswap_core.events import EventLog
from shadeswap_core.exchange import ConstantProductExecutor, SwapExecutor
from shadeswap_core.gate import PendingClaim, PrivacyGate, Settlement
from shadeswap_core.gateway import ReleaseGateway
from shadeswap_core.journal import Journal
from shadeswap_core.merkle import CommitmentAccumulator
from shadeswap_core.nullifier import NullifierRegistry
from shadeswap_core.pool import DepositReceipt, PrivacyPool
from shadeswap_core.stealth import (
    StealthAddressGenerator,
    StealthMetaAddress,
    StealthMetaRegistry,
    StealthRouter,
)
from shadeswap_core.vault import Vault
from shadeswap_core.zk_verifier import (
    SnarkBackend,
    SnarkjsBackend,
    UnconfiguredBackend,
    ZkMembershipVerifier,
)

logger = logging.getLogger("shadeswap.engine")


def system_address(label: str) -> str:
    """Deterministic vault account for an engine-internal role."""
    return "0x" + keccak256(b"shadeswap/" + label.encode())[-20:].hex()


POOL_ACCOUNT = system_address("pool")
GATE_ACCOUNT = system_address("gate")
ROUTER_ACCOUNT = system_address("router")
EXCHANGE_ACCOUNT = system_address("exchange")


@dataclass(frozen=True)
class SwapOutcome:
    output_amount: int
    currency: str
    settlement: Settlement | None = None

    def to_dict(self) -> dict:
        return {
            "output_amount": self.output_amount,
            "currency": self.currency,
            "private": self.settlement is not None,
            "settlement": self.settlement.to_dict() if self.settlement else None,
        }


def _default_backend(config: ShadeSwapConfig) -> SnarkBackend:
    if config.gate.verification_key:
        return SnarkjsBackend(config.gate.verification_key, list(config.gate.snarkjs_command))
    return UnconfiguredBackend()


class ShadeSwapEngine:
    """Privacy pool, gate, gateway and exchange behind one lock."""

    def __init__(
        self,
        config: ShadeSwapConfig | None = None,
        snark_backend: SnarkBackend | None = None,
        executor: SwapExecutor | None = None,
        stealth_generator: StealthAddressGenerator | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = cfg = config or ShadeSwapConfig()
        self.owner = normalize_address(cfg.pool.owner)
        self._clock = clock
        self.started_at = clock()
        self._lock = threading.RLock()
        self._commit_hooks: list[Callable[[ShadeSwapEngine], None]] = []

        self.journal = journal = Journal()
        self.vault = Vault(journal)
        self.events = EventLog(journal)
        self.accumulator = CommitmentAccumulator(
            cfg.tree.height, cfg.tree.root_history_size, journal=journal,
        )
        self.nullifiers = NullifierRegistry(journal)
        self.stealth_registry = StealthMetaRegistry(journal)
        self.stealth_router = StealthRouter(self.events, stealth_generator, self.stealth_registry)
        self.authenticator = RequestAuthenticator(cfg.gate.domain.encode(), journal)
        self.pool = PrivacyPool(
            POOL_ACCOUNT, self.owner, self.accumulator, self.nullifiers, self.vault,
            self.events, cfg.pool.denomination, cfg.pool.token, journal, clock,
        )
        self.gate = PrivacyGate(
            GATE_ACCOUNT,
            self.owner,
            self.accumulator,
            self.nullifiers,
            self.vault,
            self.stealth_router,
            self.events,
            ZkMembershipVerifier(snark_backend or _default_backend(cfg)),
            journal=journal,
            max_fee_bps=cfg.gate.max_fee_bps,
            relayers=cfg.gate.relayers,
            domain=cfg.gate.domain.encode(),
            clock=clock,
        )
        self.gateway = ReleaseGateway(
            self.vault, POOL_ACCOUNT, self.owner, self.events, journal,
            routers=[ROUTER_ACCOUNT, *(normalize_address(r) for r in cfg.gate.routers)],
        )
        self.executor = executor or ConstantProductExecutor(self.vault, EXCHANGE_ACCOUNT, journal)

        with journal.atomic():
            self.pool.bind_gate(self.owner, GATE_ACCOUNT)
        logger.info(
            f"Engine ready: tree height {cfg.tree.height}, denomination "
            f"{cfg.pool.denomination} {cfg.pool.token}"
        )

    # ── plumbing ─────────────────────────────────────────────────

    def add_commit_hook(self, hook: Callable[[ShadeSwapEngine], None]) -> None:
        """Run *hook* after every committed mutating operation."""
        self._commit_hooks.append(hook)

    def _run_commit_hooks(self) -> None:
        for hook in self._commit_hooks:
            try:
                hook(self)
            except Exception:
                logger.exception("Commit hook failed")

    @contextmanager
    def _operation(self) -> Iterator[ShadeSwapEngine]:
        """One mutating operation: engine lock, atomic unit, commit hooks."""
        with self._lock, self.journal.atomic():
            yield self
            self.journal.defer(self._run_commit_hooks)

    # ── value in ─────────────────────────────────────────────────

    def fund(self, holder: str, amount: int, token: str | None = None) -> None:
        """Credit value brought in from outside the engine."""
        with self._operation():
            self.vault.credit(normalize_address(holder), amount, token or self.pool.token)

    def deposit(
        self,
        depositor: str,
        commitment: int,
        amount: int | None = None,
        request: SignedRequest | None = None,
    ) -> DepositReceipt:
        """
        Deposit one denomination against *commitment*.

        In-process callers attach the value: *amount* arrives with the call.
        A signed *request* instead spends the depositor's funded balance.
        """
        depositor = normalize_address(depositor)
        amount = self.pool.denomination if amount is None else amount
        with self._operation():
            if request is None:
                self.vault.credit(depositor, amount, self.pool.token)
            else:
                self.authenticator.authenticate(
                    depositor, auth.DEPOSIT, auth.deposit_fields(commitment, amount), request,
                )
            return self.pool.deposit(depositor, commitment, amount)

    def create_exchange_pool(
        self, provider: str, token_b: str, amount_in: int, amount_b: int, trading_fee: int = 30,
    ) -> None:
        """Seed the reference executor with a pool-token / *token_b* pair."""
        if not isinstance(self.executor, ConstantProductExecutor):
            raise TypeError("the configured executor does not manage pools")
        provider = normalize_address(provider)
        with self._operation():
            self.executor.create_pool(
                provider, self.pool.token, amount_in, token_b, amount_b, trading_fee,
            )

    # ── swaps ────────────────────────────────────────────────────

    def swap(
        self,
        initiator: str,
        payload: bytes = b"",
        token_out: str | None = None,
        amount_in: int = 0,
        request: SignedRequest | None = None,
    ) -> SwapOutcome:
        """
        Run one swap through the gate.

        With an empty payload the initiator trades *amount_in* of the pool
        token from its own balance.  With a claim payload one denomination
        is released from the pool and the output is routed by the gate.
        *token_out* equal to the pool token (the default) skips the
        exchange and withdraws the denomination as-is.  A signed *request*
        is checked against the initiator before anything else runs.
        """
        initiator = normalize_address(initiator)
        token_in = self.pool.token
        token_out = token_out or token_in
        result: dict[str, int] = {}

        def continuation(claim: PendingClaim | None) -> tuple[int, str]:
            if claim is None:
                payer, receiver, amount = initiator, initiator, amount_in
            else:
                amount = self.pool.denomination
                self.gateway.release_token_for_swap(ROUTER_ACCOUNT, token_in, amount)
                payer, receiver = ROUTER_ACCOUNT, GATE_ACCOUNT
            if token_out == token_in:
                self.vault.transfer(payer, receiver, amount, token_in)
                out = amount
            else:
                out = self.executor.swap(payer, token_in, amount, token_out, receiver)
            result["out"] = out
            return out, token_out

        with self._operation():
            if request is not None:
                self.authenticator.authenticate(
                    initiator, auth.SWAP, auth.swap_fields(payload, token_out, amount_in), request,
                )
            settlement = self.gate.claim_and_swap(initiator, payload, continuation)
        return SwapOutcome(result["out"], token_out, settlement)

    def private_swap(self, initiator: str, payload: bytes, token_out: str | None = None) -> Settlement:
        outcome = self.swap(initiator, payload, token_out)
        if outcome.settlement is None:
            raise ValueError("private_swap needs a claim payload")
        return outcome.settlement

    # ── admin ────────────────────────────────────────────────────

    def set_relayer(self, caller: str, relayer: str, allowed: bool = True) -> None:
        with self._operation():
            self.gate.set_relayer(normalize_address(caller), relayer, allowed)

    def authorize_router(self, caller: str, router: str) -> None:
        with self._operation():
            self.gateway.authorize_router(normalize_address(caller), normalize_address(router))

    def deauthorize_router(self, caller: str, router: str) -> None:
        with self._operation():
            self.gateway.deauthorize_router(normalize_address(caller), normalize_address(router))

    def register_stealth_meta(
        self,
        registrant: str,
        meta: StealthMetaAddress | bytes,
        request: SignedRequest | None = None,
    ) -> StealthMetaAddress:
        if isinstance(meta, (bytes, bytearray)):
            meta = StealthMetaAddress.from_bytes(bytes(meta))
        with self._operation():
            if request is not None:
                self.authenticator.authenticate(
                    registrant, auth.REGISTER_META, auth.register_meta_fields(meta.to_bytes()), request,
                )
            return self.stealth_registry.register(registrant, meta)

    def next_sequence(self, holder: str) -> int:
        return self.authenticator.next_sequence(holder)

    # ── queries ──────────────────────────────────────────────────

    def is_known_root(self, root: int) -> bool:
        return self.pool.is_known_root(root)

    def is_spent(self, identifier: int | bytes | str) -> bool:
        return self.pool.is_spent(identifier)

    def is_commitment_exists(self, commitment: int) -> bool:
        return self.pool.is_commitment_exists(commitment)

    def get_deposit_count(self) -> int:
        return self.pool.get_deposit_count()

    def get_stats(self) -> tuple[int, int]:
        return self.gate.get_stats()

    def balance_of(self, holder: str, token: str | None = None) -> int:
        return self.vault.balance_of(normalize_address(holder), token or self.pool.token)

    def status(self) -> dict:
        total_claims, total_volume = self.get_stats()
        return {
            "owner": self.owner,
            "denomination": self.pool.denomination,
            "token": self.pool.token,
            "tree_height": self.accumulator.height,
            "deposit_count": self.get_deposit_count(),
            "current_root": hex(self.pool.current_root),
            "recent_roots": [hex(r) for r in self.accumulator.history.recent()],
            "pool_balance": self.pool.balance,
            "spent_claims": len(self.nullifiers),
            "total_claims": total_claims,
            "total_volume": total_volume,
            "relayers": sorted(self.gate.relayers),
            "uptime": round(self._clock() - self.started_at, 1),
        }
