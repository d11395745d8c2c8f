"""
PrivacyGate: the verify → redeem → route state machine.

Each initiator moves ``Idle → Pending → Idle``:

  before_swap   classify the payload, run the claim checks for its kind,
                burn the claim key in the nullifier registry and stage a
                ``PendingClaim``.
  after_swap    split the realized output between the relayer and the
                recipient, deliver the remainder (to a fresh stealth
                address when one can be derived), announce, count, clear.

Both phases write through the shared journal, so when they run inside one
``Journal.atomic()`` unit together with the value release and the exchange
(see ``claim_and_swap``) any failure leaves the registry, the tree, the
balances and the stats exactly as they were.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

from shadeswap_core.crypto_utils import (
    ZERO_ADDRESS,
    is_zero_address,
    normalize_address,
    short,
)
from shadeswap_core.errors import (
    AlreadyUsed,
    ClaimAlreadyPending,
    ClaimNotInitialized,
    InsufficientOutput,
    InvalidMerkleRoot,
    InvalidPayload,
    InvalidProof,
    InvalidRecipient,
    InvalidRelayerFee,
    InvalidRingSignature,
    NullifierAlreadyUsed,
    Unauthorized,
    UnauthorizedRelayer,
    ValidationError,
)
from shadeswap_core.events import EventLog, PrivateSwapExecuted, StealthPayment
from shadeswap_core.journal import Journal
from shadeswap_core.merkle import CommitmentAccumulator
from shadeswap_core.nullifier import NullifierRegistry
from shadeswap_core.payload import ClaimKind, RingClaim, ZkClaim, classify
from shadeswap_core.ring_signature import RingSignatureVerifier, member_commitment
from shadeswap_core.stealth import (
    GeneratedStealthAddress,
    StealthMetaAddress,
    StealthRouter,
    pack_metadata,
)
from shadeswap_core.vault import Vault
from shadeswap_core.zk_verifier import ZkMembershipVerifier

logger = logging.getLogger("shadeswap.gate")

BPS_DENOMINATOR = 10_000
DEFAULT_MAX_FEE_BPS = 1_000


@dataclass
class PendingClaim:
    """A verified, already-redeemed claim waiting for its swap output."""
    initiator: str
    kind: ClaimKind
    claim_key: str
    recipient: str = ZERO_ADDRESS
    meta_address: StealthMetaAddress | None = None
    relayer: str = ZERO_ADDRESS
    fee_bps: int = 0
    claimed_output: int = 0
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "initiator": self.initiator,
            "kind": self.kind.value,
            "claim_key": self.claim_key,
            "recipient": self.recipient,
            "meta_address": self.meta_address.hex() if self.meta_address else None,
            "relayer": self.relayer,
            "fee_bps": self.fee_bps,
            "claimed_output": self.claimed_output,
        }


@dataclass(frozen=True)
class Settlement:
    """What ``after_swap`` paid out."""
    claim_key: str
    kind: ClaimKind
    currency: str
    output_amount: int
    recipient_amount: int
    fee_amount: int
    delivered_to: str
    relayer: str
    stealth: GeneratedStealthAddress | None = None

    def to_dict(self) -> dict:
        d = {
            "claim_key": self.claim_key,
            "kind": self.kind.value,
            "currency": self.currency,
            "output_amount": self.output_amount,
            "recipient_amount": self.recipient_amount,
            "fee_amount": self.fee_amount,
            "delivered_to": self.delivered_to,
            "relayer": self.relayer,
        }
        if self.stealth is not None:
            d["ephemeral_pub_key"] = "0x" + self.stealth.ephemeral_pub.hex()
            d["view_tag"] = self.stealth.view_tag
        return d


def split_fee(output_amount: int, fee_bps: int, relayer: str = ZERO_ADDRESS) -> tuple[int, int]:
    """Return (recipient_amount, fee_amount); the pair always sums to the output."""
    if is_zero_address(relayer):
        return output_amount, 0
    fee = output_amount * fee_bps // BPS_DENOMINATOR
    return output_amount - fee, fee


class ClaimVerifier(Protocol):
    """Validates one payload kind; returns the claim and the identifier to burn."""
    kind: ClaimKind

    def validate(
        self, gate: PrivacyGate, initiator: str, data: bytes,
    ) -> tuple[PendingClaim, int | bytes]:
        ...


class ZkClaimVerifier:
    """Membership-proof claims (512-byte payloads)."""

    kind = ClaimKind.ZK

    def __init__(self, verifier: ZkMembershipVerifier):
        self.verifier = verifier

    def validate(
        self, gate: PrivacyGate, initiator: str, data: bytes,
    ) -> tuple[PendingClaim, int | bytes]:
        claim = ZkClaim.decode(data)
        s = claim.signals

        if not gate.accumulator.is_known_root(s.merkle_root):
            raise InvalidMerkleRoot(f"root {s.merkle_root:#x} is not in the recent history")
        if gate.nullifiers.is_spent(s.nullifier_hash):
            raise NullifierAlreadyUsed("nullifier hash already redeemed")
        try:
            recipient = s.recipient_address
        except ValueError as exc:
            raise InvalidRecipient("recipient is not an address") from exc
        if is_zero_address(recipient):
            raise InvalidRecipient("recipient must be non-zero")
        try:
            relayer = s.relayer_address
        except ValueError as exc:
            raise InvalidPayload("relayer is not an address") from exc
        gate.check_fee(s.relayer_fee_bps, relayer)

        if not self.verifier.verify(claim.proof, s):
            raise InvalidProof("membership proof rejected")

        return PendingClaim(
            initiator=initiator,
            kind=self.kind,
            claim_key="",
            recipient=recipient,
            relayer=relayer,
            fee_bps=s.relayer_fee_bps,
            claimed_output=s.claimed_output_amount,
        ), s.nullifier_hash


class RingClaimVerifier:
    """Linkable ring-signature claims (every other non-empty payload)."""

    kind = ClaimKind.RING

    def __init__(self, verifier: RingSignatureVerifier):
        self.verifier = verifier

    def validate(
        self, gate: PrivacyGate, initiator: str, data: bytes,
    ) -> tuple[PendingClaim, int | bytes]:
        claim = RingClaim.decode(data)
        self.verifier.check_shape(claim.signature, len(claim.ring_members))
        meta = StealthMetaAddress.from_bytes(claim.stealth_meta_address)
        gate.check_fee(claim.fee_bps, claim.relayer)

        if gate.nullifiers.is_spent(claim.key_image):
            raise NullifierAlreadyUsed("key image already redeemed")
        for member in claim.ring_members:
            try:
                commitment = member_commitment(member)
            except ValueError as exc:
                raise InvalidRingSignature("ring member is not a curve point") from exc
            if not gate.accumulator.contains(commitment):
                raise InvalidRingSignature("ring member has no deposit in the pool")

        message = claim.message(gate.domain)
        if not self.verifier.verify(message, claim.signature, claim.key_image, claim.ring_members):
            raise InvalidRingSignature("ring does not close")

        return PendingClaim(
            initiator=initiator,
            kind=self.kind,
            claim_key="",
            meta_address=meta,
            relayer=claim.relayer,
            fee_bps=claim.fee_bps,
        ), claim.key_image


class PrivacyGate:
    """
    Two-phase claim processor bound to one pool.

    ``gate_id`` is both the identity the nullifier registry is bound to and
    the vault account that receives swap output before it is routed.
    """

    def __init__(
        self,
        gate_id: str,
        owner: str,
        accumulator: CommitmentAccumulator,
        nullifiers: NullifierRegistry,
        vault: Vault,
        router: StealthRouter,
        events: EventLog,
        zk_verifier: ZkMembershipVerifier,
        ring_verifier: RingSignatureVerifier | None = None,
        journal: Journal | None = None,
        max_fee_bps: int = DEFAULT_MAX_FEE_BPS,
        relayers: list[str] | None = None,
        domain: bytes = b"",
        clock: Callable[[], float] = time.time,
    ):
        self.gate_id = gate_id
        self.owner = owner
        self.accumulator = accumulator
        self.nullifiers = nullifiers
        self.vault = vault
        self.router = router
        self.events = events
        self.max_fee_bps = max_fee_bps
        self.domain = domain
        self._journal = journal or Journal()
        self._clock = clock
        self._relayers: set[str] = {normalize_address(r) for r in relayers or []}
        self._pending: dict[str, PendingClaim] = {}
        self.total_claims = 0
        self.total_volume = 0
        self._verifiers: dict[ClaimKind, ClaimVerifier] = {
            ClaimKind.ZK: ZkClaimVerifier(zk_verifier),
            ClaimKind.RING: RingClaimVerifier(ring_verifier or RingSignatureVerifier()),
        }

    # ── policy ───────────────────────────────────────────────────

    def check_fee(self, fee_bps: int, relayer: str) -> None:
        if fee_bps > self.max_fee_bps:
            raise InvalidRelayerFee(f"fee {fee_bps} bps exceeds {self.max_fee_bps} bps")
        if not is_zero_address(relayer) and relayer not in self._relayers:
            raise UnauthorizedRelayer(f"relayer {relayer} is not allowlisted")

    def set_relayer(self, caller: str, relayer: str, allowed: bool) -> None:
        if caller != self.owner:
            raise Unauthorized("only the owner may manage relayers")
        relayer = normalize_address(relayer)
        if allowed == (relayer in self._relayers):
            return
        if allowed:
            self._relayers.add(relayer)
            self._journal.record(lambda: self._relayers.discard(relayer))
        else:
            self._relayers.discard(relayer)
            self._journal.record(lambda: self._relayers.add(relayer))
        logger.info(f"Relayer {relayer} {'allowed' if allowed else 'removed'}")

    def is_relayer(self, relayer: str) -> bool:
        return normalize_address(relayer) in self._relayers

    @property
    def relayers(self) -> set[str]:
        return set(self._relayers)

    # ── pending claims ───────────────────────────────────────────

    def pending_claim(self, initiator: str) -> PendingClaim | None:
        return self._pending.get(initiator)

    def _stage(self, claim: PendingClaim) -> None:
        self._pending[claim.initiator] = claim
        self._journal.record(lambda: self._pending.pop(claim.initiator, None))

    def _clear(self, initiator: str) -> None:
        claim = self._pending.pop(initiator)
        self._journal.record(lambda: self._pending.__setitem__(initiator, claim))

    # ── phase 1 ──────────────────────────────────────────────────

    def before_swap(self, initiator: str, payload: bytes) -> PendingClaim | None:
        kind = classify(payload)
        if kind is ClaimKind.PASS_THROUGH:
            return None
        if initiator in self._pending:
            raise ClaimAlreadyPending(f"{initiator} already has a claim in flight")

        with self._journal.atomic():
            claim, identifier = self._verifiers[kind].validate(self, initiator, payload)
            try:
                claim.claim_key = self.nullifiers.mark_spent(self.gate_id, identifier)
            except AlreadyUsed as exc:
                raise NullifierAlreadyUsed(exc.message) from exc
            self._stage(claim)

        logger.info(f"{kind.value} claim {short(claim.claim_key)} accepted for {initiator}")
        return claim

    # ── phase 2 ──────────────────────────────────────────────────

    def after_swap(
        self,
        initiator: str,
        output_amount: int,
        currency: str,
        payload: bytes | None = None,
    ) -> Settlement | None:
        """
        Route the realized output of the swap that follows ``before_swap``.

        Pass *payload* to let an empty one short-circuit as pass-through;
        without it a staged claim is required.
        """
        if payload is not None and classify(payload) is ClaimKind.PASS_THROUGH:
            return None
        claim = self._pending.get(initiator)
        if claim is None:
            raise ClaimNotInitialized(f"no pending claim for {initiator}")
        if isinstance(output_amount, bool) or not isinstance(output_amount, int) or output_amount < 0:
            raise ValidationError("output amount must be a non-negative integer")

        with self._journal.atomic():
            settlement = self._settle(claim, output_amount, currency)
            self.total_claims += 1
            self.total_volume += output_amount
            self._journal.record(self._uncount(output_amount))
            self._clear(initiator)

        logger.info(
            f"Claim {short(claim.claim_key)} settled: {settlement.recipient_amount} {currency} "
            f"delivered, fee {settlement.fee_amount}"
        )
        return settlement

    def _uncount(self, output_amount: int) -> Callable[[], None]:
        def undo() -> None:
            self.total_claims -= 1
            self.total_volume -= output_amount
        return undo

    def _settle(self, claim: PendingClaim, output_amount: int, currency: str) -> Settlement:
        if claim.claimed_output and claim.claimed_output > output_amount:
            raise InsufficientOutput(
                f"swap produced {output_amount}, claim requires {claim.claimed_output}"
            )
        recipient_amount, fee = split_fee(output_amount, claim.fee_bps, claim.relayer)

        meta = claim.meta_address
        if meta is None and not is_zero_address(claim.recipient):
            meta = self.router.registry.get(claim.recipient)
        stealth = self.router.consume_meta_address(meta) if meta is not None else None
        destination = stealth.address if stealth is not None else claim.recipient

        self.vault.transfer(self.gate_id, destination, recipient_amount, currency)
        if fee:
            self.vault.transfer(self.gate_id, claim.relayer, fee, currency)

        now = self._clock()
        if stealth is not None:
            self.events.emit(StealthPayment(
                stealth_address=stealth.address,
                token=currency,
                amount=recipient_amount,
                fee=fee,
                relayer=claim.relayer,
            ))
            self.router.announce(
                self.router.generator.scheme_id,
                stealth.address,
                self.gate_id,
                stealth.ephemeral_pub,
                pack_metadata(stealth.view_tag, currency, recipient_amount),
            )
        self.events.emit(PrivateSwapExecuted(
            nullifier_hash=claim.claim_key,
            recipient=destination,
            relayer=claim.relayer,
            amount=recipient_amount,
            fee=fee,
            timestamp=now,
        ))
        return Settlement(
            claim_key=claim.claim_key,
            kind=claim.kind,
            currency=currency,
            output_amount=output_amount,
            recipient_amount=recipient_amount,
            fee_amount=fee,
            delivered_to=destination,
            relayer=claim.relayer,
            stealth=stealth,
        )

    # ── single-unit driver ───────────────────────────────────────

    def claim_and_swap(
        self,
        initiator: str,
        payload: bytes,
        continuation: Callable[[PendingClaim | None], tuple[int, str]],
    ) -> Settlement | None:
        """
        Run both phases around *continuation* in one atomic unit.

        *continuation* receives the staged claim (None for pass-through),
        performs the release and the exchange, and returns the realized
        ``(output_amount, currency)``.
        """
        with self._journal.atomic():
            claim = self.before_swap(initiator, payload)
            output_amount, currency = continuation(claim)
            return self.after_swap(initiator, output_amount, currency, payload)

    def get_stats(self) -> tuple[int, int]:
        return self.total_claims, self.total_volume
