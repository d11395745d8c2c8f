"""
Claim payload codec.

The gate receives an opaque byte string with each swap.  Its shape decides
what kind of claim it is:

    empty              → pass-through, no privacy requested
    exactly 512 bytes  → ZK claim
    anything else      → ring claim

ZK claim (16 big-endian 32-byte words):
    pA[2] ‖ pB[2][2] ‖ pC[2] ‖ publicSignals[8]

Ring claim:
    keyImage (33) ‖ stealthMetaAddress (66) ‖ relayer (20) ‖ feeBps (u16)
    ‖ n (u8) ‖ ringMembers (n × 33) ‖ sigLen (u16) ‖ ringSignature

A well-formed ring payload is 156 + 65·n bytes, which is never 512.  The
length alone decides the kind: any 512-byte payload is a ZK claim, so a
malformed ring payload that happens to total 512 bytes is rejected by the
ZK checks, not the ring codec.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum

from shadeswap_core.crypto_utils import (
    ZERO_ADDRESS,
    address_to_bytes,
    keccak256,
    normalize_address,
)
from shadeswap_core.errors import InvalidPayload
from shadeswap_core.zk_verifier import Groth16Proof, PublicSignals

WORD = 32
ZK_PAYLOAD_SIZE = 16 * WORD
KEY_IMAGE_SIZE = 33
META_ADDRESS_SIZE = 66
MEMBER_SIZE = 33
_RING_HEADER = struct.Struct(">33s66s20sHB")
_SIG_LEN = struct.Struct(">H")
_RING_MESSAGE_DOMAIN = b"shadeswap/ring-claim/v1"


class ClaimKind(Enum):
    PASS_THROUGH = "pass_through"
    ZK = "zk"
    RING = "ring"


def classify(data: bytes) -> ClaimKind:
    """Kind of claim by length only; 512 bytes is always ZK."""
    if not data:
        return ClaimKind.PASS_THROUGH
    if len(data) == ZK_PAYLOAD_SIZE:
        return ClaimKind.ZK
    return ClaimKind.RING


@dataclass(frozen=True)
class ZkClaim:
    proof: Groth16Proof
    signals: PublicSignals

    def encode(self) -> bytes:
        words = self.proof.words() + self.signals.to_list()
        try:
            return b"".join(w.to_bytes(WORD, "big") for w in words)
        except OverflowError as exc:
            raise InvalidPayload("word does not fit in 32 bytes") from exc

    @classmethod
    def decode(cls, data: bytes) -> ZkClaim:
        if len(data) != ZK_PAYLOAD_SIZE:
            raise InvalidPayload(f"ZK payload must be {ZK_PAYLOAD_SIZE} bytes")
        words = [int.from_bytes(data[i:i + WORD], "big") for i in range(0, len(data), WORD)]
        return cls(Groth16Proof.from_words(words[:8]), PublicSignals.from_list(words[8:]))


@dataclass(frozen=True)
class RingClaim:
    signature: bytes
    key_image: bytes
    ring_members: list[bytes]
    stealth_meta_address: bytes
    relayer: str = ZERO_ADDRESS
    fee_bps: int = 0

    def encode(self) -> bytes:
        if len(self.key_image) != KEY_IMAGE_SIZE:
            raise InvalidPayload("key image must be 33 bytes")
        if len(self.stealth_meta_address) != META_ADDRESS_SIZE:
            raise InvalidPayload("stealth meta-address must be 66 bytes")
        if any(len(m) != MEMBER_SIZE for m in self.ring_members):
            raise InvalidPayload("ring members must be 33-byte compressed keys")
        if not 0 <= self.fee_bps <= 0xFFFF or len(self.ring_members) > 0xFF:
            raise InvalidPayload("fee or ring size does not fit the encoding")
        return (
            _RING_HEADER.pack(
                self.key_image,
                self.stealth_meta_address,
                address_to_bytes(self.relayer),
                self.fee_bps,
                len(self.ring_members),
            )
            + b"".join(self.ring_members)
            + _SIG_LEN.pack(len(self.signature))
            + self.signature
        )

    @classmethod
    def decode(cls, data: bytes) -> RingClaim:
        if len(data) < _RING_HEADER.size:
            raise InvalidPayload("ring payload truncated")
        key_image, meta, relayer, fee_bps, n = _RING_HEADER.unpack_from(data, 0)
        offset = _RING_HEADER.size
        members_end = offset + n * MEMBER_SIZE
        if len(data) < members_end + _SIG_LEN.size:
            raise InvalidPayload("ring payload truncated")
        members = [data[i:i + MEMBER_SIZE] for i in range(offset, members_end, MEMBER_SIZE)]
        (sig_len,) = _SIG_LEN.unpack_from(data, members_end)
        sig_start = members_end + _SIG_LEN.size
        if len(data) != sig_start + sig_len:
            raise InvalidPayload("ring payload length mismatch")
        return cls(
            signature=data[sig_start:],
            key_image=key_image,
            ring_members=members,
            stealth_meta_address=meta,
            relayer=normalize_address(relayer),
            fee_bps=fee_bps,
        )

    def message(self, domain: bytes = b"") -> bytes:
        return ring_claim_message(
            self.key_image, self.ring_members, self.stealth_meta_address,
            self.relayer, self.fee_bps, domain,
        )


def ring_claim_message(
    key_image: bytes,
    ring_members: list[bytes],
    stealth_meta_address: bytes,
    relayer: str,
    fee_bps: int,
    domain: bytes = b"",
) -> bytes:
    """The 32-byte message a ring claimant signs; binds every routing field."""
    return keccak256(
        _RING_MESSAGE_DOMAIN
        + len(domain).to_bytes(2, "big") + domain
        + key_image
        + stealth_meta_address
        + address_to_bytes(relayer)
        + fee_bps.to_bytes(2, "big")
        + len(ring_members).to_bytes(1, "big")
        + b"".join(ring_members)
    )
