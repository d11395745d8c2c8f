"""
Tests for the claim payload codec (payload.py).

Covers:
  - Payload classification by length
  - ZK claim word layout
  - Ring claim layout, length formula and decode errors
  - Ring claim message binding
"""

from __future__ import annotations

import pytest

from shadeswap_core.crypto_utils import ZERO_ADDRESS, public_key
from shadeswap_core.errors import InvalidPayload
from shadeswap_core.payload import (
    ZK_PAYLOAD_SIZE,
    ClaimKind,
    RingClaim,
    ZkClaim,
    classify,
)
from shadeswap_core.zk_verifier import Groth16Proof, PublicSignals

RELAYER = "0x" + "77" * 20


def _ring_claim(n: int, fee_bps: int = 25, relayer: str = RELAYER) -> RingClaim:
    members = [public_key(10 + i) for i in range(n)]
    meta = public_key(1) + public_key(2)
    return RingClaim(
        signature=bytes(range(32)) * (n + 1),
        key_image=public_key(99),
        ring_members=members,
        stealth_meta_address=meta,
        relayer=relayer,
        fee_bps=fee_bps,
    )


class TestClassify:
    def test_empty_is_pass_through(self):
        assert classify(b"") is ClaimKind.PASS_THROUGH

    def test_512_bytes_is_zk(self):
        assert classify(b"\x00" * ZK_PAYLOAD_SIZE) is ClaimKind.ZK

    @pytest.mark.parametrize("size", [1, 156, 511, 513, 1024])
    def test_other_lengths_are_ring(self, size):
        assert classify(b"\x01" * size) is ClaimKind.RING

    @pytest.mark.parametrize("n", range(0, 12))
    def test_ring_encoding_never_512(self, n):
        assert 156 + 65 * n != ZK_PAYLOAD_SIZE

    def test_ring_shaped_512_bytes_is_zk(self):
        # Two members with a 322-byte signature: the wrong signature length
        # for the ring, but exactly the ZK payload size.
        claim = _ring_claim(2)
        data = RingClaim(
            signature=b"\x05" * 322,
            key_image=claim.key_image,
            ring_members=claim.ring_members,
            stealth_meta_address=claim.stealth_meta_address,
            relayer=claim.relayer,
            fee_bps=claim.fee_bps,
        ).encode()
        assert len(data) == ZK_PAYLOAD_SIZE
        assert classify(data) is ClaimKind.ZK


class TestZkClaim:
    def test_word_layout(self):
        proof = Groth16Proof(a=(1, 2), b=((3, 4), (5, 6)), c=(7, 8))
        signals = PublicSignals(9, 10, 11, 12, 13, 14, 15, 16)
        data = ZkClaim(proof, signals).encode()
        assert len(data) == 512
        words = [int.from_bytes(data[i:i + 32], "big") for i in range(0, 512, 32)]
        assert words == list(range(1, 17))
        decoded = ZkClaim.decode(data)
        assert decoded.signals.merkle_root == 11
        assert decoded.proof.b == ((3, 4), (5, 6))

    def test_wrong_length(self):
        with pytest.raises(InvalidPayload):
            ZkClaim.decode(b"\x00" * 511)

    def test_oversized_word(self):
        proof = Groth16Proof(a=(1 << 256, 2), b=((3, 4), (5, 6)), c=(7, 8))
        with pytest.raises(InvalidPayload):
            ZkClaim(proof, PublicSignals(*range(8))).encode()

    def test_signal_addresses(self):
        signals = PublicSignals(0, 0, 0, 0, int(RELAYER, 16), 0, 0, 0)
        assert signals.recipient_address == RELAYER
        assert signals.relayer_address == ZERO_ADDRESS


class TestRingClaim:
    @pytest.mark.parametrize("n", [2, 5, 10])
    def test_length_formula(self, n):
        assert len(_ring_claim(n).encode()) == 156 + 65 * n

    def test_decode_restores_fields(self):
        claim = _ring_claim(3)
        decoded = RingClaim.decode(claim.encode())
        assert decoded == claim
        assert decoded.relayer == RELAYER
        assert decoded.fee_bps == 25

    def test_truncated_header(self):
        with pytest.raises(InvalidPayload):
            RingClaim.decode(b"\x02" * 100)

    def test_truncated_members(self):
        data = _ring_claim(4).encode()
        with pytest.raises(InvalidPayload):
            RingClaim.decode(data[:122 + 33 * 2])

    def test_trailing_bytes(self):
        with pytest.raises(InvalidPayload):
            RingClaim.decode(_ring_claim(2).encode() + b"\x00")

    def test_short_signature(self):
        with pytest.raises(InvalidPayload):
            RingClaim.decode(_ring_claim(2).encode()[:-1])

    def test_encode_rejects_bad_key_image(self):
        claim = _ring_claim(2)
        bad = RingClaim(claim.signature, b"\x02" * 32, claim.ring_members,
                        claim.stealth_meta_address)
        with pytest.raises(InvalidPayload):
            bad.encode()

    def test_encode_rejects_bad_meta(self):
        claim = _ring_claim(2)
        bad = RingClaim(claim.signature, claim.key_image, claim.ring_members, b"\x02" * 65)
        with pytest.raises(InvalidPayload):
            bad.encode()

    def test_encode_rejects_large_fee(self):
        with pytest.raises(InvalidPayload):
            _ring_claim(2, fee_bps=0x10000).encode()


class TestRingMessage:
    def test_binds_relayer_and_fee(self):
        base = _ring_claim(3).message(b"gate")
        assert _ring_claim(3, fee_bps=26).message(b"gate") != base
        assert _ring_claim(3, relayer=ZERO_ADDRESS).message(b"gate") != base

    def test_binds_domain(self):
        claim = _ring_claim(3)
        assert claim.message(b"gate-a") != claim.message(b"gate-b")
        assert len(claim.message()) == 32

    def test_ignores_signature(self):
        claim = _ring_claim(2)
        other = RingClaim(b"", claim.key_image, claim.ring_members,
                          claim.stealth_meta_address, claim.relayer, claim.fee_bps)
        assert claim.message() == other.message()
