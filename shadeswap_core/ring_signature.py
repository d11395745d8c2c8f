"""
Linkable ring signatures (LSAG) over secp256k1.

A signature proves that one of the ring's public keys signed the message
without revealing which.  The key image ``I = x·Hp(P)`` is the same for
every signature made with private key ``x``, so the gate can burn it in the
nullifier registry and reject a second claim by the same signer.

Wire format (what the gate receives):
    signature = c0 (32) ‖ s_0 (32) ‖ … ‖ s_{n-1} (32)     → 32 + 32·n bytes
    key_image = 33-byte compressed point
    ring      = n compressed 33-byte public keys, 2 ≤ n ≤ 10

Verification walks the ring once:
    L_i     = s_i·G + c_i·P_i
    R_i     = s_i·Hp(P_i) + c_i·I
    c_{i+1} = H(m ‖ L_i ‖ R_i)
and accepts iff the challenge after the last member equals c0.
"""

from __future__ import annotations

from shadeswap_core.crypto_utils import (
    G,
    ORDER,
    SNARK_SCALAR_FIELD,
    bytes32_to_int,
    decode_point,
    encode_point,
    hash_to_point,
    hash_to_scalar,
    keccak256,
    random_scalar,
)
from shadeswap_core.errors import InvalidRingSize, InvalidSignatureLength

MIN_RING_SIZE = 2
MAX_RING_SIZE = 10
SCALAR_SIZE = 32
_CHALLENGE_DOMAIN = b"shadeswap/lsag"
_MEMBER_DOMAIN = b"shadeswap/ring-member"


def signature_length(ring_size: int) -> int:
    return SCALAR_SIZE + SCALAR_SIZE * ring_size


def _challenge(message: bytes, left, right) -> int:
    return hash_to_scalar(_CHALLENGE_DOMAIN, message, encode_point(left), encode_point(right))


def member_commitment(public_key: bytes) -> int:
    """Deposit commitment that admits *public_key* into claim rings."""
    canonical = encode_point(decode_point(public_key))
    value = bytes32_to_int(keccak256(_MEMBER_DOMAIN + canonical)) % SNARK_SCALAR_FIELD
    return value or 1


def generate_key_image(private_key: int, public_key: bytes) -> bytes:
    """I = x·Hp(P) as a 33-byte compressed point."""
    canonical = encode_point(decode_point(public_key))
    return encode_point(hash_to_point(canonical) * private_key)


def sign(message: bytes, private_key: int, ring: list[bytes], signer_index: int) -> bytes:
    """
    Produce an LSAG signature over *message*.

    ``ring[signer_index]`` must be the public key of *private_key*.  Ring
    size limits are not enforced here so that tests and tools can build
    out-of-policy rings; the verifier enforces them.
    """
    n = len(ring)
    if n == 0:
        raise ValueError("ring must not be empty")
    if not 0 <= signer_index < n:
        raise ValueError(f"signer index {signer_index} outside ring of {n}")
    points = [decode_point(pk) for pk in ring]
    if encode_point(G * private_key) != encode_point(points[signer_index]):
        raise ValueError("private key does not match ring[signer_index]")

    hp = [hash_to_point(encode_point(p)) for p in points]
    image = hp[signer_index] * private_key

    challenges = [0] * n
    responses = [0] * n
    alpha = random_scalar()
    challenges[(signer_index + 1) % n] = _challenge(
        message, G * alpha, hp[signer_index] * alpha,
    )
    i = (signer_index + 1) % n
    while i != signer_index:
        responses[i] = random_scalar()
        left = G * responses[i] + points[i] * challenges[i]
        right = hp[i] * responses[i] + image * challenges[i]
        challenges[(i + 1) % n] = _challenge(message, left, right)
        i = (i + 1) % n
    responses[signer_index] = (alpha - challenges[signer_index] * private_key) % ORDER

    return challenges[0].to_bytes(SCALAR_SIZE, "big") + b"".join(
        s.to_bytes(SCALAR_SIZE, "big") for s in responses
    )


class RingSignatureVerifier:
    """Stateless LSAG ring-closure check with the gate's size policy."""

    def __init__(self, min_ring_size: int = MIN_RING_SIZE, max_ring_size: int = MAX_RING_SIZE):
        self.min_ring_size = min_ring_size
        self.max_ring_size = max_ring_size

    def check_shape(self, signature: bytes, ring_size: int) -> None:
        if not self.min_ring_size <= ring_size <= self.max_ring_size:
            raise InvalidRingSize(
                f"ring size {ring_size} outside [{self.min_ring_size}, {self.max_ring_size}]"
            )
        if len(signature) != signature_length(ring_size):
            raise InvalidSignatureLength(
                f"expected {signature_length(ring_size)} bytes, got {len(signature)}"
            )

    def verify(
        self, message: bytes, signature: bytes, key_image: bytes, ring: list[bytes],
    ) -> bool:
        """
        True iff the ring closes.  Raises ``InvalidRingSize`` /
        ``InvalidSignatureLength`` for out-of-policy input; malformed points
        or scalars simply fail verification.
        """
        n = len(ring)
        self.check_shape(signature, n)
        try:
            points = [decode_point(pk) for pk in ring]
            image = decode_point(key_image)
        except ValueError:
            return False

        c0 = int.from_bytes(signature[:SCALAR_SIZE], "big")
        responses = [
            int.from_bytes(signature[SCALAR_SIZE * (i + 1):SCALAR_SIZE * (i + 2)], "big")
            for i in range(n)
        ]
        if not 0 < c0 < ORDER or any(s >= ORDER for s in responses):
            return False

        c = c0
        for i in range(n):
            left = G * responses[i] + points[i] * c
            right = hash_to_point(encode_point(points[i])) * responses[i] + image * c
            c = _challenge(message, left, right)
        return c == c0
