"""
Signed requests for operations that spend or bind an account.

A request names its holder address, an action, the action's fields and
the holder's next sequence number.  The holder signs
``keccak256(domain ‖ action ‖ holder ‖ sequence ‖ fields)`` with the
secp256k1 key behind the address; the authenticator checks that the key
hashes to the holder, that the sequence is the expected one and that the
signature verifies, then advances the sequence so the request cannot be
replayed.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from ecdsa import BadSignatureError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_string, sigencode_string

from shadeswap_core.crypto_utils import (
    G,
    address_from_point,
    address_to_bytes,
    decode_point,
    int_to_bytes32,
    keccak256,
    normalize_address,
    public_key,
)
from shadeswap_core.errors import Unauthorized
from shadeswap_core.journal import Journal

logger = logging.getLogger("shadeswap.auth")

SIGNATURE_SIZE = 64

DEPOSIT = "deposit"
SWAP = "swap"
REGISTER_META = "register-meta"


@dataclass(frozen=True)
class SignedRequest:
    public_key: bytes     # 33-byte compressed or 65-byte uncompressed
    signature: bytes      # r ‖ s, 32 bytes each
    sequence: int

    def to_dict(self) -> dict:
        return {
            "public_key": "0x" + self.public_key.hex(),
            "signature": "0x" + self.signature.hex(),
            "sequence": self.sequence,
        }


# ── request fields ───────────────────────────────────────────────

def _word(value: int, name: str) -> bytes:
    if not 0 <= value < 1 << 256:
        raise ValueError(f"{name} does not fit 32 bytes")
    return int_to_bytes32(value)


def deposit_fields(commitment: int, amount: int) -> bytes:
    return _word(commitment, "commitment") + _word(amount, "amount")


def swap_fields(payload: bytes, token_out: str, amount_in: int) -> bytes:
    token = token_out.encode()
    return keccak256(payload) + len(token).to_bytes(2, "big") + token + _word(amount_in, "amount_in")


def register_meta_fields(meta: bytes) -> bytes:
    return bytes(meta)


def request_digest(domain: bytes, action: str, holder: str, sequence: int, fields: bytes) -> bytes:
    return keccak256(
        domain + b"/request/" + action.encode() + b"\x00"
        + address_to_bytes(holder) + sequence.to_bytes(8, "big") + fields
    )


def sign_request(
    private_key: int, domain: bytes, action: str, sequence: int, fields: bytes,
) -> SignedRequest:
    """Sign a request as the address derived from *private_key*."""
    holder = address_from_point(G * private_key)
    digest = request_digest(domain, action, holder, sequence, fields)
    sk = SigningKey.from_secret_exponent(private_key, curve=SECP256k1)
    signature = sk.sign_digest_deterministic(
        digest, hashfunc=hashlib.sha256, sigencode=sigencode_string,
    )
    return SignedRequest(public_key(private_key), signature, sequence)


def verify_digest(pub: bytes, digest: bytes, signature: bytes) -> bool:
    if len(signature) != SIGNATURE_SIZE:
        return False
    try:
        vk = VerifyingKey.from_public_point(decode_point(pub), curve=SECP256k1)
        return vk.verify_digest(signature, digest, sigdecode=sigdecode_string)
    except (BadSignatureError, ValueError):
        return False


class RequestAuthenticator:
    """Per-holder sequence numbers plus signature checks."""

    def __init__(self, domain: bytes = b"shadeswap", journal: Journal | None = None):
        self.domain = domain
        self._sequences: dict[str, int] = {}
        self._journal = journal if journal is not None else Journal()

    def next_sequence(self, holder: str) -> int:
        return self._sequences.get(normalize_address(holder), 0)

    def authenticate(self, holder: str, action: str, fields: bytes, request: SignedRequest) -> None:
        holder = normalize_address(holder)
        try:
            signer = address_from_point(decode_point(request.public_key))
        except ValueError:
            raise Unauthorized("request public key is not a secp256k1 point") from None
        if signer != holder:
            raise Unauthorized(f"request is signed by {signer}, not {holder}")
        expected = self.next_sequence(holder)
        if request.sequence != expected:
            raise Unauthorized(f"expected sequence {expected}, got {request.sequence}")
        digest = request_digest(self.domain, action, holder, request.sequence, fields)
        if not verify_digest(request.public_key, digest, request.signature):
            raise Unauthorized(f"bad {action} signature for {holder}")

        previous = self._sequences.get(holder)
        self._sequences[holder] = expected + 1

        def undo() -> None:
            if previous is None:
                self._sequences.pop(holder, None)
            else:
                self._sequences[holder] = previous

        self._journal.record(undo)
        logger.debug(f"Authenticated {action} for {holder} (seq {expected})")

    def sequences(self) -> dict[str, int]:
        return dict(self._sequences)

    def restore(self, sequences: dict[str, int]) -> None:
        self._sequences.update(sequences)
