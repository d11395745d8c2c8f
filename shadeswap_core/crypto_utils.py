"""
Hashing, field and curve helpers shared by the ShadeSwap engine.

- keccak256 (pycryptodome) and the two-input Merkle compression function
  over the BN254 scalar field
- secp256k1 point encoding, hash-to-scalar and hash-to-point used by the
  LSAG ring signature and the stealth-address scheme (ecdsa)
- address and claim-key normalisation
"""

from __future__ import annotations

import secrets

from Crypto.Hash import keccak
from ecdsa import SECP256k1
from ecdsa.ellipticcurve import INFINITY, PointJacobi

# BN254 scalar field: every commitment, root and public signal lives here.
SNARK_SCALAR_FIELD = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)

CURVE = SECP256k1
G = SECP256k1.generator
ORDER = SECP256k1.order
_P = SECP256k1.curve.p()
_B = SECP256k1.curve.b()

ZERO_ADDRESS = "0x" + "00" * 20
_HP_DOMAIN = b"shadeswap/hash-to-point"


# ── hashing ──────────────────────────────────────────────────────

def keccak256(data: bytes) -> bytes:
    """Ethereum-flavoured Keccak-256 (not NIST SHA3-256)."""
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def int_to_bytes32(value: int) -> bytes:
    return value.to_bytes(32, "big")


def bytes32_to_int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def hash_pair(left: int, right: int) -> int:
    """Order-sensitive two-input compression over the SNARK field."""
    digest = keccak256(int_to_bytes32(left) + int_to_bytes32(right))
    return bytes32_to_int(digest) % SNARK_SCALAR_FIELD


def hash_to_scalar(*parts: bytes) -> int:
    """Hash byte strings to a non-zero secp256k1 scalar."""
    value = bytes32_to_int(keccak256(b"".join(parts))) % ORDER
    return value or 1


# ── secp256k1 points ─────────────────────────────────────────────

def random_scalar() -> int:
    return secrets.randbelow(ORDER - 1) + 1


def encode_point(point) -> bytes:
    """33-byte SEC1 compressed encoding.  Infinity encodes as 33 zero bytes."""
    if point == INFINITY:
        return b"\x00" * 33
    x, y = point.x(), point.y()
    return bytes([2 + (y & 1)]) + x.to_bytes(32, "big")


def decode_point(data: bytes) -> PointJacobi:
    """
    Decode a compressed (33-byte) or uncompressed (65-byte) secp256k1 point.
    Raises ValueError for anything that is not a valid curve point.
    """
    if len(data) == 33 and data[0] in (2, 3):
        x = int.from_bytes(data[1:], "big")
        if x >= _P:
            raise ValueError("x coordinate out of range")
        rhs = (pow(x, 3, _P) + _B) % _P
        y = pow(rhs, (_P + 1) // 4, _P)
        if y * y % _P != rhs:
            raise ValueError("point not on curve")
        if (y & 1) != (data[0] & 1):
            y = _P - y
    elif len(data) == 65 and data[0] == 4:
        x = int.from_bytes(data[1:33], "big")
        y = int.from_bytes(data[33:], "big")
        if x >= _P or y >= _P or (y * y - pow(x, 3, _P) - _B) % _P != 0:
            raise ValueError("point not on curve")
    else:
        raise ValueError(f"bad point encoding ({len(data)} bytes)")
    return PointJacobi(CURVE.curve, x, y, 1, ORDER)


def hash_to_point(data: bytes) -> PointJacobi:
    """Deterministic try-and-increment map from bytes to a curve point."""
    counter = 0
    while True:
        seed = keccak256(_HP_DOMAIN + data + counter.to_bytes(4, "big"))
        x = bytes32_to_int(seed) % _P
        rhs = (pow(x, 3, _P) + _B) % _P
        y = pow(rhs, (_P + 1) // 4, _P)
        if y * y % _P == rhs:
            if y & 1:
                y = _P - y
            return PointJacobi(CURVE.curve, x, y, 1, ORDER)
        counter += 1


def public_key(private_key: int) -> bytes:
    """Compressed public key for a secp256k1 private scalar."""
    return encode_point(G * private_key)


def generate_keypair() -> tuple[int, bytes]:
    """Return (private scalar, 33-byte compressed public key)."""
    priv = random_scalar()
    return priv, public_key(priv)


# ── addresses & claim keys ───────────────────────────────────────

def address_from_point(point) -> str:
    """Ethereum-style address: last 20 bytes of keccak256(x ‖ y)."""
    raw = point.x().to_bytes(32, "big") + point.y().to_bytes(32, "big")
    return "0x" + keccak256(raw)[-20:].hex()


def normalize_address(value: int | bytes | str) -> str:
    """Canonical lowercase ``0x`` address from an int, 20 bytes or hex string."""
    if isinstance(value, bool):
        raise ValueError("address must not be a bool")
    if isinstance(value, int):
        if value < 0 or value >= 1 << 160:
            raise ValueError("address integer out of range")
        return "0x" + value.to_bytes(20, "big").hex()
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 20:
            raise ValueError("address must be 20 bytes")
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        body = value[2:] if value.lower().startswith("0x") else value
        if len(body) != 40:
            raise ValueError(f"address must be 40 hex chars: {value!r}")
        bytes.fromhex(body)
        return "0x" + body.lower()
    raise ValueError(f"unsupported address type {type(value).__name__}")


def address_to_bytes(address: str) -> bytes:
    return bytes.fromhex(normalize_address(address)[2:])


def is_zero_address(address: str) -> bool:
    return normalize_address(address) == ZERO_ADDRESS


def claim_key(identifier: int | bytes | str) -> str:
    """
    Canonical registry key for a claim identifier.

    Nullifier hashes (field integers) become 32-byte hex, key images keep
    their raw byte length.  Hex strings are lower-cased.
    """
    if isinstance(identifier, bool):
        raise ValueError("claim identifier must not be a bool")
    if isinstance(identifier, int):
        if identifier < 0 or identifier >= 1 << 256:
            raise ValueError("claim identifier out of range")
        return "0x" + int_to_bytes32(identifier).hex()
    if isinstance(identifier, (bytes, bytearray)):
        return "0x" + bytes(identifier).hex()
    if isinstance(identifier, str):
        body = identifier[2:] if identifier.lower().startswith("0x") else identifier
        bytes.fromhex(body)
        return "0x" + body.lower()
    raise ValueError(f"unsupported claim identifier type {type(identifier).__name__}")


def short(key: str, n: int = 10) -> str:
    """Truncate a hex key for log lines."""
    return key if len(key) <= n + 3 else f"{key[:n]}…"
