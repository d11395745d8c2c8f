"""
Stealth routing: one-time recipient addresses and their announcements.

A recipient publishes a 66-byte meta-address (spending pubkey K ‖ viewing
pubkey V).  For every payment the sender picks an ephemeral key r and
derives (ERC-5564 scheme 1 on secp256k1):

    S   = r·V                      shared secret
    s_h = keccak256(S)             hashed secret, view tag = s_h[0]
    P   = K + s_h·G                one-time public key
    address = keccak256(P)[-20:]

The engine only needs ``generate``; the derivation is behind the
``StealthAddressGenerator`` protocol so another scheme can be plugged in.
The recipient scans announcements with ``check_stealth_address`` and
spends with ``compute_stealth_private_key``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple, Protocol

from shadeswap_core.crypto_utils import (
    G,
    ORDER,
    address_from_point,
    decode_point,
    encode_point,
    keccak256,
    normalize_address,
    random_scalar,
)
from shadeswap_core.errors import InvalidStealthMetaAddress
from shadeswap_core.events import Announcement, EventLog
from shadeswap_core.journal import Journal

logger = logging.getLogger("shadeswap.stealth")

SCHEME_ID_SECP256K1 = 1
META_ADDRESS_SIZE = 66
AMOUNT_SIZE = 32


@dataclass(frozen=True)
class StealthMetaAddress:
    spending_pub: bytes
    viewing_pub: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> StealthMetaAddress:
        if len(data) != META_ADDRESS_SIZE:
            raise InvalidStealthMetaAddress(
                f"meta-address must be {META_ADDRESS_SIZE} bytes, got {len(data)}"
            )
        spending, viewing = data[:33], data[33:]
        try:
            decode_point(spending)
            decode_point(viewing)
        except ValueError as exc:
            raise InvalidStealthMetaAddress(f"meta-address key is not a curve point: {exc}") from exc
        return cls(spending, viewing)

    @classmethod
    def from_hex(cls, text: str) -> StealthMetaAddress:
        body = text[2:] if text.lower().startswith("0x") else text
        try:
            raw = bytes.fromhex(body)
        except ValueError as exc:
            raise InvalidStealthMetaAddress("meta-address is not hex") from exc
        return cls.from_bytes(raw)

    def to_bytes(self) -> bytes:
        return self.spending_pub + self.viewing_pub

    def hex(self) -> str:
        return "0x" + self.to_bytes().hex()


class GeneratedStealthAddress(NamedTuple):
    address: str
    ephemeral_pub: bytes
    view_tag: int


class StealthAddressGenerator(Protocol):
    scheme_id: int

    def generate(self, meta: StealthMetaAddress) -> GeneratedStealthAddress:
        ...


def _hashed_secret(shared_point) -> bytes:
    return keccak256(encode_point(shared_point))


class Secp256k1StealthGenerator:
    """ERC-5564 scheme 1 derivation.  *ephemeral_key* is injectable for tests."""

    scheme_id = SCHEME_ID_SECP256K1

    def __init__(self, ephemeral_key: Callable[[], int] = random_scalar):
        self._ephemeral_key = ephemeral_key

    def generate(self, meta: StealthMetaAddress) -> GeneratedStealthAddress:
        r = self._ephemeral_key() % ORDER
        if r == 0:
            raise ValueError("ephemeral key must be non-zero")
        shared = decode_point(meta.viewing_pub) * r
        s_h = _hashed_secret(shared)
        stealth_point = decode_point(meta.spending_pub) + G * int.from_bytes(s_h, "big")
        return GeneratedStealthAddress(
            address=address_from_point(stealth_point),
            ephemeral_pub=encode_point(G * r),
            view_tag=s_h[0],
        )


def check_stealth_address(
    stealth_address: str,
    ephemeral_pub: bytes,
    viewing_key: int,
    spending_pub: bytes,
    view_tag: int | None = None,
) -> bool:
    """Recipient-side scan: does this announcement pay me?"""
    s_h = _hashed_secret(decode_point(ephemeral_pub) * viewing_key)
    if view_tag is not None and s_h[0] != view_tag:
        return False
    stealth_point = decode_point(spending_pub) + G * int.from_bytes(s_h, "big")
    return address_from_point(stealth_point) == normalize_address(stealth_address)


def compute_stealth_private_key(ephemeral_pub: bytes, viewing_key: int, spending_key: int) -> int:
    s_h = _hashed_secret(decode_point(ephemeral_pub) * viewing_key)
    return (spending_key + int.from_bytes(s_h, "big")) % ORDER


def pack_metadata(view_tag: int, token: str, amount: int) -> bytes:
    """view tag (1) ‖ token length (1) ‖ token (utf-8) ‖ amount (32)."""
    token_raw = token.encode("utf-8")
    if len(token_raw) > 0xFF:
        raise ValueError("token identifier too long")
    return bytes([view_tag, len(token_raw)]) + token_raw + amount.to_bytes(AMOUNT_SIZE, "big")


def unpack_metadata(metadata: bytes) -> tuple[int, str, int]:
    if len(metadata) < 2:
        raise ValueError("metadata truncated")
    view_tag, token_len = metadata[0], metadata[1]
    end = 2 + token_len
    if len(metadata) != end + AMOUNT_SIZE:
        raise ValueError("metadata length mismatch")
    token = metadata[2:end].decode("utf-8")
    return view_tag, token, int.from_bytes(metadata[end:], "big")


class StealthMetaRegistry:
    """Recipient identity → registered meta-address."""

    def __init__(self, journal: Journal | None = None):
        self._entries: dict[str, StealthMetaAddress] = {}
        self._journal = journal or Journal()

    def register(self, registrant: str, meta: StealthMetaAddress | bytes) -> StealthMetaAddress:
        if isinstance(meta, (bytes, bytearray)):
            meta = StealthMetaAddress.from_bytes(bytes(meta))
        key = normalize_address(registrant)
        previous = self._entries.get(key)
        self._entries[key] = meta

        def undo() -> None:
            if previous is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = previous

        self._journal.record(undo)
        return meta

    def get(self, registrant: str) -> StealthMetaAddress | None:
        return self._entries.get(normalize_address(registrant))

    def entries(self) -> dict[str, StealthMetaAddress]:
        return dict(self._entries)

    def restore(self, entries: dict[str, StealthMetaAddress]) -> None:
        self._entries.update(entries)

    def __len__(self) -> int:
        return len(self._entries)


class StealthRouter:
    """Derives one-time addresses and announces them for scanning."""

    def __init__(
        self,
        events: EventLog,
        generator: StealthAddressGenerator | None = None,
        registry: StealthMetaRegistry | None = None,
    ):
        self.events = events
        self.generator = generator or Secp256k1StealthGenerator()
        self.registry = registry if registry is not None else StealthMetaRegistry()

    def consume_meta_address(self, meta: StealthMetaAddress) -> GeneratedStealthAddress:
        return self.generator.generate(meta)

    def announce(
        self,
        scheme_id: int,
        stealth_address: str,
        caller: str,
        ephemeral_pub: bytes,
        metadata: bytes,
    ) -> None:
        self.events.emit(Announcement(
            scheme_id=scheme_id,
            stealth_address=stealth_address,
            caller=caller,
            ephemeral_pub_key=ephemeral_pub,
            metadata=metadata,
        ))
        logger.debug(f"Announced stealth payment to {stealth_address}")
