"""
Tests for stealth routing (stealth.py).

Covers:
  - Meta-address parsing and validation
  - One-time address derivation and recipient-side scanning
  - Stealth private key recovery
  - Announcement metadata packing
  - Meta-address registry with journal rollback
"""

from __future__ import annotations

import itertools

import pytest

from shadeswap_core.crypto_utils import G, address_from_point, public_key
from shadeswap_core.errors import InvalidStealthMetaAddress
from shadeswap_core.events import Announcement, EventLog
from shadeswap_core.journal import Journal
from shadeswap_core.stealth import (
    SCHEME_ID_SECP256K1,
    Secp256k1StealthGenerator,
    StealthMetaAddress,
    StealthMetaRegistry,
    StealthRouter,
    check_stealth_address,
    compute_stealth_private_key,
    pack_metadata,
    unpack_metadata,
)


class TestMetaAddress:
    def test_round_trip_bytes_and_hex(self, stealth_keys):
        raw = stealth_keys.meta.to_bytes()
        assert len(raw) == 66
        assert StealthMetaAddress.from_bytes(raw) == stealth_keys.meta
        assert StealthMetaAddress.from_hex(stealth_keys.meta.hex()) == stealth_keys.meta

    @pytest.mark.parametrize("size", [0, 65, 67, 132])
    def test_wrong_size(self, size):
        with pytest.raises(InvalidStealthMetaAddress):
            StealthMetaAddress.from_bytes(b"\x02" * size)

    def test_not_a_curve_point(self):
        with pytest.raises(InvalidStealthMetaAddress):
            StealthMetaAddress.from_bytes(b"\x05" + b"\x00" * 32 + public_key(3))

    def test_not_hex(self):
        with pytest.raises(InvalidStealthMetaAddress):
            StealthMetaAddress.from_hex("0xzz")


class TestDerivation:
    def test_recipient_recognises_payment(self, stealth_keys):
        generator = Secp256k1StealthGenerator(ephemeral_key=lambda: 4321)
        out = generator.generate(stealth_keys.meta)
        assert out.ephemeral_pub == public_key(4321)
        assert check_stealth_address(
            out.address, out.ephemeral_pub, stealth_keys.viewing,
            stealth_keys.meta.spending_pub, out.view_tag,
        )

    def test_other_viewer_does_not_match(self, stealth_keys):
        out = Secp256k1StealthGenerator(ephemeral_key=lambda: 4321).generate(stealth_keys.meta)
        assert not check_stealth_address(
            out.address, out.ephemeral_pub, stealth_keys.viewing + 1,
            stealth_keys.meta.spending_pub,
        )

    def test_wrong_view_tag_short_circuits(self, stealth_keys):
        out = Secp256k1StealthGenerator(ephemeral_key=lambda: 4321).generate(stealth_keys.meta)
        assert not check_stealth_address(
            out.address, out.ephemeral_pub, stealth_keys.viewing,
            stealth_keys.meta.spending_pub, (out.view_tag + 1) % 256,
        )

    def test_private_key_controls_address(self, stealth_keys):
        out = Secp256k1StealthGenerator(ephemeral_key=lambda: 99).generate(stealth_keys.meta)
        priv = compute_stealth_private_key(
            out.ephemeral_pub, stealth_keys.viewing, stealth_keys.spending,
        )
        assert address_from_point(G * priv) == out.address

    def test_fresh_ephemeral_keys_unlink_payments(self, stealth_keys):
        counter = itertools.count(5)
        generator = Secp256k1StealthGenerator(ephemeral_key=lambda: next(counter))
        first = generator.generate(stealth_keys.meta)
        second = generator.generate(stealth_keys.meta)
        assert first.address != second.address
        assert first.ephemeral_pub != second.ephemeral_pub

    def test_zero_ephemeral_key_rejected(self, stealth_keys):
        with pytest.raises(ValueError):
            Secp256k1StealthGenerator(ephemeral_key=lambda: 0).generate(stealth_keys.meta)


class TestMetadata:
    def test_pack_unpack(self):
        data = pack_metadata(0xAB, "USD", 12345)
        assert data[0] == 0xAB
        assert len(data) == 2 + 3 + 32
        assert unpack_metadata(data) == (0xAB, "USD", 12345)

    def test_unpack_length_mismatch(self):
        with pytest.raises(ValueError):
            unpack_metadata(pack_metadata(1, "NXF", 1)[:-1])

    def test_unpack_truncated(self):
        with pytest.raises(ValueError):
            unpack_metadata(b"\x01")

    def test_token_too_long(self):
        with pytest.raises(ValueError):
            pack_metadata(1, "x" * 256, 1)


class TestRegistryAndRouter:
    def test_register_and_lookup(self, stealth_keys):
        registry = StealthMetaRegistry()
        registry.register("0x" + "AB" * 20, stealth_keys.meta.to_bytes())
        assert registry.get("0x" + "ab" * 20) == stealth_keys.meta
        assert len(registry) == 1
        assert registry.get("0x" + "cd" * 20) is None

    def test_rollback_restores_previous(self, stealth_keys):
        journal = Journal()
        registry = StealthMetaRegistry(journal)
        who = "0x" + "ab" * 20
        other = StealthMetaAddress(public_key(7), public_key(8))
        with journal.atomic():
            registry.register(who, stealth_keys.meta)
        with pytest.raises(RuntimeError):
            with journal.atomic():
                registry.register(who, other)
                raise RuntimeError("abort")
        assert registry.get(who) == stealth_keys.meta

    def test_restore_entries(self, stealth_keys):
        registry = StealthMetaRegistry()
        who = "0x" + "ab" * 20
        registry.restore({who: stealth_keys.meta})
        assert registry.entries() == {who: stealth_keys.meta}

    def test_router_announces(self, stealth_keys):
        events = EventLog()
        router = StealthRouter(events, Secp256k1StealthGenerator(ephemeral_key=lambda: 3))
        out = router.consume_meta_address(stealth_keys.meta)
        router.announce(SCHEME_ID_SECP256K1, out.address, "0x" + "01" * 20,
                        out.ephemeral_pub, pack_metadata(out.view_tag, "USD", 5))
        (event,) = events.of_type(Announcement)
        assert event.stealth_address == out.address
        assert event.scheme_id == 1
