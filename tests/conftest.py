"""
Shared pytest fixtures for the ShadeSwap test suite.
"""

import itertools
from types import SimpleNamespace

import pytest

from shadeswap_core.config import ShadeSwapConfig
from shadeswap_core.auth import sign_request
from shadeswap_core.crypto_utils import G, ZERO_ADDRESS, address_from_point, public_key
from shadeswap_core.engine import ShadeSwapEngine
from shadeswap_core.payload import RingClaim, ZkClaim
from shadeswap_core.ring_signature import generate_key_image, member_commitment, sign
from shadeswap_core.stealth import Secp256k1StealthGenerator, StealthMetaAddress
from shadeswap_core.zk_verifier import Groth16Proof, PublicSignals

DENOMINATION = 1_000


class FakeSnarkBackend:
    """Accepts any proof whose A point is (1, 2); records every call."""

    VALID_A = (1, 2)

    def __init__(self):
        self.calls: list = []

    def verify_proof(self, proof, public_inputs):
        self.calls.append((proof, list(public_inputs)))
        return proof.a == self.VALID_A


def _address_int(value):
    return int(value, 16) if isinstance(value, str) else value


@pytest.fixture
def accounts():
    """Well-known test addresses."""
    return SimpleNamespace(
        owner="0x" + "aa" * 20,
        alice="0x" + "a1" * 20,
        bob="0x" + "b0" * 20,
        carol="0x" + "c0" * 20,
        relayer="0x" + "77" * 20,
        outsider="0x" + "ee" * 20,
    )


@pytest.fixture
def key_holders():
    """Accounts whose addresses derive from known secp256k1 keys."""

    def holder(priv):
        return SimpleNamespace(key=priv, address=address_from_point(G * priv))

    return SimpleNamespace(dave=holder(0xDA5E), erin=holder(0xE214))


@pytest.fixture
def signed(engine):
    """Factory for signed request fields against ``engine``."""

    def build(holder, action, fields, sequence=None) -> dict:
        if sequence is None:
            sequence = engine.next_sequence(holder.address)
        return sign_request(
            holder.key, engine.authenticator.domain, action, sequence, fields,
        ).to_dict()

    return build


@pytest.fixture
def config(accounts):
    """Small-denomination config with one allowlisted relayer."""
    cfg = ShadeSwapConfig()
    cfg.pool.owner = accounts.owner
    cfg.pool.denomination = DENOMINATION
    cfg.gate.relayers = [accounts.relayer]
    return cfg


@pytest.fixture
def snark():
    return FakeSnarkBackend()


@pytest.fixture
def engine(config, snark):
    """Engine with the fake pairing check and deterministic ephemeral keys."""
    counter = itertools.count(7)
    generator = Secp256k1StealthGenerator(ephemeral_key=lambda: next(counter))
    return ShadeSwapEngine(config, snark_backend=snark, stealth_generator=generator)


@pytest.fixture
def zk_payload():
    """Factory for 512-byte ZK claim payloads."""

    def build(
        root,
        nullifier_hash,
        recipient,
        relayer=0,
        fee_bps=0,
        claimed_output=0,
        valid=True,
        commitment=11,
        nullifier=12,
    ) -> bytes:
        signals = PublicSignals(
            commitment=commitment,
            nullifier=nullifier,
            merkle_root=root,
            nullifier_hash=nullifier_hash,
            recipient=_address_int(recipient),
            relayer=_address_int(relayer),
            relayer_fee_bps=fee_bps,
            claimed_output_amount=claimed_output,
        )
        a = FakeSnarkBackend.VALID_A if valid else (3, 4)
        proof = Groth16Proof(a=a, b=((5, 6), (7, 8)), c=(9, 10))
        return ZkClaim(proof, signals).encode()

    return build


@pytest.fixture
def ring_keys():
    """Five deterministic secp256k1 keypairs (private scalar, compressed pubkey)."""
    return [(k, public_key(k)) for k in (1111, 2222, 3333, 4444, 5555)]


@pytest.fixture
def stealth_keys():
    spending, viewing = 0xA11CE, 0xB0B
    meta = StealthMetaAddress(public_key(spending), public_key(viewing))
    return SimpleNamespace(spending=spending, viewing=viewing, meta=meta)


@pytest.fixture
def ring_payload():
    """Factory for signed ring claim payloads."""

    def build(
        signer_priv,
        ring,
        signer_index,
        meta: bytes,
        relayer=ZERO_ADDRESS,
        fee_bps=0,
        domain=b"shadeswap",
    ) -> bytes:
        image = generate_key_image(signer_priv, ring[signer_index])
        unsigned = RingClaim(b"", image, list(ring), meta, relayer, fee_bps)
        signature = sign(unsigned.message(domain), signer_priv, list(ring), signer_index)
        return RingClaim(signature, image, list(ring), meta, relayer, fee_bps).encode()

    return build


@pytest.fixture
def ring_depositors(engine, ring_keys, accounts):
    """Deposit a ring-member commitment for every key in ``ring_keys``."""
    for _, pub in ring_keys:
        engine.deposit(accounts.alice, member_commitment(pub))
    return ring_keys
