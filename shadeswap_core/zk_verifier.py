"""
Groth16 membership-proof verification.

The pairing check itself is an external primitive (``SnarkBackend``); this
module fixes the public-signal layout the circuit commits to and hands
well-formed inputs to the backend.  It is stateless: root freshness,
nullifier status and fee policy are checked by the gate before a proof
ever reaches ``verify``.

Public signals (order matters):
    [0] commitment          circuit-internal
    [1] nullifier           circuit-internal
    [2] merkle_root
    [3] nullifier_hash
    [4] recipient           address as an integer
    [5] relayer             address as an integer (0 = none)
    [6] relayer_fee_bps
    [7] claimed_output_amount
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tempfile
from dataclasses import astuple, dataclass
from typing import Protocol

from shadeswap_core.crypto_utils import SNARK_SCALAR_FIELD, normalize_address

logger = logging.getLogger("shadeswap.zk")

NUM_PUBLIC_SIGNALS = 8
# Proof coordinates live in the BN254 base field, signals in the scalar field.
BN254_BASE_FIELD = (
    21888242871839275222246405745257275088696311157297823662689037894645226208583
)


@dataclass(frozen=True)
class Groth16Proof:
    """Proof points as field integers: A ∈ G1, B ∈ G2, C ∈ G1."""
    a: tuple[int, int]
    b: tuple[tuple[int, int], tuple[int, int]]
    c: tuple[int, int]

    def words(self) -> list[int]:
        return [*self.a, *self.b[0], *self.b[1], *self.c]

    @classmethod
    def from_words(cls, words: list[int]) -> Groth16Proof:
        if len(words) != 8:
            raise ValueError("a Groth16 proof is 8 words")
        return cls(
            a=(words[0], words[1]),
            b=((words[2], words[3]), (words[4], words[5])),
            c=(words[6], words[7]),
        )


@dataclass(frozen=True)
class PublicSignals:
    commitment: int
    nullifier: int
    merkle_root: int
    nullifier_hash: int
    recipient: int
    relayer: int
    relayer_fee_bps: int
    claimed_output_amount: int

    def to_list(self) -> list[int]:
        return list(astuple(self))

    @classmethod
    def from_list(cls, values: list[int]) -> PublicSignals:
        if len(values) != NUM_PUBLIC_SIGNALS:
            raise ValueError(f"expected {NUM_PUBLIC_SIGNALS} public signals, got {len(values)}")
        return cls(*values)

    @property
    def recipient_address(self) -> str:
        return normalize_address(self.recipient)

    @property
    def relayer_address(self) -> str:
        return normalize_address(self.relayer)


class SnarkBackend(Protocol):
    """The Groth16 pairing check for the membership circuit."""

    def verify_proof(self, proof: Groth16Proof, public_inputs: list[int]) -> bool:
        ...


class SnarkjsBackend:
    """
    Pairing check delegated to the snarkjs CLI
    (``snarkjs groth16 verify vk.json public.json proof.json``).
    """

    def __init__(self, verification_key_path: str, command: list[str] | None = None):
        self.vk_path = verification_key_path
        self.command = command or ["npx", "snarkjs"]
        if not os.path.exists(self.vk_path):
            logger.warning(f"Verification key not found at {self.vk_path}; ZK claims will fail")

    @staticmethod
    def proof_json(proof: Groth16Proof) -> dict:
        # pB arrives in the Solidity verifier order [c1, c0]; snarkjs JSON wants [c0, c1].
        return {
            "pi_a": [str(proof.a[0]), str(proof.a[1]), "1"],
            "pi_b": [
                [str(proof.b[0][1]), str(proof.b[0][0])],
                [str(proof.b[1][1]), str(proof.b[1][0])],
                ["1", "0"],
            ],
            "pi_c": [str(proof.c[0]), str(proof.c[1]), "1"],
            "protocol": "groth16",
            "curve": "bn128",
        }

    def verify_proof(self, proof: Groth16Proof, public_inputs: list[int]) -> bool:
        with tempfile.TemporaryDirectory() as tmp:
            proof_path = os.path.join(tmp, "proof.json")
            public_path = os.path.join(tmp, "public.json")
            with open(proof_path, "w") as f:
                json.dump(self.proof_json(proof), f)
            with open(public_path, "w") as f:
                json.dump([str(v) for v in public_inputs], f)
            cmd = [*self.command, "groth16", "verify", self.vk_path, public_path, proof_path]
            try:
                result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.error(f"snarkjs could not run: {exc}")
                return False
        if result.returncode == 0 and "OK" in result.stdout:
            return True
        logger.debug(f"snarkjs rejected proof: {(result.stderr or result.stdout).strip()}")
        return False


class UnconfiguredBackend:
    """Stand-in when no verification key is configured: every proof fails."""

    def verify_proof(self, proof: Groth16Proof, public_inputs: list[int]) -> bool:
        logger.warning("ZK claim received but no verification key is configured")
        return False


class ZkMembershipVerifier:
    """Checks a membership proof against its 8 public signals."""

    def __init__(self, backend: SnarkBackend):
        self.backend = backend

    def verify(self, proof: Groth16Proof, public_signals: PublicSignals | list[int]) -> bool:
        if isinstance(public_signals, PublicSignals):
            inputs = public_signals.to_list()
        else:
            inputs = list(public_signals)
        if len(inputs) != NUM_PUBLIC_SIGNALS:
            return False
        if any(not 0 <= v < SNARK_SCALAR_FIELD for v in inputs):
            return False
        if any(not 0 <= w < BN254_BASE_FIELD for w in proof.words()):
            return False
        ok = bool(self.backend.verify_proof(proof, inputs))
        if not ok:
            logger.debug("Pairing check rejected proof")
        return ok
