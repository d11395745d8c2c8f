"""
ShadeSwap - privacy pool and claim gate for swap venues.

Key features:
- Incremental Merkle accumulator of deposit commitments with root history
- Groth16 membership claims and linkable ring-signature (LSAG) claims
- At-most-once redemption through a nullifier / key-image registry
- Relayer fee splitting and ERC-5564 style stealth delivery
- All-or-nothing engine operations over a shared undo journal
"""

__version__ = "0.4.0"
__all__ = [
    "crypto_utils",
    "errors",
    "journal",
    "merkle",
    "nullifier",
    "zk_verifier",
    "ring_signature",
    "payload",
    "stealth",
    "gate",
    "gateway",
    "pool",
    "vault",
    "events",
    "exchange",
    "engine",
    "config",
    "logging_config",
    "storage",
    "api",
]
