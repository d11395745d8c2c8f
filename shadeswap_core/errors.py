"""
Error taxonomy for ShadeSwap.

Every failure aborts the whole outer engine operation (see
``journal.Journal.atomic``).  Each exception class carries a stable
``code`` tag so REST clients and logs can match on it without parsing
messages.

Categories:
  - ValidationError      malformed input
  - AuthorizationError   caller not allowed to perform the operation
  - ReplayError          replay / consistency violations
  - CryptographicError   proof or signature did not verify
  - PolicyError          well-formed input rejected by policy limits
"""

from __future__ import annotations


class ShadeSwapError(Exception):
    """Base class for all engine errors."""

    code = "ShadeSwapError"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ValidationError(ShadeSwapError):
    code = "ValidationError"


class AuthorizationError(ShadeSwapError):
    code = "AuthorizationError"


class ReplayError(ShadeSwapError):
    code = "ReplayError"


class CryptographicError(ShadeSwapError):
    code = "CryptographicError"


class PolicyError(ShadeSwapError):
    code = "PolicyError"


# ── input validation ─────────────────────────────────────────────

class InvalidCommitment(ValidationError):
    code = "InvalidCommitment"


class OutOfFieldRange(ValidationError):
    code = "OutOfFieldRange"


class DuplicateCommitment(ValidationError):
    code = "DuplicateCommitment"


class CapacityExceeded(ValidationError):
    code = "CapacityExceeded"


class InvalidRingSize(ValidationError):
    code = "InvalidRingSize"


class InvalidSignatureLength(ValidationError):
    code = "InvalidSignatureLength"


class InvalidStealthMetaAddress(ValidationError):
    code = "InvalidStealthMetaAddress"


class InvalidPayload(ValidationError):
    code = "InvalidPayload"


class InvalidRecipient(ValidationError):
    code = "InvalidRecipient"


class InvalidDepositAmount(ValidationError):
    code = "InvalidDepositAmount"


class InsufficientBalance(ValidationError):
    code = "InsufficientBalance"


# ── authorization ────────────────────────────────────────────────

class Unauthorized(AuthorizationError):
    code = "Unauthorized"


class UnauthorizedRelayer(AuthorizationError):
    code = "UnauthorizedRelayer"


# ── replay / consistency ─────────────────────────────────────────

class InvalidMerkleRoot(ReplayError):
    code = "InvalidMerkleRoot"


class AlreadyUsed(ReplayError):
    code = "AlreadyUsed"


class NullifierAlreadyUsed(AlreadyUsed):
    code = "NullifierAlreadyUsed"


class ClaimAlreadyPending(ReplayError):
    code = "ClaimAlreadyPending"


class ClaimNotInitialized(ReplayError):
    code = "ClaimNotInitialized"


# ── cryptographic ────────────────────────────────────────────────

class InvalidProof(CryptographicError):
    code = "InvalidProof"


class InvalidRingSignature(InvalidProof):
    code = "InvalidRingSignature"


# ── policy ───────────────────────────────────────────────────────

class InvalidRelayerFee(PolicyError):
    code = "InvalidRelayerFee"


class InsufficientOutput(PolicyError):
    code = "InsufficientOutput"


class InsufficientLiquidity(PolicyError):
    code = "InsufficientLiquidity"
