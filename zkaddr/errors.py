"""
ZKADDR Error Taxonomy

Every failure the protocol surfaces to a caller is a `ProtocolError` with a
stable `code`, a `retryable` flag and a small `context` dict. Context never
carries a raw address or private witness data, so errors can be logged and
returned to a UI as-is.

    MalformedPID               codec-level structural violation      terminal
    InvalidCredential          signature mismatch or expiry          terminal
      RevocationListUntrusted  unsigned/tampered revocation list     terminal, fail closed
    ProofVerificationFailed    tampered proof or input mismatch      terminal, security event
      WitnessMismatch          witness does not satisfy circuit      terminal
    RevokedPID                 identifier revoked (carries successor) terminal
    PolicyDenied               access-policy check failed            terminal, always audited
    RegistryUnavailable        registry empty or unreachable         retryable
    StaleRoot                  proof built against a rotated root    retryable
    ProofTimeout               proving exceeded deployment timeout   retryable
    AddressNotFound            no stored address for the PID         terminal
    ConditionsNotMet           address fails shipping conditions     terminal

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ProtocolError(Exception):
    """Base class for all protocol errors."""

    code = "PROTOCOL_ERROR"
    retryable = False

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": dict(self.context),
        }


class MalformedPID(ProtocolError):
    """PID failed structural or per-country format validation."""
    code = "MALFORMED_PID"


class InvalidCredential(ProtocolError):
    """Credential (or signed list) signature mismatch, or expiry."""
    code = "INVALID_CREDENTIAL"


class RevocationListUntrusted(InvalidCredential):
    """Revocation list is unsigned, tampered, or from an unexpected issuer.

    Callers must fail closed: an untrusted list can confirm neither that a
    PID is revoked nor that it is not.
    """
    code = "REVOCATION_LIST_UNTRUSTED"


class ProofVerificationFailed(ProtocolError):
    """Proof does not verify against the circuit and public inputs."""
    code = "PROOF_VERIFICATION_FAILED"


class WitnessMismatch(ProofVerificationFailed):
    """Prover-side: the witness does not satisfy the circuit constraints."""
    code = "WITNESS_MISMATCH"


class RevokedPID(ProtocolError):
    """Operation attempted against a revoked PID."""
    code = "REVOKED_PID"

    def __init__(self, pid: str, successor: Optional[str] = None):
        super().__init__(f"PID {pid} is revoked", pid=pid, successor=successor)
        self.pid = pid
        self.successor = successor


class PolicyDenied(ProtocolError):
    """Access policy check failed."""
    code = "POLICY_DENIED"


class RegistryUnavailable(ProtocolError):
    """Merkle registry has no usable state for the requested universe."""
    code = "REGISTRY_UNAVAILABLE"
    retryable = True


class StaleRoot(ProtocolError):
    """Proof or path computed against a root the registry no longer accepts."""
    code = "STALE_ROOT"
    retryable = True


class ProofTimeout(ProtocolError):
    """Proof generation exceeded the configured timeout."""
    code = "PROOF_TIMEOUT"
    retryable = True


class AddressNotFound(ProtocolError):
    """No address is stored for the requested PID."""
    code = "ADDRESS_NOT_FOUND"


class ConditionsNotMet(ProtocolError):
    """Address does not satisfy the requester's shipping conditions."""
    code = "CONDITIONS_NOT_MET"
