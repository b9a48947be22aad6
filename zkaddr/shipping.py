"""
ZKADDR Shipping Validation

The seam an e-commerce checkout calls into. A requester states shipping
conditions; the holder signs a request naming their PID; the address
provider checks the conditions in the clear, then proves them in zero
knowledge with a membership proof over the registered PID set. The requester
verifies the proof and mints a signed shipment token that carries only an
anonymized PID token, never the PID's address.

    request   {pid, userSignature, conditions, requesterId, timestamp}
    response  {valid, zkProof?, pidToken?, error?, timestamp}

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from zkaddr.core import format_rfc3339, sha256_canonical, utc_now
from zkaddr.credentials import HolderKey
from zkaddr.errors import (
    AddressNotFound,
    ConditionsNotMet,
    InvalidCredential,
    PolicyDenied,
    ProofVerificationFailed,
    ProtocolError,
)
from zkaddr.field import to_hex
from zkaddr.hardening import CryptoUtils, ThreadSafeDict, Validators
from zkaddr.merkle import PID_UNIVERSE
from zkaddr.observability import Component, get_logger
from zkaddr.patterns import MembershipProof, PatternVerification, Proof, ProofEngine, proof_from_dict
from zkaddr.pid import PIDComponents
from zkaddr.revocation import RevocationRegistry
from zkaddr.vc import SigningKey, attach_proof, signed_by
from zkaddr.zkp import ArithmeticCircuit

logger = get_logger("shipping", Component.SHIPPING)

PID_TOKEN_PREFIX = "tok_"


@dataclass(frozen=True)
class ShippingConditions:
    """Allowed destination sets; an empty set allows everything."""
    allowed_countries: Tuple[str, ...] = ()
    allowed_regions: Tuple[str, ...] = ()

    def is_satisfied_by(self, components: PIDComponents) -> bool:
        if self.allowed_countries and components.country not in self.allowed_countries:
            return False
        if self.allowed_regions and components.region not in self.allowed_regions:
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowedCountries": list(self.allowed_countries),
            "allowedRegions": list(self.allowed_regions),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingConditions":
        return cls(
            allowed_countries=tuple(data.get("allowedCountries") or ()),
            allowed_regions=tuple(data.get("allowedRegions") or ()),
        )


@dataclass(frozen=True)
class ShippingValidationRequest:
    pid: str
    conditions: ShippingConditions
    requester_id: str
    timestamp: str
    user_signature: Optional[Dict[str, Any]] = None

    def unsigned_document(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "conditions": self.conditions.to_dict(),
            "requesterId": self.requester_id,
            "timestamp": self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        doc = self.unsigned_document()
        if self.user_signature is not None:
            doc["userSignature"] = dict(self.user_signature)
        return doc

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingValidationRequest":
        return cls(
            pid=data["pid"],
            conditions=ShippingConditions.from_dict(data.get("conditions") or {}),
            requester_id=data["requesterId"],
            timestamp=data["timestamp"],
            user_signature=data.get("userSignature"),
        )


def sign_shipping_request(
    holder: HolderKey,
    pid: str,
    conditions: ShippingConditions,
    requester_id: str,
    timestamp: Optional[str] = None,
) -> ShippingValidationRequest:
    """Build a request carrying the holder's signature over its canonical form."""
    timestamp = timestamp or format_rfc3339(utc_now())
    request = ShippingValidationRequest(pid, conditions, requester_id, timestamp)
    doc = attach_proof(request.unsigned_document(), holder.signing_key, proof_purpose="authentication")
    return ShippingValidationRequest(pid, conditions, requester_id, timestamp, user_signature=doc["proof"])


def verify_user_signature(request: ShippingValidationRequest, holder_did: str) -> bool:
    if not isinstance(request.user_signature, dict):
        return False
    doc = request.unsigned_document()
    doc["proof"] = request.user_signature
    return signed_by(doc, holder_did)


@dataclass
class ShippingValidationResponse:
    valid: bool
    timestamp: str
    zk_proof: Optional[Proof] = None
    pid_token: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"valid": self.valid, "timestamp": self.timestamp}
        if self.zk_proof is not None:
            out["zkProof"] = self.zk_proof.to_dict()
        if self.pid_token is not None:
            out["pidToken"] = self.pid_token
        if self.error is not None:
            out["error"] = dict(self.error)
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShippingValidationResponse":
        proof = data.get("zkProof")
        return cls(
            valid=bool(data.get("valid")),
            timestamp=data.get("timestamp", ""),
            zk_proof=proof_from_dict(proof) if proof is not None else None,
            pid_token=data.get("pidToken"),
            error=data.get("error"),
        )


# =============================================================================
# PROVIDER SIDE
# =============================================================================

class ShippingProvider:
    """
    Answers shipping-validation requests for the PIDs it registered.

    The provider knows which holder DID owns each PID and signs nothing
    itself; its only output is a membership proof and an anonymized token.
    """

    def __init__(
        self,
        engine: ProofEngine,
        token_key: Optional[bytes] = None,
        revocation: Optional[RevocationRegistry] = None,
    ):
        self.engine = engine
        self.revocation = revocation if revocation is not None else engine.revocation
        self._token_key = token_key or CryptoUtils.secure_random_bytes(32)
        self._holders: ThreadSafeDict[str] = ThreadSafeDict()

    def register_holder(self, pid: str, holder_did: str) -> None:
        self.engine.codec.decode(pid)
        self._holders[pid] = holder_did

    def pid_token(self, pid: str) -> str:
        """Stable, unlinkable-without-the-key token for `pid`."""
        return PID_TOKEN_PREFIX + CryptoUtils.hmac_sha256_hex(self._token_key, pid)[:32]

    def validate_shipping_request(
        self,
        request: ShippingValidationRequest,
        circuit: Optional[ArithmeticCircuit] = None,
        now: Optional[datetime] = None,
    ) -> ShippingValidationResponse:
        """Check and prove a request; failures come back as ``valid=False``."""
        from zkaddr.config import get_config

        now = now or utc_now()
        stamp = format_rfc3339(now)
        try:
            components = self.engine.codec.decode(request.pid)
            age = Validators.validate_timestamp(
                request.timestamp,
                allow_future=False,
                max_age_seconds=get_config().resolution.max_request_age_seconds.get(),
                now=now,
            )
            if not age.is_valid:
                raise PolicyDenied(f"Request timestamp rejected: {age.reason}")
            holder = self._holders.get(request.pid)
            if holder is None or not verify_user_signature(request, holder):
                raise InvalidCredential("User signature does not verify for this PID")
            if self.revocation is not None:
                self.revocation.check_not_revoked(request.pid)
            if not request.conditions.is_satisfied_by(components):
                raise ConditionsNotMet("Address does not satisfy shipping conditions")
            try:
                proof = self.engine.prove_membership(
                    components,
                    request.conditions.allowed_countries,
                    request.conditions.allowed_regions,
                    circuit=circuit,
                )
            except LookupError as e:
                raise AddressNotFound("PID is not in the registered set") from e
        except ProtocolError as e:
            logger.warning(
                "Shipping request rejected",
                error_code=e.code,
                operation="validate",
                requester=request.requester_id,
            )
            return ShippingValidationResponse(False, stamp, error=e.to_dict())

        logger.info("Shipping request proved", operation="validate", requester=request.requester_id)
        return ShippingValidationResponse(True, stamp, zk_proof=proof, pid_token=self.pid_token(request.pid))


# =============================================================================
# REQUESTER SIDE
# =============================================================================

@dataclass
class ShipmentToken:
    """Requester-signed record that a destination was proved acceptable."""
    token_id: str
    pid_token: str
    requester: str
    conditions: ShippingConditions
    proof_digest: str
    merkle_root: str
    created_at: str
    proof: Any = field(default=None, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "id": self.token_id,
            "pidToken": self.pid_token,
            "requester": self.requester,
            "conditions": self.conditions.to_dict(),
            "proofDigest": self.proof_digest,
            "merkleRoot": self.merkle_root,
            "createdAt": self.created_at,
        }
        if self.proof is not None:
            doc["proof"] = self.proof
        return doc

    def is_signed_by(self, did: str) -> bool:
        return signed_by(self.to_dict(), did)


class ShippingRequester:
    """Verifies shipping responses and mints shipment tokens."""

    def __init__(self, engine: ProofEngine, key: SigningKey):
        if engine.merkle is None and PID_UNIVERSE not in engine.published_roots:
            raise ValueError("Requester engine needs a Merkle registry or a published PID root")
        self.engine = engine
        self.key = key

    @property
    def did(self) -> str:
        return self.key.did

    def verify_response(self, response: ShippingValidationResponse,
                        conditions: ShippingConditions) -> PatternVerification:
        proof = response.zk_proof
        if not response.valid or proof is None:
            return PatternVerification(False, reason="Response carries no proof")
        if not isinstance(proof, MembershipProof):
            return PatternVerification(False, reason=f"Expected a membership proof, got {proof.proof_type.value}")
        pi = proof.public_inputs
        if (pi.allowed_countries, pi.allowed_regions) != (conditions.allowed_countries, conditions.allowed_regions):
            return PatternVerification(False, reason="Proof was made for other conditions")
        return self.engine.verify(proof)

    def create_shipment_token(
        self,
        response: ShippingValidationResponse,
        conditions: ShippingConditions,
        now: Optional[datetime] = None,
    ) -> ShipmentToken:
        """Verify `response` and sign a shipment token for it.

        Raises:
            ProofVerificationFailed: if the response does not verify
        """
        verdict = self.verify_response(response, conditions)
        if not verdict.valid or response.pid_token is None:
            raise ProofVerificationFailed(verdict.reason or "Response carries no PID token")
        proof = response.zk_proof
        if not isinstance(proof, MembershipProof):
            raise ProofVerificationFailed("Response carries no membership proof")
        token = ShipmentToken(
            token_id=f"shp_{uuid.uuid4().hex}",
            pid_token=response.pid_token,
            requester=self.did,
            conditions=conditions,
            proof_digest=sha256_canonical(proof.to_dict()),
            merkle_root=to_hex(proof.public_inputs.root),
            created_at=format_rfc3339(now or utc_now()),
        )
        token.proof = attach_proof(token.to_dict(), self.key, created=token.created_at)["proof"]
        logger.info("Shipment token created", operation="create_token", token_id=token.token_id)
        return token
