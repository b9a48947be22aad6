"""
ZKADDR Credential Issuer

Address-PID credentials bind a holder DID to a normalized PID. They are
issued and signed by an address provider (`did:key`, Ed25519) and can be
verified offline with nothing but the issuer's public key.

Exposed credential format (version 1):

    {
      "@context": [...],
      "id": "urn:uuid:...",
      "type": ["VerifiableCredential", "AddressPIDCredential"],
      "version": 1,
      "issuer": "did:key:z...",
      "subject": "did:key:z...",
      "issuedAt": "2026-01-01T00:00:00Z",
      "expiresAt": "2027-01-01T00:00:00Z",          (optional)
      "credentialSubject": {
        "id": "did:key:z...",
        "addressPID": "JP-13-113-01",
        "countryCode": "JP",
        "regionCode": "13",
        "holderBinding": "<hex>",                    (optional, Version proofs)
        "addressCommitment": "<hex>"                 (optional, Structure/Reveal proofs)
      },
      "proof": { ...detached Ed25519 proof block... }
    }

The signature covers the canonical JSON of every field except `proof`.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from zkaddr.core import format_rfc3339, parse_rfc3339, utc_now
from zkaddr.errors import InvalidCredential, MalformedPID
from zkaddr.field import MiMC, identifier_field, random_scalar, segment_fields, to_hex
from zkaddr.hardening import ThreadSafeDict, Validators
from zkaddr.observability import Component, get_logger
from zkaddr.pid import PIDCodec, PIDComponents
from zkaddr.vc import (
    SigningKey,
    attach_proof,
    base_did,
    did_key_from_public_key,
    public_key_multibase,
    verify_proofs,
)

logger = get_logger("credentials", Component.CREDENTIAL)

CREDENTIAL_CONTEXT = [
    "https://www.w3.org/2018/credentials/v1",
    "https://schemas.zkaddr.dev/address-pid/v1",
]
CREDENTIAL_TYPE = ["VerifiableCredential", "AddressPIDCredential"]
CREDENTIAL_VERSION = 1


# =============================================================================
# DID DOCUMENTS AND PROVIDERS
# =============================================================================

def create_did_document(key: SigningKey, created: Optional[datetime] = None) -> Dict[str, Any]:
    """DID document for a `did:key` identity with one Ed25519 key."""
    return {
        "id": key.did,
        "verificationMethod": [{
            "id": key.verification_method,
            "type": "Ed25519VerificationKey2020",
            "controller": key.did,
            "publicKeyMultibase": public_key_multibase(key.public_key),
        }],
        "authentication": [key.verification_method],
        "assertionMethod": [key.verification_method],
        "created": format_rfc3339(created or utc_now()),
    }


@dataclass
class AddressProvider:
    """An address-verifying authority that issues credentials."""
    id: str
    name: str
    did: str
    endpoint: str = ""
    circuits: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "did": self.did,
            "endpoint": self.endpoint,
            "circuits": list(self.circuits),
        }


class ProviderDirectory:
    """Trusted issuers, keyed by DID."""

    def __init__(self, providers: Optional[List[AddressProvider]] = None):
        self._providers: ThreadSafeDict[AddressProvider] = ThreadSafeDict()
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: AddressProvider) -> None:
        result = Validators.validate_did(provider.did, "provider.did")
        if not result.is_valid:
            raise ValueError(result.reason)
        self._providers[base_did(provider.did)] = provider

    def get(self, did: str) -> Optional[AddressProvider]:
        return self._providers.get(base_did(did))

    def is_trusted(self, did: str) -> bool:
        return base_did(did) in self._providers


# =============================================================================
# HOLDER SIDE
# =============================================================================

@dataclass(frozen=True)
class AddressOpening:
    """Holder-private opening of an address commitment."""
    components: PIDComponents
    nonce: int
    commitment: int

    @property
    def field_values(self) -> List[int]:
        return segment_fields(self.components.vector)


@dataclass(frozen=True)
class HolderKey:
    """
    Holder identity: a `did:key` for signatures plus a field secret for
    zero-knowledge binding tags.
    """
    signing_key: SigningKey
    secret: int

    @classmethod
    def generate(cls) -> "HolderKey":
        return cls(signing_key=SigningKey.generate(), secret=random_scalar())

    @property
    def did(self) -> str:
        return self.signing_key.did

    def binding_for(self, pid: str, hasher: Optional[MiMC] = None) -> int:
        """Binding tag ``H_bind(secret, pid)`` carried in the credential."""
        return (hasher or MiMC()).binding(self.secret, identifier_field("pid", pid))

    def commit_address(self, components: PIDComponents, hasher: Optional[MiMC] = None,
                       nonce: Optional[int] = None) -> AddressOpening:
        nonce = random_scalar() if nonce is None else nonce
        commitment = (hasher or MiMC()).commit(segment_fields(components.vector), nonce)
        return AddressOpening(components=components, nonce=nonce, commitment=commitment)


# =============================================================================
# CREDENTIAL RECORD
# =============================================================================

@dataclass
class AddressCredential:
    """A signed address-PID credential."""
    issuer: str
    subject: str
    pid: str
    country_code: str
    region_code: Optional[str]
    issued_at: str
    expires_at: Optional[str] = None
    holder_binding: Optional[str] = None
    address_commitment: Optional[str] = None
    credential_id: str = field(default_factory=lambda: f"urn:uuid:{uuid.uuid4()}")
    proof: Any = None

    def to_dict(self) -> Dict[str, Any]:
        subject: Dict[str, Any] = {
            "id": self.subject,
            "addressPID": self.pid,
            "countryCode": self.country_code,
        }
        if self.region_code is not None:
            subject["regionCode"] = self.region_code
        if self.holder_binding is not None:
            subject["holderBinding"] = self.holder_binding
        if self.address_commitment is not None:
            subject["addressCommitment"] = self.address_commitment

        doc: Dict[str, Any] = {
            "@context": list(CREDENTIAL_CONTEXT),
            "id": self.credential_id,
            "type": list(CREDENTIAL_TYPE),
            "version": CREDENTIAL_VERSION,
            "issuer": self.issuer,
            "subject": self.subject,
            "issuedAt": self.issued_at,
            "credentialSubject": subject,
        }
        if self.expires_at is not None:
            doc["expiresAt"] = self.expires_at
        if self.proof is not None:
            doc["proof"] = copy.deepcopy(self.proof)
        return doc

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AddressCredential":
        from zkaddr.schema import validate_document

        errors = validate_document(data, "credential")
        if errors:
            raise InvalidCredential("Credential does not match schema", errors=errors)
        subject = data["credentialSubject"]
        return cls(
            issuer=data["issuer"],
            subject=data["subject"],
            pid=subject["addressPID"],
            country_code=subject["countryCode"],
            region_code=subject.get("regionCode"),
            issued_at=data["issuedAt"],
            expires_at=data.get("expiresAt"),
            holder_binding=subject.get("holderBinding"),
            address_commitment=subject.get("addressCommitment"),
            credential_id=data.get("id", ""),
            proof=copy.deepcopy(data["proof"]),
        )


# =============================================================================
# ISSUER
# =============================================================================

class CredentialIssuer:
    """Issues credentials on behalf of one address provider."""

    def __init__(self, key: SigningKey, codec: Optional[PIDCodec] = None,
                 hasher: Optional[MiMC] = None):
        self.key = key
        self.codec = codec or PIDCodec()
        self.hasher = hasher or MiMC()

    @property
    def did(self) -> str:
        return self.key.did

    @property
    def public_key(self) -> Ed25519PublicKey:
        return self.key.public_key

    def issue(
        self,
        subject_id: str,
        pid: str,
        holder_binding: Optional[int] = None,
        address_commitment: Optional[int] = None,
        expires_at: Optional[datetime] = None,
        issued_at: Optional[datetime] = None,
    ) -> AddressCredential:
        """Issue and sign a credential for `pid`.

        Raises:
            MalformedPID: if `pid` does not decode
            ValueError: if `subject_id` is not a DID
        """
        from zkaddr.config import get_config

        did_check = Validators.validate_did(subject_id, "subject")
        if not did_check.is_valid:
            raise ValueError(did_check.reason)

        components = self.codec.decode(pid)
        issued = issued_at or utc_now()
        if expires_at is None:
            validity_days = get_config().credential.default_validity_days.get()
            if validity_days:
                expires_at = issued + timedelta(days=validity_days)

        credential = AddressCredential(
            issuer=self.did,
            subject=subject_id,
            pid=pid,
            country_code=components.country,
            region_code=components.region,
            issued_at=format_rfc3339(issued),
            expires_at=format_rfc3339(expires_at) if expires_at else None,
            holder_binding=to_hex(holder_binding) if holder_binding is not None else None,
            address_commitment=to_hex(address_commitment) if address_commitment is not None else None,
        )
        doc = attach_proof(credential.to_dict(), self.key, created=credential.issued_at)
        credential.proof = doc["proof"]

        logger.info(
            "Credential issued",
            operation="issue",
            issuer=self.did,
            credential_id=credential.credential_id,
            country=components.country,
        )
        return credential

    def register_holder(
        self,
        holder: HolderKey,
        pid: str,
        expires_at: Optional[datetime] = None,
    ) -> Tuple[AddressCredential, AddressOpening]:
        """Full registration: commitment, binding tag and signed credential."""
        components = self.codec.decode(pid)
        opening = holder.commit_address(components, self.hasher)
        credential = self.issue(
            holder.did,
            pid,
            holder_binding=holder.binding_for(pid, self.hasher),
            address_commitment=opening.commitment,
            expires_at=expires_at,
        )
        return credential, opening


# =============================================================================
# VERIFICATION
# =============================================================================

def check_credential(
    credential: Any,
    issuer_public_key: Optional[Ed25519PublicKey] = None,
    trusted_issuers: Optional[ProviderDirectory] = None,
    now: Optional[datetime] = None,
    codec: Optional[PIDCodec] = None,
) -> AddressCredential:
    """Verify a credential; raises `InvalidCredential` with the reason.

    Checks, in order: document shape, issuer trust, signature by the issuer
    over the canonical serialization, issuance/expiry dates, and that the
    country/region fields agree with the PID.
    """
    from zkaddr.config import get_config

    doc = credential.to_dict() if isinstance(credential, AddressCredential) else credential
    if not isinstance(doc, dict):
        raise InvalidCredential("Credential must be an object")
    parsed = AddressCredential.from_dict(doc)

    if issuer_public_key is not None and did_key_from_public_key(issuer_public_key) != base_did(parsed.issuer):
        raise InvalidCredential("Issuer does not match the expected public key", issuer=parsed.issuer)
    if trusted_issuers is not None and not trusted_issuers.is_trusted(parsed.issuer):
        raise InvalidCredential("Issuer is not trusted", issuer=parsed.issuer)

    results = verify_proofs(doc)
    if not any(r.ok and base_did(r.verification_method) == base_did(parsed.issuer) for r in results):
        errors = [r.error for r in results if not r.ok]
        raise InvalidCredential("No valid issuer signature", issuer=parsed.issuer, errors=errors or None)

    now = now or datetime.now(timezone.utc)
    skew = timedelta(seconds=get_config().credential.clock_skew_seconds.get())
    issued = parse_rfc3339(parsed.issued_at)
    if issued is None:
        raise InvalidCredential("Invalid issuedAt")
    if issued > now + skew:
        raise InvalidCredential("Credential issued in the future", issued_at=parsed.issued_at)
    if parsed.expires_at is not None:
        expires = parse_rfc3339(parsed.expires_at)
        if expires is None:
            raise InvalidCredential("Invalid expiresAt")
        if expires < now - skew:
            raise InvalidCredential("Credential has expired", expires_at=parsed.expires_at)

    try:
        components = (codec or PIDCodec()).decode(parsed.pid)
    except MalformedPID as e:
        raise InvalidCredential("Credential PID is malformed", reason=e.message) from e
    if components.country != parsed.country_code or components.region != parsed.region_code:
        raise InvalidCredential("Country/region codes disagree with the PID")

    return parsed


def verify_credential(
    credential: Any,
    issuer_public_key: Optional[Ed25519PublicKey] = None,
    trusted_issuers: Optional[ProviderDirectory] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Boolean form of `check_credential`."""
    try:
        check_credential(credential, issuer_public_key, trusted_issuers, now)
    except InvalidCredential as e:
        logger.warning(
            "Credential rejected",
            error_code=e.code,
            operation="verify",
            reason=e.message,
        )
        return False
    return True
