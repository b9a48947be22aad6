"""zkaddr.vc

Ed25519 `did:key` identities and detached proof blocks for signed protocol
documents (address credentials, revocation lists, shipping requests).

Profile / invariants:
- `did:key` identifiers only (multicodec 0xed01 + raw 32-byte public key,
  multibase base58btc)
- Proof block: ``{type, created, verificationMethod, proofPurpose, jws}``
  where `jws` is the raw 64-byte signature in unpadded base64url
- Signing input is the canonical JSON (`zkaddr.core.canonical_json_bytes`)
  of the document with `proof` removed, so the proof never signs itself and
  co-signatures do not disturb each other.
"""

from __future__ import annotations

import base64
import hmac
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from zkaddr.core import canonical_json_bytes, now_rfc3339

PROOF_TYPE = "ZkAddrEd25519Signature2026"
ALLOWED_PROOF_PURPOSES = {"assertionMethod", "authentication"}
ED25519_MULTICODEC = bytes([0xED, 0x01])

_RFC3339_Z_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z$")
_B64URL_RE = re.compile(r"^[A-Za-z0-9_-]+$")

B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
B58_MAP = {c: i for i, c in enumerate(B58_ALPHABET)}


# ---------------------------------------------------------------------------
# Encodings
# ---------------------------------------------------------------------------


def b58encode(b: bytes) -> str:
    n_pad = len(b) - len(b.lstrip(b"\x00"))
    num = int.from_bytes(b, "big")
    out = bytearray()
    while num > 0:
        num, rem = divmod(num, 58)
        out.append(B58_ALPHABET[rem])
    out.extend(B58_ALPHABET[0:1] * n_pad)
    out.reverse()
    return out.decode("ascii")


def b58decode(s: str) -> bytes:
    data = s.encode("ascii")
    num = 0
    for c in data:
        if c not in B58_MAP:
            raise ValueError("Invalid base58 character")
        num = num * 58 + B58_MAP[c]
    n_pad = len(data) - len(data.lstrip(B58_ALPHABET[0:1]))
    full = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * n_pad + full


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


def signing_input(document: Dict[str, Any]) -> bytes:
    """Canonical bytes a proof signs: the document without `proof`."""
    return canonical_json_bytes({k: v for k, v in document.items() if k != "proof"})


# ---------------------------------------------------------------------------
# did:key (Ed25519)
# ---------------------------------------------------------------------------


def raw_public_key(public_key: Ed25519PublicKey) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def public_key_multibase(public_key: Ed25519PublicKey) -> str:
    return "z" + b58encode(ED25519_MULTICODEC + raw_public_key(public_key))


def did_key_from_public_key(public_key: Ed25519PublicKey) -> str:
    return "did:key:" + public_key_multibase(public_key)


def public_key_from_did_key(did: str) -> Ed25519PublicKey:
    """Parse a `did:key` (Ed25519), with or without fragment."""
    did = base_did(did)
    if not did.startswith("did:key:z"):
        raise ValueError("Only did:key:z... identifiers are supported")
    decoded = b58decode(did[len("did:key:z"):])
    if not decoded.startswith(ED25519_MULTICODEC):
        raise ValueError("did:key multicodec prefix is not Ed25519")
    raw = decoded[len(ED25519_MULTICODEC):]
    if len(raw) != 32:
        raise ValueError(f"Ed25519 public key must be 32 bytes, got {len(raw)}")
    return Ed25519PublicKey.from_public_bytes(raw)


def base_did(did_or_vm: str) -> str:
    """Return base DID (strip fragment)."""
    return str(did_or_vm or "").split("#", 1)[0]


@dataclass(frozen=True)
class SigningKey:
    """An Ed25519 private key with its `did:key` and verification method."""
    private_key: Ed25519PrivateKey
    did: str
    verification_method: str

    @classmethod
    def generate(cls, kid: str = "key-1") -> "SigningKey":
        return cls.from_private_key(Ed25519PrivateKey.generate(), kid)

    @classmethod
    def from_private_key(cls, private_key: Ed25519PrivateKey, kid: str = "key-1") -> "SigningKey":
        did = did_key_from_public_key(private_key.public_key())
        return cls(private_key=private_key, did=did, verification_method=f"{did}#{kid}")

    @classmethod
    def from_jwk(cls, jwk: Dict[str, Any]) -> "SigningKey":
        """Load from a private OKP/Ed25519 JWK (`d` and `x` members)."""
        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Only OKP/Ed25519 JWK is supported")
        if not jwk.get("d") or not jwk.get("x"):
            raise ValueError("JWK must include both 'd' (private) and 'x' (public)")
        private_key = Ed25519PrivateKey.from_private_bytes(b64url_decode(jwk["d"]))
        if raw_public_key(private_key.public_key()) != b64url_decode(jwk["x"]):
            raise ValueError("JWK public key does not match private key")
        return cls.from_private_key(private_key, str(jwk.get("kid") or "key-1"))

    @property
    def public_key(self) -> Ed25519PublicKey:
        return self.private_key.public_key()

    def to_jwk(self, include_private: bool = False) -> Dict[str, Any]:
        jwk = {
            "kty": "OKP",
            "crv": "Ed25519",
            "x": b64url_encode(raw_public_key(self.public_key)),
            "kid": self.verification_method.split("#", 1)[-1],
        }
        if include_private:
            jwk["d"] = b64url_encode(self.private_key.private_bytes(
                encoding=serialization.Encoding.Raw,
                format=serialization.PrivateFormat.Raw,
                encryption_algorithm=serialization.NoEncryption(),
            ))
        return jwk

    def sign(self, message: bytes) -> bytes:
        return self.private_key.sign(message)


# ---------------------------------------------------------------------------
# Proof blocks
# ---------------------------------------------------------------------------


@dataclass
class ProofResult:
    verification_method: str
    ok: bool
    error: str = ""


def validate_proof_object(p: Any) -> None:
    """Validate proof shape; does not check the signature."""
    if not isinstance(p, dict):
        raise ValueError("proof must be an object")

    t = p.get("type")
    if not isinstance(t, str) or not hmac.compare_digest(t, PROOF_TYPE):
        raise ValueError(f"Unsupported proof.type: {t!r} (expected {PROOF_TYPE})")

    created = p.get("created")
    if not isinstance(created, str) or not _RFC3339_Z_RE.match(created):
        raise ValueError("proof.created must be RFC3339 (seconds, Z)")

    vm = p.get("verificationMethod")
    if not isinstance(vm, str) or not vm.startswith("did:key:"):
        raise ValueError("proof.verificationMethod must be a did:key")

    pp = p.get("proofPurpose")
    if pp not in ALLOWED_PROOF_PURPOSES:
        raise ValueError(f"Unsupported proof.proofPurpose: {pp!r}")

    jws = p.get("jws")
    if not isinstance(jws, str) or not _B64URL_RE.match(jws):
        raise ValueError("proof.jws must be unpadded base64url")


def attach_proof(
    document: Dict[str, Any],
    key: SigningKey,
    proof_purpose: str = "assertionMethod",
    created: Optional[str] = None,
) -> Dict[str, Any]:
    """Sign `document` in place and return it.

    An existing proof is kept and the new one appended (co-signing).
    """
    proof_obj = {
        "type": PROOF_TYPE,
        "created": created or now_rfc3339(),
        "verificationMethod": key.verification_method,
        "proofPurpose": proof_purpose,
        "jws": b64url_encode(key.sign(signing_input(document))),
    }
    validate_proof_object(proof_obj)

    existing = document.get("proof")
    if existing is None:
        document["proof"] = proof_obj
    elif isinstance(existing, list):
        existing.append(proof_obj)
    else:
        document["proof"] = [existing, proof_obj]
    return document


def _proofs_as_list(proof: Any) -> List[Any]:
    if proof is None:
        return []
    if isinstance(proof, list):
        return list(proof)
    return [proof]


def verify_proofs(document: Dict[str, Any]) -> List[ProofResult]:
    """Verify every proof block on `document`; one result per proof."""
    msg = signing_input(document)
    results: List[ProofResult] = []
    for p in _proofs_as_list(document.get("proof")):
        vm = str(p.get("verificationMethod") or "") if isinstance(p, dict) else ""
        try:
            validate_proof_object(p)
            sig = b64url_decode(p["jws"])
            if len(sig) != 64:
                raise ValueError(f"Ed25519 signature must be 64 bytes, got {len(sig)}")
            public_key_from_did_key(vm).verify(sig, msg)
            results.append(ProofResult(verification_method=vm, ok=True))
        except InvalidSignature:
            results.append(ProofResult(verification_method=vm, ok=False, error="signature mismatch"))
        except ValueError as ex:
            results.append(ProofResult(verification_method=vm, ok=False, error=str(ex)))
    return results


def signed_by(document: Dict[str, Any], did: str) -> bool:
    """True when at least one valid proof on `document` was made by `did`."""
    return any(
        r.ok and base_did(r.verification_method) == base_did(did)
        for r in verify_proofs(document)
    )
