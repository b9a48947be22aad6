"""
ZKADDR Proof Patterns

The five address proofs, each an arithmetic circuit family over ``Fr``:

    Pattern           Private witness                 Public inputs
    membership        PID segments, Merkle path       root, depth, allowed countries/regions
    structure         segments, presence, nonce       country, depth, address commitment
    selective-reveal  fields, reveal mask, nonce      revealed fields, full/revealed commitments
    version           holder secret                   old/new PID, old/new binding tags
    locker            locker, zone, Merkle path       facility, facility root, depth

A proof is a closed sum type: one dataclass per pattern, carrying only that
pattern's public inputs, the circuit id and the opaque blob. Verification
dispatches on the proof type through a table that is checked for
completeness at import time.

Exposed proof format:

    {"proofType": "...", "circuitId": "...", "publicInputs": {...}, "proofBlob": "<base64url>"}

Verification depends only on the proof, the circuit and the public inputs,
plus the verifier's trust anchors, and is deterministic. Merkle roots must be
current in an injected registry or equal a published root; anchoring
credentials must be signed by a trusted issuer; version proofs additionally
need both credentials and a revocation list from the trusted issuer.
A verifier never trusts a circuit supplied with a proof: the expected
circuit is rebuilt from the public inputs and compared by digest.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Type, Union

from zkaddr.circuit import (
    Circuit,
    CircuitBuilder,
    assert_boolean,
    merkle_root,
    mimc_hash,
    one_minus,
    product_of_differences,
)
from zkaddr.credentials import AddressCredential, AddressOpening, HolderKey, ProviderDirectory, check_credential
from zkaddr.errors import InvalidCredential, ProofVerificationFailed
from zkaddr.field import (
    BIND_KEY,
    COMMIT_KEY,
    FIELD_MODULUS,
    LEAF_KEY,
    LOCKER_KEY,
    NODE_KEY,
    PID_KEY,
    MiMC,
    from_hex,
    identifier_field,
    inverse,
    segment_field,
    segment_fields,
    to_hex,
)
from zkaddr.merkle import PID_UNIVERSE, MerklePath, MerkleRegistry, locker_universe
from zkaddr.observability import Component, get_logger, timed_operation
from zkaddr.pid import MAX_SEGMENTS, SEGMENT_LEVELS, PIDCodec, PIDComponents
from zkaddr.revocation import RevocationRegistry, SignedRevocationList, verify_list
from zkaddr.vc import b64url_decode, b64url_encode, base_did
from zkaddr.workers import ProofWorkerPool
from zkaddr.zkp import ArithmeticCircuit, CircuitRegistry, MpcProofSystem, prove_blob

logger = get_logger("patterns", Component.PROOF)

CIRCUIT_VERSION = "v1"
MAX_SET_SIZE = 64


class ProofType(Enum):
    MEMBERSHIP = "membership"
    STRUCTURE = "structure"
    SELECTIVE_REVEAL = "selective-reveal"
    VERSION = "version"
    LOCKER = "locker"


def _hex_field(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a 64-character hex string")
    return from_hex(value)


def _int_field(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise ValueError(f"{key} must be a non-negative integer")
    return value


def _str_list(data: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{key} must be a list of strings")
    return tuple(value)


# =============================================================================
# PUBLIC INPUTS
# =============================================================================

@dataclass(frozen=True)
class MembershipPublicInputs:
    root: int
    depth: int
    allowed_countries: Tuple[str, ...] = ()
    allowed_regions: Tuple[str, ...] = ()

    universe: ClassVar[str] = PID_UNIVERSE

    def field_vector(self) -> List[int]:
        return (
            [self.root]
            + [segment_field(0, c) for c in self.allowed_countries]
            + [segment_field(1, r) for r in self.allowed_regions]
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merkleRoot": to_hex(self.root),
            "treeDepth": self.depth,
            "allowedCountries": list(self.allowed_countries),
            "allowedRegions": list(self.allowed_regions),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MembershipPublicInputs":
        return cls(
            root=_hex_field(data, "merkleRoot"),
            depth=_int_field(data, "treeDepth"),
            allowed_countries=_str_list(data, "allowedCountries"),
            allowed_regions=_str_list(data, "allowedRegions"),
        )


@dataclass(frozen=True)
class StructurePublicInputs:
    country_code: str
    depth: int
    commitment: int

    def field_vector(self) -> List[int]:
        return [segment_field(0, self.country_code), self.depth, self.commitment]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "countryCode": self.country_code,
            "depth": self.depth,
            "addressCommitment": to_hex(self.commitment),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StructurePublicInputs":
        country = data.get("countryCode")
        if not isinstance(country, str):
            raise ValueError("countryCode must be a string")
        return cls(
            country_code=country,
            depth=_int_field(data, "depth"),
            commitment=_hex_field(data, "addressCommitment"),
        )


@dataclass(frozen=True)
class SelectiveRevealPublicInputs:
    revealed: Tuple[Tuple[str, str], ...]
    full_commitment: int
    revealed_commitment: int

    def revealed_map(self) -> Dict[str, str]:
        return dict(self.revealed)

    def field_vector(self) -> List[int]:
        revealed = self.revealed_map()
        return [segment_field(i, revealed.get(level)) for i, level in enumerate(SEGMENT_LEVELS)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "revealed": self.revealed_map(),
            "fullCommitment": to_hex(self.full_commitment),
            "revealedCommitment": to_hex(self.revealed_commitment),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SelectiveRevealPublicInputs":
        revealed = data.get("revealed", {})
        if not isinstance(revealed, dict) or not all(
            level in SEGMENT_LEVELS and isinstance(token, str) for level, token in revealed.items()
        ):
            raise ValueError("revealed must map hierarchy levels to tokens")
        return cls(
            revealed=_ordered_reveal(revealed),
            full_commitment=_hex_field(data, "fullCommitment"),
            revealed_commitment=_hex_field(data, "revealedCommitment"),
        )


def _ordered_reveal(revealed: Mapping[str, str]) -> Tuple[Tuple[str, str], ...]:
    return tuple((level, revealed[level]) for level in SEGMENT_LEVELS if level in revealed)


@dataclass(frozen=True)
class VersionPublicInputs:
    old_pid: str
    new_pid: str
    old_binding: int
    new_binding: int

    def field_vector(self) -> List[int]:
        return [
            identifier_field("pid", self.old_pid),
            identifier_field("pid", self.new_pid),
            self.old_binding,
            self.new_binding,
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "oldPid": self.old_pid,
            "newPid": self.new_pid,
            "oldBinding": to_hex(self.old_binding),
            "newBinding": to_hex(self.new_binding),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VersionPublicInputs":
        old_pid, new_pid = data.get("oldPid"), data.get("newPid")
        if not isinstance(old_pid, str) or not isinstance(new_pid, str):
            raise ValueError("oldPid and newPid must be strings")
        return cls(
            old_pid=old_pid,
            new_pid=new_pid,
            old_binding=_hex_field(data, "oldBinding"),
            new_binding=_hex_field(data, "newBinding"),
        )


@dataclass(frozen=True)
class LockerPublicInputs:
    facility_id: str
    root: int
    depth: int

    @property
    def universe(self) -> str:
        return locker_universe(self.facility_id)

    def field_vector(self) -> List[int]:
        return [identifier_field("facility", self.facility_id), self.root]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facilityId": self.facility_id,
            "merkleRoot": to_hex(self.root),
            "treeDepth": self.depth,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LockerPublicInputs":
        facility = data.get("facilityId")
        if not isinstance(facility, str) or not facility:
            raise ValueError("facilityId must be a non-empty string")
        return cls(
            facility_id=facility,
            root=_hex_field(data, "merkleRoot"),
            depth=_int_field(data, "treeDepth"),
        )


PublicInputs = Union[
    MembershipPublicInputs,
    StructurePublicInputs,
    SelectiveRevealPublicInputs,
    VersionPublicInputs,
    LockerPublicInputs,
]


# =============================================================================
# WITNESSES
# =============================================================================

@dataclass(frozen=True)
class MembershipWitness:
    components: PIDComponents
    path: MerklePath


@dataclass(frozen=True)
class StructureWitness:
    opening: AddressOpening


@dataclass(frozen=True)
class SelectiveRevealWitness:
    opening: AddressOpening
    mask: Tuple[int, ...]


@dataclass(frozen=True)
class VersionWitness:
    holder_secret: int


@dataclass(frozen=True)
class LockerWitness:
    locker_id: str
    zone: str
    path: MerklePath


# =============================================================================
# PROOF VARIANTS
# =============================================================================

class _ProofBase:
    proof_type: ClassVar[ProofType]
    circuit_id: str
    public_inputs: Any
    blob: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proofType": self.proof_type.value,
            "circuitId": self.circuit_id,
            "publicInputs": self.public_inputs.to_dict(),
            "proofBlob": b64url_encode(self.blob),
        }


@dataclass(frozen=True)
class MembershipProof(_ProofBase):
    proof_type: ClassVar[ProofType] = ProofType.MEMBERSHIP
    circuit_id: str
    public_inputs: MembershipPublicInputs
    blob: bytes = field(repr=False)


@dataclass(frozen=True)
class StructureProof(_ProofBase):
    proof_type: ClassVar[ProofType] = ProofType.STRUCTURE
    circuit_id: str
    public_inputs: StructurePublicInputs
    blob: bytes = field(repr=False)


@dataclass(frozen=True)
class SelectiveRevealProof(_ProofBase):
    proof_type: ClassVar[ProofType] = ProofType.SELECTIVE_REVEAL
    circuit_id: str
    public_inputs: SelectiveRevealPublicInputs
    blob: bytes = field(repr=False)


@dataclass(frozen=True)
class VersionProof(_ProofBase):
    proof_type: ClassVar[ProofType] = ProofType.VERSION
    circuit_id: str
    public_inputs: VersionPublicInputs
    blob: bytes = field(repr=False)


@dataclass(frozen=True)
class LockerProof(_ProofBase):
    proof_type: ClassVar[ProofType] = ProofType.LOCKER
    circuit_id: str
    public_inputs: LockerPublicInputs
    blob: bytes = field(repr=False)


Proof = Union[MembershipProof, StructureProof, SelectiveRevealProof, VersionProof, LockerProof]


@dataclass
class PatternVerification:
    """Verdict of `ProofEngine.verify`."""
    valid: bool
    revealed_data: Optional[Dict[str, Any]] = None
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"valid": self.valid}
        if self.revealed_data is not None:
            out["revealedData"] = dict(self.revealed_data)
        if self.reason:
            out["reason"] = self.reason
        return out


# =============================================================================
# PATTERN DEFINITIONS
# =============================================================================

class ProofPattern(ABC):
    """One proof family: circuit shape, witness layout and extra checks."""

    proof_type: ClassVar[ProofType]
    proof_cls: ClassVar[Type[_ProofBase]]
    public_inputs_cls: ClassVar[type]
    witness_cls: ClassVar[type]

    def __init__(self, hasher: MiMC, codec: PIDCodec):
        self.hasher = hasher
        self.codec = codec

    @abstractmethod
    def circuit_params(self, public_inputs: Any) -> Dict[str, str]:
        """Parameters that select one circuit of this family."""

    @abstractmethod
    def build(self, public_inputs: Any) -> Circuit:
        """Build the circuit for these public-input dimensions."""

    @abstractmethod
    def witness_vector(self, witness: Any, public_inputs: Any) -> List[int]:
        """Private inputs in circuit order."""

    def circuit_id(self, public_inputs: Any) -> str:
        params = self.circuit_params(public_inputs)
        suffix = "".join(f"-{k}{v}" for k, v in sorted(params.items()))
        return f"zkaddr.{self.proof_type.value}.{CIRCUIT_VERSION}-m{self.hasher.rounds}{suffix}"

    def check_public_inputs(self, public_inputs: Any) -> Optional[str]:
        """Reason the public inputs are unacceptable, if any."""
        return None

    def check_outputs(self, outputs: Sequence[int], public_inputs: Any) -> Optional[str]:
        return None

    def check_anchors(self, public_inputs: Any, credentials: Sequence[AddressCredential]) -> Optional[str]:
        """Tie public inputs to the credentials they claim to come from."""
        return None

    def revealed(self, public_inputs: Any) -> Optional[Dict[str, Any]]:
        return None


def _credential_commitment(credential: AddressCredential) -> Optional[int]:
    if credential.address_commitment is None:
        return None
    return from_hex(credential.address_commitment)


class MembershipPattern(ProofPattern):
    proof_type = ProofType.MEMBERSHIP
    proof_cls = MembershipProof
    public_inputs_cls = MembershipPublicInputs
    witness_cls = MembershipWitness

    def circuit_params(self, pi: MembershipPublicInputs) -> Dict[str, str]:
        return {
            "d": str(pi.depth),
            "c": str(len(pi.allowed_countries)),
            "r": str(len(pi.allowed_regions)),
        }

    def check_public_inputs(self, pi: MembershipPublicInputs) -> Optional[str]:
        return _check_tree_depth(pi.depth) or _check_set_sizes(pi.allowed_countries, pi.allowed_regions)

    def build(self, pi: MembershipPublicInputs) -> Circuit:
        b = CircuitBuilder("membership", params=self.circuit_params(pi))
        segments = b.inputs("segment", MAX_SEGMENTS)
        siblings = b.inputs("path.sibling", pi.depth)
        bits = b.inputs("path.bit", pi.depth)
        root = b.public("merkleRoot")
        countries = [b.public(f"allowedCountry[{i}]") for i in range(len(pi.allowed_countries))]
        regions = [b.public(f"allowedRegion[{i}]") for i in range(len(pi.allowed_regions))]

        value = mimc_hash(b, self.hasher, segments, PID_KEY)
        leaf = mimc_hash(b, self.hasher, [value], LEAF_KEY)
        computed = merkle_root(b, self.hasher, leaf, siblings, bits, NODE_KEY)
        b.assert_equal(computed, root, "root")
        if countries:
            b.assert_zero(product_of_differences(b, segments[0], countries), "country.allowed")
        if regions:
            b.assert_zero(product_of_differences(b, segments[1], regions), "region.allowed")
        return b.build()

    def witness_vector(self, w: MembershipWitness, pi: MembershipPublicInputs) -> List[int]:
        return segment_fields(w.components.vector) + list(w.path.siblings) + list(w.path.bits)


class StructurePattern(ProofPattern):
    proof_type = ProofType.STRUCTURE
    proof_cls = StructureProof
    public_inputs_cls = StructurePublicInputs
    witness_cls = StructureWitness

    def circuit_params(self, pi: StructurePublicInputs) -> Dict[str, str]:
        return {}

    def check_public_inputs(self, pi: StructurePublicInputs) -> Optional[str]:
        schema = self.codec.schemas.get(pi.country_code)
        if schema is None:
            return f"No schema for country {pi.country_code}"
        if not schema.min_depth <= pi.depth <= schema.max_depth:
            return f"Depth {pi.depth} is outside the {pi.country_code} schema range"
        return None

    def build(self, pi: StructurePublicInputs) -> Circuit:
        b = CircuitBuilder("structure")
        s = b.inputs("segment", MAX_SEGMENTS)
        present = b.inputs("present", MAX_SEGMENTS)
        inv = b.inputs("inverse", MAX_SEGMENTS)
        nonce = b.input("nonce")
        country = b.public("country")
        depth = b.public("depth")
        commitment = b.public("commitment")

        for i, p in enumerate(present):
            assert_boolean(b, p, f"present[{i}].boolean")
        b.assert_zero(b.add_const(present[0], -1), "present[0]")
        for i in range(1, MAX_SEGMENTS):
            b.assert_zero(b.mul(present[i], one_minus(b, present[i - 1])), f"contiguous[{i}]")
        total = present[0]
        for p in present[1:]:
            total = b.add(total, p)
        b.assert_equal(total, depth, "depth")
        for i in range(MAX_SEGMENTS):
            b.assert_zero(b.mul(one_minus(b, present[i]), s[i]), f"absent[{i}]")
            b.assert_zero(b.mul(present[i], b.add_const(b.mul(s[i], inv[i]), -1)), f"nonzero[{i}]")
        b.assert_equal(s[0], country, "country")
        b.assert_equal(mimc_hash(b, self.hasher, list(s) + [nonce], COMMIT_KEY), commitment, "commitment")
        return b.build()

    def witness_vector(self, w: StructureWitness, pi: StructurePublicInputs) -> List[int]:
        s = w.opening.field_values
        present = [1 if token is not None else 0 for token in w.opening.components.vector]
        inv = [inverse(x) if x else 0 for x in s]
        return s + present + inv + [w.opening.nonce]

    def check_anchors(self, pi: StructurePublicInputs, credentials: Sequence[AddressCredential]) -> Optional[str]:
        for credential in credentials[:1]:
            if _credential_commitment(credential) != pi.commitment:
                return "Commitment does not match the credential"
            if credential.country_code != pi.country_code:
                return "Country does not match the credential"
        return None

    def revealed(self, pi: StructurePublicInputs) -> Dict[str, Any]:
        return {"countryCode": pi.country_code, "depth": pi.depth}


class SelectiveRevealPattern(ProofPattern):
    proof_type = ProofType.SELECTIVE_REVEAL
    proof_cls = SelectiveRevealProof
    public_inputs_cls = SelectiveRevealPublicInputs
    witness_cls = SelectiveRevealWitness

    def circuit_params(self, pi: SelectiveRevealPublicInputs) -> Dict[str, str]:
        return {}

    def build(self, pi: SelectiveRevealPublicInputs) -> Circuit:
        b = CircuitBuilder("selective-reveal")
        f = b.inputs("field", MAX_SEGMENTS)
        m = b.inputs("mask", MAX_SEGMENTS)
        nonce = b.input("nonce")
        claimed = [b.public(f"revealed[{level}]") for level in SEGMENT_LEVELS]

        masked = []
        for i in range(MAX_SEGMENTS):
            assert_boolean(b, m[i], f"mask[{i}].boolean")
            v = b.mul(m[i], f[i])
            b.assert_equal(v, claimed[i], f"reveal[{i}]")
            masked.append(v)
        b.expose("fullCommitment", mimc_hash(b, self.hasher, list(f) + [nonce], COMMIT_KEY))
        b.expose("revealedCommitment", mimc_hash(b, self.hasher, masked + [nonce], COMMIT_KEY))
        return b.build()

    def witness_vector(self, w: SelectiveRevealWitness, pi: SelectiveRevealPublicInputs) -> List[int]:
        return w.opening.field_values + list(w.mask) + [w.opening.nonce]

    def check_outputs(self, outputs: Sequence[int], pi: SelectiveRevealPublicInputs) -> Optional[str]:
        if list(outputs) != [pi.full_commitment, pi.revealed_commitment]:
            return "Commitments do not match the public inputs"
        return None

    def check_anchors(self, pi: SelectiveRevealPublicInputs,
                      credentials: Sequence[AddressCredential]) -> Optional[str]:
        for credential in credentials[:1]:
            if _credential_commitment(credential) != pi.full_commitment:
                return "Full commitment does not match the credential"
        return None

    def revealed(self, pi: SelectiveRevealPublicInputs) -> Dict[str, Any]:
        return pi.revealed_map()


class VersionPattern(ProofPattern):
    proof_type = ProofType.VERSION
    proof_cls = VersionProof
    public_inputs_cls = VersionPublicInputs
    witness_cls = VersionWitness

    def circuit_params(self, pi: VersionPublicInputs) -> Dict[str, str]:
        return {}

    def check_public_inputs(self, pi: VersionPublicInputs) -> Optional[str]:
        if pi.old_pid == pi.new_pid:
            return "Old and new PID are identical"
        return None

    def build(self, pi: VersionPublicInputs) -> Circuit:
        b = CircuitBuilder("version")
        secret = b.input("holderSecret")
        old_pid = b.public("oldPid")
        new_pid = b.public("newPid")
        old_binding = b.public("oldBinding")
        new_binding = b.public("newBinding")
        b.assert_equal(mimc_hash(b, self.hasher, [secret, old_pid], BIND_KEY), old_binding, "binding.old")
        b.assert_equal(mimc_hash(b, self.hasher, [secret, new_pid], BIND_KEY), new_binding, "binding.new")
        return b.build()

    def witness_vector(self, w: VersionWitness, pi: VersionPublicInputs) -> List[int]:
        return [w.holder_secret % FIELD_MODULUS]

    def check_anchors(self, pi: VersionPublicInputs, credentials: Sequence[AddressCredential]) -> Optional[str]:
        if not credentials:
            return "Holder bindings are not anchored to credentials"
        if len(credentials) != 2:
            return "Version proofs anchor to exactly two credentials"
        for credential, pid, binding in zip(credentials, (pi.old_pid, pi.new_pid), (pi.old_binding, pi.new_binding)):
            if credential.pid != pid:
                return f"Credential is not for {pid}"
            if credential.holder_binding is None or from_hex(credential.holder_binding) != binding:
                return f"Binding tag does not match the credential for {pid}"
        return None

    def revealed(self, pi: VersionPublicInputs) -> Dict[str, Any]:
        return {"oldPid": pi.old_pid, "newPid": pi.new_pid}


class LockerPattern(ProofPattern):
    proof_type = ProofType.LOCKER
    proof_cls = LockerProof
    public_inputs_cls = LockerPublicInputs
    witness_cls = LockerWitness

    def circuit_params(self, pi: LockerPublicInputs) -> Dict[str, str]:
        return {"d": str(pi.depth)}

    def check_public_inputs(self, pi: LockerPublicInputs) -> Optional[str]:
        return _check_tree_depth(pi.depth)

    def build(self, pi: LockerPublicInputs) -> Circuit:
        b = CircuitBuilder("locker", params=self.circuit_params(pi))
        locker = b.input("locker")
        zone = b.input("zone")
        siblings = b.inputs("path.sibling", pi.depth)
        bits = b.inputs("path.bit", pi.depth)
        facility = b.public("facility")
        root = b.public("merkleRoot")

        value = mimc_hash(b, self.hasher, [facility, locker, zone], LOCKER_KEY)
        leaf = mimc_hash(b, self.hasher, [value], LEAF_KEY)
        b.assert_equal(merkle_root(b, self.hasher, leaf, siblings, bits, NODE_KEY), root, "root")
        return b.build()

    def witness_vector(self, w: LockerWitness, pi: LockerPublicInputs) -> List[int]:
        return (
            [identifier_field("locker", w.locker_id), identifier_field("zone", w.zone)]
            + list(w.path.siblings)
            + list(w.path.bits)
        )

    def revealed(self, pi: LockerPublicInputs) -> Dict[str, Any]:
        return {"facilityId": pi.facility_id}


def _check_tree_depth(depth: int) -> Optional[str]:
    from zkaddr.config import get_config

    if depth > get_config().merkle.max_depth.get():
        return f"Tree depth {depth} exceeds the configured maximum"
    return None


def _check_set_sizes(*sets: Sequence[str]) -> Optional[str]:
    for values in sets:
        if len(values) > MAX_SET_SIZE:
            return f"Allowed sets are limited to {MAX_SET_SIZE} values"
        if len(set(values)) != len(values):
            return "Allowed sets must not repeat values"
    return None


PATTERN_CLASSES: Dict[ProofType, Type[ProofPattern]] = {
    ProofType.MEMBERSHIP: MembershipPattern,
    ProofType.STRUCTURE: StructurePattern,
    ProofType.SELECTIVE_REVEAL: SelectiveRevealPattern,
    ProofType.VERSION: VersionPattern,
    ProofType.LOCKER: LockerPattern,
}

_unhandled = set(ProofType) - set(PATTERN_CLASSES)
if _unhandled:
    raise RuntimeError(f"Proof types without a pattern: {sorted(t.value for t in _unhandled)}")

PROOF_CLASSES: Dict[ProofType, Type[_ProofBase]] = {t: cls.proof_cls for t, cls in PATTERN_CLASSES.items()}


# =============================================================================
# SERIALIZATION
# =============================================================================

def proof_to_dict(proof: Proof) -> Dict[str, Any]:
    return proof.to_dict()


def proof_from_dict(data: Any) -> Proof:
    """Parse the exposed proof format.

    Raises:
        ProofVerificationFailed: if the document is malformed
    """
    from zkaddr.schema import validate_document

    errors = validate_document(data, "proof")
    if errors:
        raise ProofVerificationFailed("Proof document does not match schema", errors=errors[:5])
    proof_type = ProofType(data["proofType"])
    pattern_cls = PATTERN_CLASSES[proof_type]
    try:
        public_inputs = pattern_cls.public_inputs_cls.from_dict(data["publicInputs"])
        blob = b64url_decode(data["proofBlob"])
    except (ValueError, TypeError) as e:
        raise ProofVerificationFailed(f"Malformed proof: {e}", proof_type=proof_type.value) from e
    return pattern_cls.proof_cls(  # type: ignore[call-arg]
        circuit_id=data["circuitId"],
        public_inputs=public_inputs,
        blob=blob,
    )


# =============================================================================
# ENGINE
# =============================================================================

class ProofEngine:
    """
    Generates and verifies pattern proofs.

    Shared state (Merkle registry, revocation registry, worker pool) is
    injected; the engine itself only caches circuits.

    Trust anchors for verification:
        merkle / published_roots   accepted roots per universe
        revocation / issuer        issuer of revocation lists and, unless a
                                   provider directory is given, credentials
        trusted_issuers            providers whose credentials anchor proofs

    Without an anchor for a check the verdict is invalid.
    """

    def __init__(
        self,
        hasher: Optional[MiMC] = None,
        proof_system: Optional[MpcProofSystem] = None,
        merkle: Optional[MerkleRegistry] = None,
        revocation: Optional[RevocationRegistry] = None,
        codec: Optional[PIDCodec] = None,
        pool: Optional[ProofWorkerPool] = None,
        circuits: Optional[CircuitRegistry] = None,
        issuer: Optional[str] = None,
        trusted_issuers: Optional[ProviderDirectory] = None,
        published_roots: Optional[Mapping[str, int]] = None,
    ):
        if revocation is not None and issuer is not None and base_did(issuer) != revocation.issuer:
            raise ValueError("Issuer does not match the revocation registry")
        self.hasher = hasher or MiMC()
        self.system = proof_system or MpcProofSystem()
        self.merkle = merkle
        self.revocation = revocation
        self.codec = codec or PIDCodec()
        self.pool = pool
        self.circuits = circuits or CircuitRegistry()
        self.issuer = revocation.issuer if revocation is not None else (base_did(issuer) if issuer else None)
        self.trusted_issuers = trusted_issuers
        self.published_roots = dict(published_roots or {})
        self.patterns: Dict[ProofType, ProofPattern] = {
            t: cls(self.hasher, self.codec) for t, cls in PATTERN_CLASSES.items()
        }
        self._by_inputs: Dict[type, ProofPattern] = {
            p.public_inputs_cls: p for p in self.patterns.values()
        }

    # -------------------------------------------------------------------------
    # Circuits

    def pattern_for(self, public_inputs: PublicInputs) -> ProofPattern:
        pattern = self._by_inputs.get(type(public_inputs))
        if pattern is None:
            raise TypeError(f"Unsupported public inputs {type(public_inputs).__name__}")
        return pattern

    def circuit_for(self, public_inputs: PublicInputs) -> ArithmeticCircuit:
        """The one circuit a proof over `public_inputs` must be built against."""
        pattern = self.pattern_for(public_inputs)
        circuit_id = pattern.circuit_id(public_inputs)
        entry = self.circuits.get(circuit_id)
        if entry is None:
            entry = self.circuits.register(circuit_id, pattern.build(public_inputs))
        return entry

    # -------------------------------------------------------------------------
    # Generic generate / verify

    @timed_operation(logger, "generate")
    def generate(
        self,
        witness: Any,
        public_inputs: PublicInputs,
        circuit: Optional[ArithmeticCircuit] = None,
    ) -> Proof:
        """Prove `witness` against `public_inputs`.

        Raises:
            WitnessMismatch: if the witness does not satisfy the circuit
            ProofTimeout: if proving exceeds the deployment timeout
            ValueError: on unacceptable public inputs or a foreign circuit
        """
        pattern = self.pattern_for(public_inputs)
        if not isinstance(witness, pattern.witness_cls):
            raise TypeError(f"{pattern.proof_type.value} proofs need a {pattern.witness_cls.__name__}")
        problem = pattern.check_public_inputs(public_inputs)
        if problem:
            raise ValueError(problem)
        expected = self.circuit_for(public_inputs)
        if circuit is not None and circuit.descriptor.digest != expected.descriptor.digest:
            raise ValueError("Circuit does not match the public inputs")

        vector = pattern.witness_vector(witness, public_inputs)
        publics = public_inputs.field_vector()
        if self.pool is not None:
            blob = self.pool.run(prove_blob, expected.circuit, vector, publics, self.system.repetitions)
        else:
            blob = self.system.prove(expected.circuit, vector, publics)
        logger.info(
            "Proof generated",
            operation="generate",
            proof_type=pattern.proof_type.value,
            circuit_id=expected.circuit_id,
            blob_bytes=len(blob),
        )
        return pattern.proof_cls(  # type: ignore[call-arg]
            circuit_id=expected.circuit_id,
            public_inputs=public_inputs,
            blob=blob,
        )

    def verify(
        self,
        proof: Proof,
        circuit: Optional[ArithmeticCircuit] = None,
        public_inputs: Optional[PublicInputs] = None,
        credentials: Sequence[Any] = (),
        revocation_list: Optional[SignedRevocationList] = None,
    ) -> PatternVerification:
        """Verify a proof; returns a verdict and never raises on a bad proof.

        `credentials` anchors the public inputs to the credentials they were
        taken from; each must verify and come from a trusted issuer. Version
        proofs need both credentials (old, new) and are cross-checked against
        `revocation_list` (or the injected registry's current list).

        Raises:
            StaleRoot: if a Merkle root has rotated out of the registry window
        """
        pattern = self.patterns[proof.proof_type]
        verdict = self._verify(pattern, proof, circuit, public_inputs, credentials, revocation_list)
        if not verdict.valid:
            logger.warning(
                "Proof verification failed",
                error_code=ProofVerificationFailed.code,
                operation="verify",
                proof_type=proof.proof_type.value,
                circuit_id=proof.circuit_id,
                reason=verdict.reason,
            )
        return verdict

    def _verify(
        self,
        pattern: ProofPattern,
        proof: Proof,
        circuit: Optional[ArithmeticCircuit],
        public_inputs: Optional[PublicInputs],
        credentials: Sequence[Any],
        revocation_list: Optional[SignedRevocationList],
    ) -> PatternVerification:
        pi = proof.public_inputs
        if public_inputs is not None and public_inputs != pi:
            return PatternVerification(False, reason="Public inputs do not match the proof")
        problem = pattern.check_public_inputs(pi)
        if problem:
            return PatternVerification(False, reason=problem)

        expected = self.circuit_for(pi)
        if proof.circuit_id != expected.circuit_id:
            return PatternVerification(False, reason="Proof was built for another circuit")
        if circuit is not None and (
            circuit.circuit_id != expected.circuit_id
            or circuit.descriptor.digest != expected.descriptor.digest
        ):
            return PatternVerification(False, reason="Circuit does not match the public inputs")

        if isinstance(pi, (MembershipPublicInputs, LockerPublicInputs)):
            problem = self._check_root(pi.universe, pi.root)
            if problem:
                return PatternVerification(False, reason=problem)

        result = self.system.verify(expected.circuit, pi.field_vector(), proof.blob)
        if not result.valid:
            return PatternVerification(False, reason=result.reason or "Proof does not verify")
        problem = pattern.check_outputs(result.outputs, pi)
        if problem:
            return PatternVerification(False, reason=problem)

        try:
            parsed = [self._check_anchor_credential(c) for c in credentials]
        except InvalidCredential as e:
            return PatternVerification(False, reason=e.message)
        problem = pattern.check_anchors(pi, parsed)
        if problem:
            return PatternVerification(False, reason=problem)

        if isinstance(pi, VersionPublicInputs):
            problem = self._check_continuity(pi, revocation_list)
            if problem:
                return PatternVerification(False, reason=problem)

        return PatternVerification(True, revealed_data=pattern.revealed(pi))

    def _check_root(self, universe: str, root: int) -> Optional[str]:
        if self.merkle is not None:
            if not self.merkle.contains_universe(universe):
                return f"Unknown registry universe {universe}"
            self.merkle.check_root(universe, root)
            return None
        published = self.published_roots.get(universe)
        if published is None:
            return f"No trusted root for universe {universe}"
        if published != root:
            return "Merkle root is not the published root"
        return None

    def _check_anchor_credential(self, credential: Any) -> AddressCredential:
        if self.trusted_issuers is not None:
            return check_credential(credential, trusted_issuers=self.trusted_issuers, codec=self.codec)
        if self.issuer is None:
            raise InvalidCredential("No trusted issuer for anchoring credentials")
        parsed = check_credential(credential, codec=self.codec)
        if base_did(parsed.issuer) != self.issuer:
            raise InvalidCredential("Credential issued by an unexpected party", issuer=parsed.issuer)
        return parsed

    def _check_continuity(self, pi: VersionPublicInputs,
                          revocation_list: Optional[SignedRevocationList]) -> Optional[str]:
        issuer = self.issuer
        if issuer is None:
            return "No trusted issuer for revocation lists"
        signed = revocation_list
        if signed is None and self.revocation is not None:
            signed = self.revocation.current()
        if signed is None:
            return "No revocation list to confirm the move"
        try:
            trusted = verify_list(signed, issuer)
        except InvalidCredential as e:
            return e.message
        entry = trusted.entry_for(pi.old_pid)
        if entry is None:
            return "Old PID is not revoked"
        if entry.new_pid != pi.new_pid:
            return "New PID disagrees with the recorded successor"
        return None

    # -------------------------------------------------------------------------
    # Registration helpers

    def pid_leaf_value(self, components: PIDComponents) -> int:
        return self.hasher.pid_value(segment_fields(components.vector))

    def locker_leaf_value(self, facility_id: str, locker_id: str, zone: str) -> int:
        return self.hasher.locker_value(
            identifier_field("facility", facility_id),
            identifier_field("locker", locker_id),
            identifier_field("zone", zone),
        )

    def _require_merkle(self) -> MerkleRegistry:
        if self.merkle is None:
            raise RuntimeError("Engine has no Merkle registry")
        return self.merkle

    def register_pid(self, pid: Union[str, PIDComponents]) -> int:
        components = self.codec.components(pid)
        return self._require_merkle().insert(PID_UNIVERSE, self.pid_leaf_value(components))

    def register_locker(self, facility_id: str, locker_id: str, zone: str) -> int:
        return self._require_merkle().insert(
            locker_universe(facility_id),
            self.locker_leaf_value(facility_id, locker_id, zone),
        )

    # -------------------------------------------------------------------------
    # Pattern shortcuts

    def prove_membership(
        self,
        pid: Union[str, PIDComponents],
        allowed_countries: Iterable[str] = (),
        allowed_regions: Iterable[str] = (),
        circuit: Optional[ArithmeticCircuit] = None,
    ) -> MembershipProof:
        """Prove `pid` is registered and inside the allowed sets.

        Raises:
            RevokedPID: if the injected revocation registry lists `pid`
            LookupError: if `pid` is not registered
        """
        components = self.codec.components(pid)
        if self.revocation is not None:
            self.revocation.check_not_revoked(self.codec.encode(components))
        snapshot, path = self._require_merkle().witness(PID_UNIVERSE, self.pid_leaf_value(components))
        pi = MembershipPublicInputs(
            root=snapshot.root,
            depth=snapshot.depth,
            allowed_countries=tuple(allowed_countries),
            allowed_regions=tuple(allowed_regions),
        )
        return self.generate(MembershipWitness(components, path), pi, circuit)  # type: ignore[return-value]

    def prove_structure(self, opening: AddressOpening) -> StructureProof:
        pi = StructurePublicInputs(
            country_code=opening.components.country,
            depth=opening.components.depth,
            commitment=opening.commitment,
        )
        return self.generate(StructureWitness(opening), pi)  # type: ignore[return-value]

    def prove_selective_reveal(self, opening: AddressOpening, reveal: Iterable[str]) -> SelectiveRevealProof:
        levels = set(reveal)
        unknown = levels - set(SEGMENT_LEVELS)
        if unknown:
            raise ValueError(f"Unknown levels {sorted(unknown)}")
        mask = tuple(1 if level in levels else 0 for level in SEGMENT_LEVELS)
        revealed = {
            level: token
            for level, token, bit in zip(SEGMENT_LEVELS, opening.components.vector, mask)
            if bit and token is not None
        }
        masked = [bit * f for bit, f in zip(mask, opening.field_values)]
        pi = SelectiveRevealPublicInputs(
            revealed=_ordered_reveal(revealed),
            full_commitment=opening.commitment,
            revealed_commitment=self.hasher.commit(masked, opening.nonce),
        )
        return self.generate(SelectiveRevealWitness(opening, mask), pi)  # type: ignore[return-value]

    def prove_version(self, holder: HolderKey, old_pid: str, new_pid: str) -> VersionProof:
        pi = VersionPublicInputs(
            old_pid=old_pid,
            new_pid=new_pid,
            old_binding=holder.binding_for(old_pid, self.hasher),
            new_binding=holder.binding_for(new_pid, self.hasher),
        )
        return self.generate(VersionWitness(holder.secret), pi)  # type: ignore[return-value]

    def prove_locker(self, facility_id: str, locker_id: str, zone: str) -> LockerProof:
        snapshot, path = self._require_merkle().witness(
            locker_universe(facility_id),
            self.locker_leaf_value(facility_id, locker_id, zone),
        )
        pi = LockerPublicInputs(facility_id=facility_id, root=snapshot.root, depth=snapshot.depth)
        return self.generate(LockerWitness(locker_id, zone, path), pi)  # type: ignore[return-value]
