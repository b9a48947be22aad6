"""
ZKADDR Zero-Knowledge Proof Engine

Proves knowledge of a private witness satisfying an arithmetic circuit over
``Fr`` without revealing it. The backend is an MPC-in-the-head proof in the
ZKBoo style: no trusted setup, and security rests only on SHA-256/SHAKE-256
in the random-oracle model.

Per repetition the prover:
    1. splits the witness into three additive shares (two from seeded
       tapes, the third explicit),
    2. runs a (2,3) decomposition of the circuit: linear gates locally,
       MUL gates using the neighbour's shares and tape randomness,
    3. commits to each party's view (seed, explicit input, MUL outputs).

A Fiat-Shamir challenge over the circuit digest, public inputs, claimed
outputs and all commitments/output shares picks, per repetition, two of the
three views to open. The verifier re-runs those two parties and checks
consistency. Cheating survives one repetition with probability 2/3, so
`repetitions` sets soundness: 137 gives (2/3)^137 < 2^-80.

Proof blob (``ZKB1``):

    magic(4) | reps u32 | inputs u32 | muls u32 | outputs u32 | exposed u32
    exposed values (32 each)
    per repetition:
        e u8 | seed_e(16) | seed_e+1(16)
        [explicit input shares (32 each) if party 2 is opened]
        z_e+1 MUL outputs (32 each) | commitment_e+2 (32)
        output shares of party e+2 (32 each)

Blob size grows with multiplications x repetitions. The circuit digest is
part of the challenge, so a proof cannot be replayed against another
circuit or other public inputs.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import secrets
import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from zkaddr.circuit import Circuit, Op
from zkaddr.errors import ProofVerificationFailed, WitnessMismatch
from zkaddr.field import FIELD_BYTES, FIELD_MODULUS, from_bytes, to_bytes
from zkaddr.hardening import Validators
from zkaddr.observability import Component, get_logger, timed_operation

logger = get_logger("engine", Component.PROOF)

_P = FIELD_MODULUS

BLOB_MAGIC = b"ZKB1"
SEED_BYTES = 16
TAPE_ELEMENT_BYTES = 40
COMMITMENT_BYTES = 32

_TAPE_TAG = b"zkaddr.zkboo.tape"
_VIEW_TAG = b"zkaddr.zkboo.view"
_CHALLENGE_TAG = b"zkaddr.zkboo.challenge"
_HEADER = struct.Struct(">4sIIIII")


# =============================================================================
# PROOF SYSTEMS AND DESCRIPTORS
# =============================================================================

class ProofSystem(Enum):
    """
    Supported proof systems.

    Selection criteria:
        - MPC_IN_THE_HEAD: no trusted setup, hash-based (post-quantum),
          proofs linear in circuit size
    """
    MPC_IN_THE_HEAD = "zkboo-fr"

    def requires_trusted_setup(self) -> bool:
        return False

    def is_post_quantum(self) -> bool:
        return True


@dataclass(frozen=True)
class CircuitDescriptor:
    """Public identity of a circuit version: what a proof was built against."""
    circuit_id: str
    name: str
    constraint_summary: Dict[str, int]
    digest: str
    proof_system: ProofSystem = ProofSystem.MPC_IN_THE_HEAD

    @classmethod
    def for_circuit(cls, circuit_id: str, circuit: Circuit) -> "CircuitDescriptor":
        return cls(
            circuit_id=circuit_id,
            name=circuit.name,
            constraint_summary=circuit.summary(),
            digest=circuit.digest_hex,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "circuitId": self.circuit_id,
            "name": self.name,
            "constraintSummary": dict(self.constraint_summary),
            "digest": self.digest,
            "proofSystem": self.proof_system.value,
        }


@dataclass(frozen=True)
class ArithmeticCircuit:
    """A circuit together with its descriptor."""
    descriptor: CircuitDescriptor
    circuit: Circuit

    @property
    def circuit_id(self) -> str:
        return self.descriptor.circuit_id


class CircuitRegistry:
    """
    Registry of circuit versions, addressable by id or digest.

    Re-registering an id with a different digest is rejected: a circuit id
    names exactly one gate list forever.
    """

    def __init__(self):
        self._by_id: Dict[str, ArithmeticCircuit] = {}
        self._id_by_digest: Dict[str, str] = {}

    def register(self, circuit_id: str, circuit: Circuit) -> ArithmeticCircuit:
        existing = self._by_id.get(circuit_id)
        if existing is not None:
            if existing.descriptor.digest != circuit.digest_hex:
                raise ValueError(f"Circuit id {circuit_id} already registered with another digest")
            return existing
        entry = ArithmeticCircuit(CircuitDescriptor.for_circuit(circuit_id, circuit), circuit)
        self._by_id[circuit_id] = entry
        self._id_by_digest[entry.descriptor.digest] = circuit_id
        logger.debug("Circuit registered", operation="register", circuit_id=circuit_id,
                     multiplications=circuit.mul_count)
        return entry

    def get(self, circuit_id: str) -> Optional[ArithmeticCircuit]:
        return self._by_id.get(circuit_id)

    def get_by_digest(self, digest: str) -> Optional[ArithmeticCircuit]:
        checked = Validators.validate_digest(digest)
        if not checked.is_valid:
            return None
        circuit_id = self._id_by_digest.get(checked.sanitized_value)
        return self._by_id.get(circuit_id) if circuit_id else None

    def descriptors(self) -> List[CircuitDescriptor]:
        return [entry.descriptor for _, entry in sorted(self._by_id.items())]

    def export_registry(self) -> Dict[str, Any]:
        return {"circuits": [d.to_dict() for d in self.descriptors()]}


# =============================================================================
# PROVER AND VERIFIER INTERFACES
# =============================================================================

@dataclass
class VerificationResult:
    valid: bool
    outputs: List[int] = field(default_factory=list)
    reason: str = ""


class Prover(Protocol):
    """Protocol for proof generation."""

    def prove(self, circuit: Circuit, witness: Sequence[int], publics: Sequence[int]) -> bytes:
        """Return a proof blob for `witness`."""
        ...


class Verifier(Protocol):
    """Protocol for proof verification."""

    def verify(self, circuit: Circuit, publics: Sequence[int], blob: bytes) -> VerificationResult:
        """Check a proof blob against the circuit and public inputs."""
        ...


# =============================================================================
# SHARED MACHINERY
# =============================================================================

def _tape(seed: bytes, n: int) -> List[int]:
    stream = hashlib.shake_256(_TAPE_TAG + seed).digest(n * TAPE_ELEMENT_BYTES)
    return [
        int.from_bytes(stream[i:i + TAPE_ELEMENT_BYTES], "big") % _P
        for i in range(0, n * TAPE_ELEMENT_BYTES, TAPE_ELEMENT_BYTES)
    ]


def _view_commitment(seed: bytes, explicit: Optional[Sequence[int]], muls: Sequence[int]) -> bytes:
    h = hashlib.sha256(_VIEW_TAG)
    h.update(seed)
    if explicit is not None:
        h.update(b"".join(to_bytes(x) for x in explicit))
    h.update(b"".join(to_bytes(z) for z in muls))
    return h.digest()


def _challenge(
    circuit: Circuit,
    publics: Sequence[int],
    claimed: Sequence[int],
    commitments: Sequence[Sequence[bytes]],
    output_shares: Sequence[Sequence[Sequence[int]]],
) -> List[int]:
    h = hashlib.sha256(_CHALLENGE_TAG)
    h.update(circuit.digest)
    h.update(struct.pack(">II", len(publics), len(claimed)))
    for x in publics:
        h.update(to_bytes(x % _P))
    for y in claimed:
        h.update(to_bytes(y))
    for rep_commitments, rep_shares in zip(commitments, output_shares):
        for c in rep_commitments:
            h.update(c)
        for shares in rep_shares:
            h.update(b"".join(to_bytes(y) for y in shares))
    seed = h.digest()

    reps = len(commitments)
    out: List[int] = []
    counter = 0
    while len(out) < reps:
        block = hashlib.sha256(seed + counter.to_bytes(4, "big")).digest()
        counter += 1
        for byte in block:
            # 255 is rejected so that byte % 3 is uniform
            if byte < 255:
                out.append(byte % 3)
                if len(out) == reps:
                    break
    return out


def _claimed_outputs(circuit: Circuit, exposed: Sequence[int]) -> List[int]:
    return [0] * len(circuit.constraints) + list(exposed)


# =============================================================================
# PROVER
# =============================================================================

@dataclass
class _RepetitionTranscript:
    seeds: List[bytes]
    explicit: List[int]
    muls: List[List[int]]
    commitments: List[bytes]
    output_shares: List[List[int]]


class MpcProver:
    """MPC-in-the-head prover over `Circuit` gate lists."""

    def __init__(self, repetitions: Optional[int] = None):
        if repetitions is None:
            from zkaddr.config import get_config
            repetitions = get_config().proof.repetitions.get()
        self.repetitions = repetitions

    @timed_operation(logger, "prove")
    def prove(self, circuit: Circuit, witness: Sequence[int], publics: Sequence[int]) -> bytes:
        """Generate a proof blob.

        Raises:
            WitnessMismatch: if the witness violates any circuit constraint
        """
        witness = [x % _P for x in witness]
        publics = [x % _P for x in publics]
        failed, exposed = circuit.check(witness, publics)
        if failed:
            raise WitnessMismatch(
                f"Witness does not satisfy {circuit.name}",
                circuit=circuit.name,
                constraints=failed[:8],
            )

        transcripts = [self._run(circuit, witness, publics) for _ in range(self.repetitions)]
        claimed = _claimed_outputs(circuit, exposed)
        challenges = _challenge(
            circuit,
            publics,
            claimed,
            [t.commitments for t in transcripts],
            [t.output_shares for t in transcripts],
        )

        parts = [
            _HEADER.pack(
                BLOB_MAGIC,
                self.repetitions,
                len(circuit.input_names),
                circuit.mul_count,
                len(claimed),
                len(exposed),
            ),
            b"".join(to_bytes(v) for v in exposed),
        ]
        for t, e in zip(transcripts, challenges):
            e1, e2 = (e + 1) % 3, (e + 2) % 3
            parts.append(bytes([e]))
            parts.append(t.seeds[e])
            parts.append(t.seeds[e1])
            if 2 in (e, e1):
                parts.append(b"".join(to_bytes(x) for x in t.explicit))
            parts.append(b"".join(to_bytes(z) for z in t.muls[e1]))
            parts.append(t.commitments[e2])
            parts.append(b"".join(to_bytes(y) for y in t.output_shares[e2]))
        return b"".join(parts)

    def _run(self, circuit: Circuit, witness: Sequence[int], publics: Sequence[int]) -> _RepetitionTranscript:
        n_in = len(witness)
        n_mul = circuit.mul_count
        seeds = [secrets.token_bytes(SEED_BYTES) for _ in range(3)]
        tapes = [_tape(seed, n_in + n_mul) for seed in seeds]

        shares0 = tapes[0][:n_in]
        shares1 = tapes[1][:n_in]
        explicit = [(x - a - b) % _P for x, a, b in zip(witness, shares0, shares1)]
        in_shares = (shares0, shares1, explicit)
        rand = [t[n_in:] for t in tapes]

        w0: List[int] = []
        w1: List[int] = []
        w2: List[int] = []
        muls: List[List[int]] = [[], [], []]
        j = 0
        for g in circuit.gates:
            op = g.op
            if op == Op.MUL:
                a0, a1, a2 = w0[g.a], w1[g.a], w2[g.a]
                b0, b1, b2 = w0[g.b], w1[g.b], w2[g.b]
                r0, r1, r2 = rand[0][j], rand[1][j], rand[2][j]
                z0 = (a0 * b0 + a1 * b0 + a0 * b1 + r0 - r1) % _P
                z1 = (a1 * b1 + a2 * b1 + a1 * b2 + r1 - r2) % _P
                z2 = (a2 * b2 + a0 * b2 + a2 * b0 + r2 - r0) % _P
                muls[0].append(z0)
                muls[1].append(z1)
                muls[2].append(z2)
                w0.append(z0)
                w1.append(z1)
                w2.append(z2)
                j += 1
            elif op == Op.ADD:
                w0.append((w0[g.a] + w0[g.b]) % _P)
                w1.append((w1[g.a] + w1[g.b]) % _P)
                w2.append((w2[g.a] + w2[g.b]) % _P)
            elif op == Op.SUB:
                w0.append((w0[g.a] - w0[g.b]) % _P)
                w1.append((w1[g.a] - w1[g.b]) % _P)
                w2.append((w2[g.a] - w2[g.b]) % _P)
            elif op == Op.ADDC:
                w0.append((w0[g.a] + g.c) % _P)
                w1.append(w1[g.a])
                w2.append(w2[g.a])
            elif op == Op.MULC:
                w0.append(w0[g.a] * g.c % _P)
                w1.append(w1[g.a] * g.c % _P)
                w2.append(w2[g.a] * g.c % _P)
            elif op == Op.INPUT:
                w0.append(in_shares[0][g.a])
                w1.append(in_shares[1][g.a])
                w2.append(in_shares[2][g.a])
            elif op == Op.PUBLIC:
                w0.append(publics[g.a])
                w1.append(0)
                w2.append(0)
            else:
                w0.append(g.c)
                w1.append(0)
                w2.append(0)

        outs = circuit.output_wires
        output_shares = [[w[o] for o in outs] for w in (w0, w1, w2)]
        commitments = [
            _view_commitment(seeds[0], None, muls[0]),
            _view_commitment(seeds[1], None, muls[1]),
            _view_commitment(seeds[2], explicit, muls[2]),
        ]
        return _RepetitionTranscript(seeds, explicit, muls, commitments, output_shares)


# =============================================================================
# VERIFIER
# =============================================================================

class _Reader:
    """Strict cursor over a proof blob."""

    def __init__(self, data: bytes):
        self._data = data
        self._pos = 0

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError("Proof blob is truncated")
        out = self._data[self._pos:end]
        self._pos = end
        return out

    def field(self) -> int:
        return from_bytes(self.take(FIELD_BYTES))

    def fields(self, n: int) -> List[int]:
        return [self.field() for _ in range(n)]

    def done(self) -> None:
        if self._pos != len(self._data):
            raise ValueError("Trailing bytes after proof blob")


@dataclass
class _OpenedRepetition:
    e: int
    seed_e: bytes
    seed_e1: bytes
    explicit: Optional[List[int]]
    muls_e1: List[int]
    commitment_e2: bytes
    shares_e2: List[int]


@dataclass
class ProofBlob:
    """Decoded form of a ``ZKB1`` blob."""
    repetitions: int
    n_inputs: int
    n_mul: int
    n_outputs: int
    exposed: List[int]
    openings: List[_OpenedRepetition]

    @classmethod
    def decode(cls, blob: bytes) -> "ProofBlob":
        if not isinstance(blob, (bytes, bytearray)):
            raise ValueError("Proof blob must be bytes")
        r = _Reader(bytes(blob))
        magic, reps, n_in, n_mul, n_out, n_exp = _HEADER.unpack(r.take(_HEADER.size))
        if magic != BLOB_MAGIC:
            raise ValueError("Unknown proof blob format")
        if n_exp > n_out:
            raise ValueError("Exposed outputs exceed total outputs")
        exposed = r.fields(n_exp)
        openings: List[_OpenedRepetition] = []
        for _ in range(reps):
            e = r.take(1)[0]
            if e > 2:
                raise ValueError("Invalid challenge index")
            seed_e = r.take(SEED_BYTES)
            seed_e1 = r.take(SEED_BYTES)
            explicit = r.fields(n_in) if 2 in (e, (e + 1) % 3) else None
            openings.append(_OpenedRepetition(
                e=e,
                seed_e=seed_e,
                seed_e1=seed_e1,
                explicit=explicit,
                muls_e1=r.fields(n_mul),
                commitment_e2=r.take(COMMITMENT_BYTES),
                shares_e2=r.fields(n_out),
            ))
        r.done()
        return cls(reps, n_in, n_mul, n_out, exposed, openings)

    def summary(self) -> Dict[str, Any]:
        return {
            "format": BLOB_MAGIC.decode("ascii"),
            "repetitions": self.repetitions,
            "privateInputs": self.n_inputs,
            "multiplications": self.n_mul,
            "outputs": self.n_outputs,
            "exposedOutputs": len(self.exposed),
        }


class MpcVerifier:
    """Verifier for `MpcProver` blobs; deterministic and side-effect free."""

    def __init__(self, min_repetitions: Optional[int] = None):
        if min_repetitions is None:
            from zkaddr.config import get_config
            min_repetitions = get_config().proof.repetitions.get()
        self.min_repetitions = min_repetitions

    @timed_operation(logger, "verify")
    def verify(self, circuit: Circuit, publics: Sequence[int], blob: bytes) -> VerificationResult:
        try:
            outputs = self.check(circuit, publics, blob)
        except ProofVerificationFailed as e:
            logger.warning(
                "Proof rejected",
                error_code=e.code,
                operation="verify",
                circuit=circuit.name,
                reason=e.message,
            )
            return VerificationResult(valid=False, reason=e.message)
        return VerificationResult(valid=True, outputs=outputs)

    def check(self, circuit: Circuit, publics: Sequence[int], blob: bytes) -> List[int]:
        """Verify and return the exposed outputs; raises `ProofVerificationFailed`."""
        if len(publics) != len(circuit.public_names):
            raise ProofVerificationFailed("Public input count does not match circuit", circuit=circuit.name)
        if any(not isinstance(x, int) or not 0 <= x < _P for x in publics):
            raise ProofVerificationFailed("Public inputs must be canonical field elements", circuit=circuit.name)
        try:
            proof = ProofBlob.decode(blob)
        except (ValueError, struct.error) as e:
            raise ProofVerificationFailed(f"Malformed proof blob: {e}", circuit=circuit.name) from e

        if proof.repetitions < self.min_repetitions:
            raise ProofVerificationFailed("Too few repetitions", repetitions=proof.repetitions)
        if (proof.n_inputs, proof.n_mul, proof.n_outputs, len(proof.exposed)) != (
            len(circuit.input_names),
            circuit.mul_count,
            len(circuit.output_wires),
            len(circuit.exposed),
        ):
            raise ProofVerificationFailed("Proof shape does not match circuit", circuit=circuit.name)

        claimed = _claimed_outputs(circuit, proof.exposed)
        commitments: List[List[bytes]] = []
        output_shares: List[List[List[int]]] = []
        for opened in proof.openings:
            c, y = self._replay(circuit, publics, opened)
            for k, expected in enumerate(claimed):
                if (y[0][k] + y[1][k] + y[2][k]) % _P != expected:
                    raise ProofVerificationFailed("Output shares do not reconstruct", circuit=circuit.name)
            commitments.append(c)
            output_shares.append(y)

        challenges = _challenge(circuit, publics, claimed, commitments, output_shares)
        if challenges != [o.e for o in proof.openings]:
            raise ProofVerificationFailed("Challenge mismatch", circuit=circuit.name)
        return list(proof.exposed)

    def _replay(
        self,
        circuit: Circuit,
        publics: Sequence[int],
        o: _OpenedRepetition,
    ) -> Tuple[List[bytes], List[List[int]]]:
        """Re-run parties e and e+1; return all three commitments and output shares."""
        e, e1, e2 = o.e, (o.e + 1) % 3, (o.e + 2) % 3
        n_in = len(circuit.input_names)
        n_mul = circuit.mul_count
        tape_e = _tape(o.seed_e, n_in + n_mul)
        tape_e1 = _tape(o.seed_e1, n_in + n_mul)
        in_e = o.explicit if e == 2 else tape_e[:n_in]
        in_e1 = o.explicit if e1 == 2 else tape_e1[:n_in]
        rand_e = tape_e[n_in:]
        rand_e1 = tape_e1[n_in:]
        lead_e = e == 0
        lead_e1 = e1 == 0

        wa: List[int] = []
        wb: List[int] = []
        muls_e: List[int] = []
        z_given = o.muls_e1
        j = 0
        for g in circuit.gates:
            op = g.op
            if op == Op.MUL:
                a0, a1 = wa[g.a], wb[g.a]
                b0, b1 = wa[g.b], wb[g.b]
                z = (a0 * b0 + a1 * b0 + a0 * b1 + rand_e[j] - rand_e1[j]) % _P
                muls_e.append(z)
                wa.append(z)
                wb.append(z_given[j])
                j += 1
            elif op == Op.ADD:
                wa.append((wa[g.a] + wa[g.b]) % _P)
                wb.append((wb[g.a] + wb[g.b]) % _P)
            elif op == Op.SUB:
                wa.append((wa[g.a] - wa[g.b]) % _P)
                wb.append((wb[g.a] - wb[g.b]) % _P)
            elif op == Op.ADDC:
                wa.append((wa[g.a] + g.c) % _P if lead_e else wa[g.a])
                wb.append((wb[g.a] + g.c) % _P if lead_e1 else wb[g.a])
            elif op == Op.MULC:
                wa.append(wa[g.a] * g.c % _P)
                wb.append(wb[g.a] * g.c % _P)
            elif op == Op.INPUT:
                wa.append(in_e[g.a])
                wb.append(in_e1[g.a])
            elif op == Op.PUBLIC:
                wa.append(publics[g.a] if lead_e else 0)
                wb.append(publics[g.a] if lead_e1 else 0)
            else:
                wa.append(g.c if lead_e else 0)
                wb.append(g.c if lead_e1 else 0)

        outs = circuit.output_wires
        commitments: List[bytes] = [b""] * 3
        shares: List[List[int]] = [[]] * 3
        commitments[e] = _view_commitment(o.seed_e, in_e if e == 2 else None, muls_e)
        commitments[e1] = _view_commitment(o.seed_e1, in_e1 if e1 == 2 else None, z_given)
        commitments[e2] = o.commitment_e2
        shares[e] = [wa[k] for k in outs]
        shares[e1] = [wb[k] for k in outs]
        shares[e2] = list(o.shares_e2)
        return commitments, shares


class MpcProofSystem:
    """Prover and verifier bundled with one parameter set."""

    system = ProofSystem.MPC_IN_THE_HEAD

    def __init__(self, repetitions: Optional[int] = None):
        self.prover = MpcProver(repetitions)
        self.verifier = MpcVerifier(self.prover.repetitions)

    @property
    def repetitions(self) -> int:
        return self.prover.repetitions

    def prove(self, circuit: Circuit, witness: Sequence[int], publics: Sequence[int]) -> bytes:
        return self.prover.prove(circuit, witness, publics)

    def verify(self, circuit: Circuit, publics: Sequence[int], blob: bytes) -> VerificationResult:
        return self.verifier.verify(circuit, publics, blob)


def prove_blob(circuit: Circuit, witness: Sequence[int], publics: Sequence[int], repetitions: int) -> bytes:
    """Module-level prove entry point, picklable for process pools."""
    return MpcProver(repetitions).prove(circuit, witness, publics)
