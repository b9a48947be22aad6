"""
ZKADDR Field Arithmetic and Commitment Primitive

Everything the proof engine consumes lives in the BN254 scalar field ``Fr``,
so commitments and Merkle nodes computed here can be fed to circuits as-is.

Hash: MiMC-7 (the permutation ``x -> (x + k + c_i)^7`` iterated over the round
constants, plus a final key addition) in Miyaguchi-Preneel mode for multiple
inputs. ``gcd(7, p - 1) = 1`` for this field, so each round is a permutation.

Each use-site hashes under its own domain key:

    PID_KEY      leaf value of a delivery PID
    LEAF_KEY     Merkle leaf hash
    NODE_KEY     Merkle interior node
    COMMIT_KEY   hiding commitments over field vectors
    BIND_KEY     holder binding tags
    LOCKER_KEY   leaf value of a locker within a facility

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Tuple

# BN254 scalar field order (Fr)
FIELD_MODULUS = 0x30644e72e131a029b85045b68181585d2833e84879b9709143e1f593f0000001
FIELD_BYTES = 32

MIMC_EXPONENT = 7
MIMC_SEED = b"zkaddr.mimc7"


# =============================================================================
# FIELD ELEMENTS
# =============================================================================

@dataclass(frozen=True)
class FieldElement:
    """
    Element of ``Fr``, serialized as 64 lowercase hex characters.

    The proof engine works on plain ints for speed; FieldElement is the typed
    form used at API and serialization boundaries.
    """
    value: int

    def __post_init__(self):
        if not isinstance(self.value, int) or not 0 <= self.value < FIELD_MODULUS:
            raise ValueError("Field element out of range")

    @classmethod
    def zero(cls) -> 'FieldElement':
        return cls(0)

    @classmethod
    def one(cls) -> 'FieldElement':
        return cls(1)

    @classmethod
    def random(cls) -> 'FieldElement':
        return cls(random_scalar())

    @classmethod
    def from_int(cls, n: int) -> 'FieldElement':
        """Create a field element from an integer, reducing modulo p."""
        return cls(n % FIELD_MODULUS)

    @classmethod
    def from_hex(cls, s: str) -> 'FieldElement':
        if not isinstance(s, str) or len(s) != 64:
            raise ValueError("Field element must be 64 hex characters")
        return cls(int(s, 16))

    def to_hex(self) -> str:
        return format(self.value, '064x')

    def to_bytes(self) -> bytes:
        return self.value.to_bytes(FIELD_BYTES, 'big')

    def __add__(self, other: 'FieldElement') -> 'FieldElement':
        return FieldElement((self.value + other.value) % FIELD_MODULUS)

    def __sub__(self, other: 'FieldElement') -> 'FieldElement':
        return FieldElement((self.value - other.value) % FIELD_MODULUS)

    def __mul__(self, other: 'FieldElement') -> 'FieldElement':
        return FieldElement((self.value * other.value) % FIELD_MODULUS)

    def __neg__(self) -> 'FieldElement':
        return FieldElement((-self.value) % FIELD_MODULUS)

    def inverse(self) -> 'FieldElement':
        """Modular inverse via Fermat's little theorem."""
        return FieldElement(inverse(self.value))


def inverse(x: int) -> int:
    if x % FIELD_MODULUS == 0:
        raise ZeroDivisionError("Cannot invert zero field element")
    return pow(x, FIELD_MODULUS - 2, FIELD_MODULUS)


def random_scalar() -> int:
    """Uniform field element (nonces, holder secrets)."""
    # 64 bytes of entropy keeps the modular bias below 2^-250
    return int.from_bytes(secrets.token_bytes(64), 'big') % FIELD_MODULUS


def to_bytes(x: int) -> bytes:
    return x.to_bytes(FIELD_BYTES, 'big')


def from_bytes(b: bytes) -> int:
    """Strict decoding: rejects non-canonical encodings (>= p)."""
    if len(b) != FIELD_BYTES:
        raise ValueError(f"Field element must be {FIELD_BYTES} bytes")
    x = int.from_bytes(b, 'big')
    if x >= FIELD_MODULUS:
        raise ValueError("Non-canonical field element")
    return x


def to_hex(x: int) -> str:
    return format(x, '064x')


def from_hex(s: str) -> int:
    return FieldElement.from_hex(s).value


def hash_to_field(domain: str, data: str) -> int:
    """Map a string into ``Fr`` under a domain tag."""
    h = hashlib.sha256(domain.encode("utf-8") + b"\x00" + data.encode("utf-8")).digest()
    return int.from_bytes(h, 'big') % FIELD_MODULUS


# =============================================================================
# DOMAIN KEYS
# =============================================================================

PID_KEY = hash_to_field("zkaddr.key", "pid-leaf-value")
LEAF_KEY = hash_to_field("zkaddr.key", "merkle-leaf")
NODE_KEY = hash_to_field("zkaddr.key", "merkle-node")
COMMIT_KEY = hash_to_field("zkaddr.key", "commitment")
BIND_KEY = hash_to_field("zkaddr.key", "holder-binding")
LOCKER_KEY = hash_to_field("zkaddr.key", "locker-leaf-value")


# =============================================================================
# MIMC-7
# =============================================================================

@lru_cache(maxsize=16)
def round_constants(rounds: int) -> Tuple[int, ...]:
    """Round constants ``c_0 = 0, c_i = sha256(seed || i) mod p``."""
    if rounds < 1:
        raise ValueError("MiMC needs at least one round")
    constants = [0]
    for i in range(1, rounds):
        h = hashlib.sha256(MIMC_SEED + i.to_bytes(4, 'big')).digest()
        constants.append(int.from_bytes(h, 'big') % FIELD_MODULUS)
    return tuple(constants)


class MiMC:
    """
    MiMC-7 keyed permutation and multi-input hash over ``Fr``.

    The round count is a parameter; prover, verifier and every registry
    must use the same value (it is part of each circuit's identity).
    """

    def __init__(self, rounds: Optional[int] = None):
        if rounds is None:
            from zkaddr.config import get_config
            rounds = get_config().proof.mimc_rounds.get()
        self.rounds = rounds
        self.constants = round_constants(rounds)

    def permute(self, x: int, k: int) -> int:
        p = FIELD_MODULUS
        for c in self.constants:
            x = pow((x + k + c) % p, MIMC_EXPONENT, p)
        return (x + k) % p

    def hash(self, inputs: Iterable[int], key: int = 0) -> int:
        """Miyaguchi-Preneel: ``r = key; r = r + x + E_r(x)`` per input."""
        p = FIELD_MODULUS
        r = key % p
        for x in inputs:
            x %= p
            r = (r + x + self.permute(x, r)) % p
        return r

    # ---------------------------------------------------------------------
    # Domain-separated helpers

    def leaf(self, value: int) -> int:
        return self.hash([value], LEAF_KEY)

    def node(self, left: int, right: int) -> int:
        return self.hash([left, right], NODE_KEY)

    def commit(self, values: Sequence[int], nonce: int) -> int:
        """Binding, hiding commitment to a field vector."""
        return self.hash(list(values) + [nonce], COMMIT_KEY)

    def binding(self, secret: int, pid_value: int) -> int:
        return self.hash([secret, pid_value], BIND_KEY)

    def pid_value(self, segment_values: Sequence[int]) -> int:
        """Merkle leaf value of a delivery PID."""
        return self.hash(segment_values, PID_KEY)

    def locker_value(self, facility: int, locker: int, zone: int) -> int:
        """Merkle leaf value of a locker inside a facility."""
        return self.hash([facility, locker, zone], LOCKER_KEY)

    def __repr__(self) -> str:
        return f"MiMC(rounds={self.rounds})"


def default_hasher() -> MiMC:
    """MiMC instance with the configured round count."""
    return MiMC()


def commit(values: Sequence[int], nonce: int, hasher: Optional[MiMC] = None) -> int:
    return (hasher or default_hasher()).commit(values, nonce)


def verify_commitment(commitment: int, values: Sequence[int], nonce: int, hasher: Optional[MiMC] = None) -> bool:
    return commit(values, nonce, hasher) == commitment


def new_nonce() -> int:
    return random_scalar()


def segment_field(level: int, token: Optional[str]) -> int:
    """Field encoding of one PID segment; absent segments encode as 0."""
    if token is None:
        return 0
    return hash_to_field("zkaddr.segment", f"{level}:{token}")


def segment_fields(vector: Sequence[Optional[str]]) -> List[int]:
    return [segment_field(i, token) for i, token in enumerate(vector)]


def identifier_field(kind: str, identifier: str) -> int:
    """Field encoding of a non-PID identifier (facility, locker, zone, pid string)."""
    return hash_to_field(f"zkaddr.{kind}", identifier)
