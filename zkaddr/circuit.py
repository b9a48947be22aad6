"""
ZKADDR Arithmetic Circuits

Circuits are straight-line programs over ``Fr``. Every gate produces exactly
one wire, so a wire is identified by the index of the gate that made it.

Gate set:

    INPUT   a = private input index
    PUBLIC  a = public input index
    CONST   c = constant
    ADD     w[a] + w[b]
    SUB     w[a] - w[b]
    ADDC    w[a] + c
    MULC    w[a] * c
    MUL     w[a] * w[b]          (the only non-linear gate)

A circuit's outputs are either *constraints* (wires that must evaluate to
zero) or *exposed outputs* (values revealed to the verifier). The builder
offers gadgets for the hashes and Merkle paths the proof patterns need;
they mirror `zkaddr.field.MiMC` gate for gate.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from functools import cached_property
from typing import Dict, List, Sequence, Tuple

from zkaddr.field import FIELD_MODULUS, MiMC, to_bytes

Wire = int

_P = FIELD_MODULUS


class Op(IntEnum):
    INPUT = 0
    PUBLIC = 1
    CONST = 2
    ADD = 3
    SUB = 4
    ADDC = 5
    MULC = 6
    MUL = 7


@dataclass(frozen=True)
class Gate:
    op: Op
    a: int = 0
    b: int = 0
    c: int = 0


# =============================================================================
# CIRCUIT
# =============================================================================

@dataclass(frozen=True)
class Circuit:
    """A built, immutable arithmetic circuit."""
    name: str
    gates: Tuple[Gate, ...]
    input_names: Tuple[str, ...]
    public_names: Tuple[str, ...]
    constraints: Tuple[Tuple[str, Wire], ...]
    exposed: Tuple[Tuple[str, Wire], ...]
    params: Tuple[Tuple[str, str], ...] = ()

    @property
    def output_wires(self) -> List[Wire]:
        """Constraint wires first, then exposed wires."""
        return [w for _, w in self.constraints] + [w for _, w in self.exposed]

    @cached_property
    def mul_count(self) -> int:
        return sum(1 for g in self.gates if g.op == Op.MUL)

    @cached_property
    def digest(self) -> bytes:
        """Content hash of the full gate list and interface."""
        h = hashlib.sha256(b"zkaddr.circuit.v1")
        h.update(self.name.encode("utf-8") + b"\x00")
        for key, value in self.params:
            h.update(f"{key}={value}".encode("utf-8") + b"\x00")
        for group in (self.input_names, self.public_names):
            h.update(struct.pack(">I", len(group)))
            for name in group:
                h.update(name.encode("utf-8") + b"\x00")
        for group in (self.constraints, self.exposed):
            h.update(struct.pack(">I", len(group)))
            for name, wire in group:
                h.update(name.encode("utf-8") + b"\x00" + struct.pack(">I", wire))
        h.update(struct.pack(">I", len(self.gates)))
        for g in self.gates:
            h.update(struct.pack(">BII", g.op, g.a, g.b))
            h.update(to_bytes(g.c))
        return h.digest()

    @property
    def digest_hex(self) -> str:
        return self.digest.hex()

    def summary(self) -> Dict[str, int]:
        return {
            "gates": len(self.gates),
            "multiplications": self.mul_count,
            "privateInputs": len(self.input_names),
            "publicInputs": len(self.public_names),
            "constraints": len(self.constraints),
            "exposedOutputs": len(self.exposed),
        }

    def evaluate(self, inputs: Sequence[int], publics: Sequence[int]) -> List[int]:
        """Evaluate in the clear; returns every wire value."""
        if len(inputs) != len(self.input_names):
            raise ValueError(f"{self.name}: expected {len(self.input_names)} private inputs, got {len(inputs)}")
        if len(publics) != len(self.public_names):
            raise ValueError(f"{self.name}: expected {len(self.public_names)} public inputs, got {len(publics)}")
        w: List[int] = []
        for g in self.gates:
            op = g.op
            if op == Op.MUL:
                w.append(w[g.a] * w[g.b] % _P)
            elif op == Op.ADD:
                w.append((w[g.a] + w[g.b]) % _P)
            elif op == Op.SUB:
                w.append((w[g.a] - w[g.b]) % _P)
            elif op == Op.ADDC:
                w.append((w[g.a] + g.c) % _P)
            elif op == Op.MULC:
                w.append(w[g.a] * g.c % _P)
            elif op == Op.INPUT:
                w.append(inputs[g.a] % _P)
            elif op == Op.PUBLIC:
                w.append(publics[g.a] % _P)
            else:
                w.append(g.c % _P)
        return w

    def check(self, inputs: Sequence[int], publics: Sequence[int]) -> Tuple[List[str], List[int]]:
        """Return ``(failed constraint names, exposed output values)``."""
        w = self.evaluate(inputs, publics)
        failed = [name for name, wire in self.constraints if w[wire] != 0]
        return failed, [w[wire] for _, wire in self.exposed]


# =============================================================================
# BUILDER
# =============================================================================

@dataclass
class CircuitBuilder:
    """Incrementally assembles a `Circuit`."""
    name: str
    params: Dict[str, str] = field(default_factory=dict)
    _gates: List[Gate] = field(default_factory=list)
    _inputs: List[str] = field(default_factory=list)
    _publics: List[str] = field(default_factory=list)
    _constraints: List[Tuple[str, Wire]] = field(default_factory=list)
    _exposed: List[Tuple[str, Wire]] = field(default_factory=list)
    _consts: Dict[int, Wire] = field(default_factory=dict)

    def _emit(self, op: Op, a: int = 0, b: int = 0, c: int = 0) -> Wire:
        self._gates.append(Gate(op, a, b, c % _P))
        return len(self._gates) - 1

    def input(self, name: str) -> Wire:
        self._inputs.append(name)
        return self._emit(Op.INPUT, a=len(self._inputs) - 1)

    def inputs(self, prefix: str, n: int) -> List[Wire]:
        return [self.input(f"{prefix}[{i}]") for i in range(n)]

    def public(self, name: str) -> Wire:
        self._publics.append(name)
        return self._emit(Op.PUBLIC, a=len(self._publics) - 1)

    def const(self, value: int) -> Wire:
        value %= _P
        wire = self._consts.get(value)
        if wire is None:
            wire = self._emit(Op.CONST, c=value)
            self._consts[value] = wire
        return wire

    def add(self, a: Wire, b: Wire) -> Wire:
        return self._emit(Op.ADD, a, b)

    def sub(self, a: Wire, b: Wire) -> Wire:
        return self._emit(Op.SUB, a, b)

    def add_const(self, a: Wire, c: int) -> Wire:
        if c % _P == 0:
            return a
        return self._emit(Op.ADDC, a, c=c)

    def mul_const(self, a: Wire, c: int) -> Wire:
        return self._emit(Op.MULC, a, c=c)

    def mul(self, a: Wire, b: Wire) -> Wire:
        return self._emit(Op.MUL, a, b)

    def assert_zero(self, wire: Wire, name: str) -> None:
        self._constraints.append((name, wire))

    def assert_equal(self, a: Wire, b: Wire, name: str) -> None:
        self.assert_zero(self.sub(a, b), name)

    def expose(self, name: str, wire: Wire) -> None:
        self._exposed.append((name, wire))

    def build(self) -> Circuit:
        return Circuit(
            name=self.name,
            gates=tuple(self._gates),
            input_names=tuple(self._inputs),
            public_names=tuple(self._publics),
            constraints=tuple(self._constraints),
            exposed=tuple(self._exposed),
            params=tuple(sorted(self.params.items())),
        )


# =============================================================================
# GADGETS
# =============================================================================

def assert_boolean(b: CircuitBuilder, wire: Wire, name: str) -> None:
    """``w * (w - 1) = 0``"""
    b.assert_zero(b.mul(wire, b.add_const(wire, -1)), name)


def one_minus(b: CircuitBuilder, wire: Wire) -> Wire:
    return b.add_const(b.mul_const(wire, -1), 1)


def select(b: CircuitBuilder, bit: Wire, if_zero: Wire, if_one: Wire) -> Wire:
    """``if_zero + bit * (if_one - if_zero)``; `bit` must be constrained boolean."""
    return b.add(if_zero, b.mul(bit, b.sub(if_one, if_zero)))


def product_of_differences(b: CircuitBuilder, wire: Wire, values: Sequence[Wire]) -> Wire:
    """``prod_j (w - v_j)``: zero exactly when `wire` equals one of `values`."""
    if not values:
        raise ValueError("set must not be empty")
    acc = b.sub(wire, values[0])
    for v in values[1:]:
        acc = b.mul(acc, b.sub(wire, v))
    return acc


def mimc_permute(b: CircuitBuilder, hasher: MiMC, x: Wire, k: Wire) -> Wire:
    """Gate-level `MiMC.permute`: x^7 as four multiplications per round."""
    for c in hasher.constants:
        t = b.add_const(b.add(x, k), c)
        t2 = b.mul(t, t)
        t4 = b.mul(t2, t2)
        t6 = b.mul(t4, t2)
        x = b.mul(t6, t)
    return b.add(x, k)


def mimc_hash(b: CircuitBuilder, hasher: MiMC, inputs: Sequence[Wire], key: int) -> Wire:
    """Gate-level `MiMC.hash` under a constant domain key."""
    r = b.const(key)
    for x in inputs:
        r = b.add(b.add(r, x), mimc_permute(b, hasher, x, r))
    return r


def merkle_root(
    b: CircuitBuilder,
    hasher: MiMC,
    leaf_hash: Wire,
    siblings: Sequence[Wire],
    bits: Sequence[Wire],
    node_key: int,
) -> Wire:
    """Fold a private sibling path into a root; direction bits are constrained boolean."""
    cur = leaf_hash
    for level, (sibling, bit) in enumerate(zip(siblings, bits)):
        assert_boolean(b, bit, f"path.bit[{level}]")
        left = select(b, bit, cur, sibling)
        right = b.sub(b.add(cur, sibling), left)
        cur = mimc_hash(b, hasher, [left, right], node_key)
    return cur

