"""
ZKADDR Merkle Registry

Append-only Merkle trees over field-element leaves, one per "universe"
(valid delivery PIDs; valid lockers per facility).

Hashing (MiMC over ``Fr`` so nodes are circuit inputs as-is):
- leaf = H_leaf(value)
- node = H_node(left, right)

Odd-width levels duplicate their last node. A one-leaf tree has depth 0 and
its root is the leaf hash. Inserting a leaf recomputes only the ancestors of
the new last leaf, so registration is O(log n).

Sibling paths are ``(sibling, bit)`` pairs from the leaf upward; ``bit = 1``
means the running node is the right child at that level.

Concurrency: each tree sits behind a single-writer/multi-reader lock.
Provers take a `RootSnapshot` together with the matching path in one read
section; verifiers check the snapshot's root against the registry's accepted
root window and get `StaleRoot` once it has rotated out.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from zkaddr.errors import RegistryUnavailable, StaleRoot
from zkaddr.field import MiMC, to_hex
from zkaddr.hardening import ReadWriteLock
from zkaddr.observability import Component, get_logger

logger = get_logger("registry", Component.MERKLE)

PID_UNIVERSE = "pid"


def locker_universe(facility_id: str) -> str:
    return f"locker:{facility_id}"


# =============================================================================
# PATHS AND SNAPSHOTS
# =============================================================================

@dataclass(frozen=True)
class MerklePath:
    """Private witness: siblings and direction bits from leaf to root."""
    leaf_index: int
    siblings: Tuple[int, ...]
    bits: Tuple[int, ...]

    @property
    def depth(self) -> int:
        return len(self.siblings)

    def compute_root(self, leaf_hash: int, hasher: MiMC) -> int:
        cur = leaf_hash
        for sibling, bit in zip(self.siblings, self.bits):
            cur = hasher.node(sibling, cur) if bit else hasher.node(cur, sibling)
        return cur

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf_index": self.leaf_index,
            "path": [
                {"side": "left" if bit else "right", "hash": to_hex(sibling)}
                for sibling, bit in zip(self.siblings, self.bits)
            ],
        }


@dataclass(frozen=True)
class RootSnapshot:
    """A consistent view of one tree: the root a proof is built against."""
    universe: str
    root: int
    size: int
    depth: int
    version: int

    @property
    def root_hex(self) -> str:
        return to_hex(self.root)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "universe": self.universe,
            "root": self.root_hex,
            "size": self.size,
            "depth": self.depth,
            "version": self.version,
        }


# =============================================================================
# TREE
# =============================================================================

class MerkleTree:
    """
    Incremental Merkle tree with duplicate-last padding.

    Not thread-safe on its own; `MerkleRegistry` serializes writers.
    """

    def __init__(self, hasher: Optional[MiMC] = None):
        self.hasher = hasher or MiMC()
        self._levels: List[List[int]] = [[]]
        self._index: Dict[int, int] = {}

    @classmethod
    def build(cls, leaves: Iterable[int], hasher: Optional[MiMC] = None) -> "MerkleTree":
        tree = cls(hasher)
        for leaf in leaves:
            tree.insert(leaf)
        return tree

    @property
    def size(self) -> int:
        return len(self._levels[0])

    @property
    def depth(self) -> int:
        return len(self._levels) - 1

    @property
    def root(self) -> Optional[int]:
        if not self._levels[0]:
            return None
        return self._levels[-1][0]

    def index_of(self, value: int) -> Optional[int]:
        return self._index.get(value)

    def __contains__(self, value: object) -> bool:
        return value in self._index

    def insert(self, value: int) -> int:
        """Append a leaf value; returns its index. Existing values are not re-added."""
        existing = self._index.get(value)
        if existing is not None:
            return existing

        index = self.size
        self._levels[0].append(self.hasher.leaf(value))
        self._index[value] = index

        h = 0
        while len(self._levels[h]) > 1:
            level = self._levels[h]
            parent = (len(level) - 1) // 2
            left = level[2 * parent]
            right = level[2 * parent + 1] if 2 * parent + 1 < len(level) else left
            if h + 1 == len(self._levels):
                self._levels.append([])
            upper = self._levels[h + 1]
            node = self.hasher.node(left, right)
            if parent < len(upper):
                upper[parent] = node
            else:
                upper.append(node)
            h += 1
        return index

    def path_for(self, index: int) -> MerklePath:
        """Sibling path for the leaf at `index`."""
        if not 0 <= index < self.size:
            raise IndexError(f"leaf index {index} out of range")
        siblings: List[int] = []
        bits: List[int] = []
        i = index
        for level in self._levels[:-1]:
            sibling_index = i ^ 1
            siblings.append(level[sibling_index] if sibling_index < len(level) else level[i])
            bits.append(i & 1)
            i //= 2
        return MerklePath(leaf_index=index, siblings=tuple(siblings), bits=tuple(bits))

    def verify(self, value: int, path: MerklePath, root: int) -> bool:
        return path.compute_root(self.hasher.leaf(value), self.hasher) == root


def build_tree(leaves: Sequence[int], hasher: Optional[MiMC] = None) -> Tuple[int, Dict[int, int]]:
    """Build a tree over `leaves`; returns ``(root, value -> index)``."""
    if not leaves:
        raise ValueError("cannot build a tree with no leaves")
    tree = MerkleTree.build(leaves, hasher)
    return tree.root, dict(tree._index)  # type: ignore[return-value]


def path_for(leaves: Sequence[int], index: int, hasher: Optional[MiMC] = None) -> MerklePath:
    """Sibling path for ``leaves[index]`` in the tree built from `leaves`."""
    return MerkleTree.build(leaves, hasher).path_for(index)


# =============================================================================
# REGISTRY SERVICE
# =============================================================================

@dataclass
class _Universe:
    tree: MerkleTree
    lock: ReadWriteLock = field(default_factory=ReadWriteLock)
    version: int = 0
    recent_roots: Deque[int] = field(default_factory=deque)


class MerkleRegistry:
    """
    Owns every universe's tree.

    Writers (registrations) are serialized per universe; readers snapshot
    a root and its path atomically. The last `root_window` roots are
    accepted for verification.
    """

    def __init__(self, hasher: Optional[MiMC] = None, root_window: Optional[int] = None,
                 max_depth: Optional[int] = None):
        from zkaddr.config import get_config

        cfg = get_config().merkle
        self.hasher = hasher or MiMC()
        self.root_window = root_window or cfg.root_window.get()
        self.max_depth = max_depth or cfg.max_depth.get()
        self._universes: Dict[str, _Universe] = {}
        self._lock = threading.Lock()

    def _universe(self, name: str, create: bool = False) -> _Universe:
        with self._lock:
            universe = self._universes.get(name)
            if universe is None:
                if not create:
                    raise RegistryUnavailable(f"Unknown universe {name}", universe=name)
                universe = _Universe(
                    tree=MerkleTree(self.hasher),
                    recent_roots=deque(maxlen=self.root_window),
                )
                self._universes[name] = universe
            return universe

    def universes(self) -> List[str]:
        with self._lock:
            return sorted(self._universes)

    def contains_universe(self, name: str) -> bool:
        with self._lock:
            return name in self._universes

    def insert(self, universe: str, value: int) -> int:
        """Register a leaf value; returns its index."""
        u = self._universe(universe, create=True)
        with u.lock.write():
            if value in u.tree:
                return u.tree.index_of(value)  # type: ignore[return-value]
            if u.tree.size >= 1 << self.max_depth:
                raise RegistryUnavailable(f"Universe {universe} is full", universe=universe)
            index = u.tree.insert(value)
            u.version += 1
            u.recent_roots.append(u.tree.root)
        logger.info(
            "Leaf registered",
            operation="insert",
            universe=universe,
            size=index + 1,
            version=u.version,
        )
        return index

    def insert_many(self, universe: str, values: Iterable[int]) -> List[int]:
        return [self.insert(universe, v) for v in values]

    def snapshot(self, universe: str) -> RootSnapshot:
        u = self._universe(universe)
        with u.lock.read():
            return self._snapshot_locked(universe, u)

    def witness(self, universe: str, value: int) -> Tuple[RootSnapshot, MerklePath]:
        """Root snapshot plus the leaf's path, taken consistently."""
        u = self._universe(universe)
        with u.lock.read():
            index = u.tree.index_of(value)
            if index is None:
                raise LookupError(f"Value is not registered in {universe}")
            return self._snapshot_locked(universe, u), u.tree.path_for(index)

    def contains(self, universe: str, value: int) -> bool:
        try:
            u = self._universe(universe)
        except RegistryUnavailable:
            return False
        with u.lock.read():
            return value in u.tree

    def check_root(self, universe: str, root: int) -> None:
        """Raise `StaleRoot` unless `root` is within the accepted window."""
        u = self._universe(universe)
        with u.lock.read():
            if root not in u.recent_roots:
                current = u.tree.root
                raise StaleRoot(
                    f"Root is not current for {universe}",
                    universe=universe,
                    current_root=to_hex(current) if current is not None else None,
                )

    def is_current(self, snapshot: RootSnapshot) -> bool:
        try:
            self.check_root(snapshot.universe, snapshot.root)
        except StaleRoot:
            return False
        return True

    def _snapshot_locked(self, name: str, u: _Universe) -> RootSnapshot:
        root = u.tree.root
        if root is None:
            raise RegistryUnavailable(f"Universe {name} is empty", universe=name)
        return RootSnapshot(
            universe=name,
            root=root,
            size=u.tree.size,
            depth=u.tree.depth,
            version=u.version,
        )
