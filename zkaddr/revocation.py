"""
ZKADDR Revocation Registry

Tracks revoked PIDs and links each to its successor after a move.

Lists are versioned and append-only. Each new version carries every entry
of the previous one plus the entries it adds, is signed by the issuing
address provider, and names the digest of the signed list it supersedes.
Entries record the version that added them.

Trust: every lookup verifies the list signature first. A list that is
unsigned, tampered or signed by someone other than the expected issuer
raises `RevocationListUntrusted`; callers fail closed on it ("cannot confirm
not revoked" is never read as "not revoked").

Chains: a successor may not already be revoked when the link is created,
and may not be revoked by the same version that names it. Successor chains
(A -> B in v1, B -> C in v2) are therefore acyclic and `latest_successor`
always terminates.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from zkaddr.core import format_rfc3339, sha256_canonical, utc_now
from zkaddr.errors import RevocationListUntrusted, RevokedPID
from zkaddr.hardening import InvariantChecker, InvariantViolation
from zkaddr.observability import Component, get_logger
from zkaddr.pid import PIDCodec
from zkaddr.vc import SigningKey, attach_proof, base_did, signed_by

logger = get_logger("registry", Component.REVOCATION)

REVOCATION_REASONS = ("moved", "merged", "split", "invalid", "withdrawn", "other")


# =============================================================================
# ENTRIES AND LISTS
# =============================================================================

@dataclass(frozen=True)
class RevocationEntry:
    pid: str
    reason: str
    revoked_at: str
    new_pid: Optional[str] = None
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "pid": self.pid,
            "reason": self.reason,
            "revokedAt": self.revoked_at,
            "version": self.version,
        }
        if self.new_pid is not None:
            out["newPid"] = self.new_pid
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevocationEntry":
        return cls(
            pid=data["pid"],
            reason=data["reason"],
            revoked_at=data["revokedAt"],
            new_pid=data.get("newPid"),
            version=int(data.get("version", 0)),
        )


@dataclass(frozen=True)
class RevocationList:
    """An unsigned revocation list version."""
    list_id: str
    issuer: str
    version: int
    updated_at: str
    entries: Tuple[RevocationEntry, ...]
    previous_digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.list_id,
            "issuer": self.issuer,
            "version": self.version,
            "updatedAt": self.updated_at,
            "entries": [e.to_dict() for e in self.entries],
        }
        if self.previous_digest is not None:
            out["previousDigest"] = self.previous_digest
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RevocationList":
        return cls(
            list_id=data["id"],
            issuer=data["issuer"],
            version=int(data["version"]),
            updated_at=data["updatedAt"],
            entries=tuple(RevocationEntry.from_dict(e) for e in data["entries"]),
            previous_digest=data.get("previousDigest"),
        )

    def entry_for(self, pid: str) -> Optional[RevocationEntry]:
        for entry in self.entries:
            if entry.pid == pid:
                return entry
        return None

    @property
    def revoked_pids(self) -> List[str]:
        return [e.pid for e in self.entries]


@dataclass(frozen=True)
class SignedRevocationList:
    """A revocation list document with its proof block(s)."""
    document: Dict[str, Any]

    @property
    def version(self) -> int:
        return int(self.document.get("version", 0))

    @property
    def issuer(self) -> str:
        return str(self.document.get("issuer", ""))

    @property
    def digest(self) -> str:
        return sha256_canonical(self.document)

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.document)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignedRevocationList":
        return cls(document=copy.deepcopy(data))


# =============================================================================
# OPERATIONS
# =============================================================================

def create_entry(
    pid: str,
    reason: str,
    new_pid: Optional[str] = None,
    revoked_at: Optional[datetime] = None,
    codec: Optional[PIDCodec] = None,
) -> RevocationEntry:
    """Create an entry revoking `pid`, optionally linking a successor.

    Raises:
        MalformedPID: if either PID does not decode
        ValueError: on an unknown reason or a self-link
    """
    codec = codec or PIDCodec()
    codec.decode(pid)
    if new_pid is not None:
        codec.decode(new_pid)
        if new_pid == pid:
            raise ValueError("A PID cannot be its own successor")
    if reason not in REVOCATION_REASONS:
        raise ValueError(f"Unknown revocation reason {reason!r}")
    return RevocationEntry(
        pid=pid,
        reason=reason,
        revoked_at=format_rfc3339(revoked_at or utc_now()),
        new_pid=new_pid,
    )


def create_list(
    issuer: str,
    entries: Iterable[RevocationEntry],
    previous: Optional[SignedRevocationList] = None,
    updated_at: Optional[datetime] = None,
) -> RevocationList:
    """Build the next list version: previous entries plus `entries`.

    Raises:
        InvariantViolation: on issuer change, re-revocation or a chain that
            would revoke a successor in the same version
    """
    issuer = base_did(issuer)
    prior: List[RevocationEntry] = []
    version = 1
    previous_digest = None
    if previous is not None:
        prior_list = RevocationList.from_dict(previous.document)
        if base_did(prior_list.issuer) != issuer:
            raise InvariantViolation("Revocation list issuer cannot change between versions")
        prior = list(prior_list.entries)
        version = prior_list.version + 1
        previous_digest = previous.digest

    revoked = {e.pid for e in prior}
    added: List[RevocationEntry] = []
    for entry in entries:
        if entry.pid in revoked:
            raise InvariantViolation(f"{entry.pid} is already revoked")
        revoked.add(entry.pid)
        added.append(RevocationEntry(
            pid=entry.pid,
            reason=entry.reason,
            revoked_at=entry.revoked_at,
            new_pid=entry.new_pid,
            version=version,
        ))

    for entry in added:
        if entry.new_pid is not None and entry.new_pid in revoked:
            raise InvariantViolation(f"Successor {entry.new_pid} of {entry.pid} is revoked")

    return RevocationList(
        list_id=f"urn:uuid:{uuid.uuid4()}",
        issuer=issuer,
        version=version,
        updated_at=format_rfc3339(updated_at or utc_now()),
        entries=tuple(prior + added),
        previous_digest=previous_digest,
    )


def sign(revocation_list: RevocationList, key: SigningKey) -> SignedRevocationList:
    """Sign a list with the issuer's key."""
    if key.did != base_did(revocation_list.issuer):
        raise ValueError("Signing key does not belong to the list issuer")
    document = attach_proof(revocation_list.to_dict(), key, created=revocation_list.updated_at)
    return SignedRevocationList(document=document)


def verify_list(signed_list: Any, issuer: Optional[str] = None) -> RevocationList:
    """Verify shape and signature; return the trusted list.

    Raises:
        RevocationListUntrusted: when anything about the list cannot be trusted
    """
    from zkaddr.schema import validate_document

    document = signed_list.document if isinstance(signed_list, SignedRevocationList) else signed_list
    if not isinstance(document, dict):
        raise RevocationListUntrusted("Revocation list must be an object")
    if "proof" not in document:
        raise RevocationListUntrusted("Revocation list is unsigned")
    errors = validate_document(document, "revocation-list")
    if errors:
        raise RevocationListUntrusted("Revocation list does not match schema", errors=errors[:5])
    list_issuer = base_did(document["issuer"])
    if issuer is not None and base_did(issuer) != list_issuer:
        raise RevocationListUntrusted("Revocation list issued by an unexpected party", issuer=list_issuer)
    if not signed_by(document, list_issuer):
        raise RevocationListUntrusted("Revocation list signature does not verify", issuer=list_issuer)
    return RevocationList.from_dict(document)


def is_revoked(pid: str, signed_list: Any, issuer: Optional[str] = None) -> bool:
    return verify_list(signed_list, issuer).entry_for(pid) is not None


def get_successor(pid: str, signed_list: Any, issuer: Optional[str] = None) -> Optional[str]:
    entry = verify_list(signed_list, issuer).entry_for(pid)
    return entry.new_pid if entry is not None else None


def latest_successor(pid: str, signed_list: Any, issuer: Optional[str] = None) -> Optional[str]:
    """Follow successor links to the newest PID; None if `pid` has none."""
    trusted = verify_list(signed_list, issuer)
    current = pid
    seen = {pid}
    while True:
        entry = trusted.entry_for(current)
        if entry is None or entry.new_pid is None:
            break
        if entry.new_pid in seen:
            raise RevocationListUntrusted("Successor chain is cyclic", pid=pid)
        seen.add(entry.new_pid)
        current = entry.new_pid
    return current if current != pid else None


# =============================================================================
# REGISTRY SERVICE
# =============================================================================

class RevocationRegistry:
    """
    Owns the current signed list for one issuer.

    Publishing swaps the whole list in one assignment, so readers observe
    either the previous version or the new one, never a partial list.
    """

    def __init__(self, issuer: str, signing_key: Optional[SigningKey] = None,
                 codec: Optional[PIDCodec] = None):
        self.issuer = base_did(issuer)
        if signing_key is not None and signing_key.did != self.issuer:
            raise ValueError("Signing key does not belong to the registry issuer")
        self._signing_key = signing_key
        self._codec = codec or PIDCodec()
        self._current: Optional[SignedRevocationList] = None
        self._write_lock = threading.Lock()

    def current(self) -> Optional[SignedRevocationList]:
        return self._current

    @property
    def version(self) -> int:
        current = self._current
        return current.version if current is not None else 0

    def publish(self, signed_list: SignedRevocationList) -> None:
        """Atomically replace the current list with a newer signed version.

        Raises:
            RevocationListUntrusted: if the list does not verify
            InvariantViolation: if the version does not increase or entries were dropped
        """
        with self._write_lock:
            self._publish_locked(signed_list)

    def _publish_locked(self, signed_list: SignedRevocationList) -> None:
        signed_list = SignedRevocationList.from_dict(signed_list.document)
        trusted = verify_list(signed_list, self.issuer)
        current = self._current
        if current is not None:
            previous = RevocationList.from_dict(current.document)
            InvariantChecker.check_monotonic_increase("version", previous.version, trusted.version)
            InvariantChecker.check_superset("entries", previous.revoked_pids, trusted.revoked_pids)
            for entry in previous.entries:
                if trusted.entry_for(entry.pid) != entry:
                    raise InvariantViolation(f"Entry for {entry.pid} was modified")
        self._current = signed_list
        logger.info(
            "Revocation list published",
            operation="publish",
            version=trusted.version,
            entries=len(trusted.entries),
        )

    def revoke(
        self,
        pid: str,
        reason: str = "moved",
        new_pid: Optional[str] = None,
    ) -> SignedRevocationList:
        """Revoke one PID: create, sign and publish the next version."""
        return self.revoke_many([create_entry(pid, reason, new_pid, codec=self._codec)])

    def revoke_many(self, entries: Iterable[RevocationEntry]) -> SignedRevocationList:
        if self._signing_key is None:
            raise RuntimeError("Registry has no signing key")
        with self._write_lock:
            next_list = create_list(self.issuer, entries, previous=self._current)
            signed = sign(next_list, self._signing_key)
            self._publish_locked(signed)
        return signed

    def _trusted(self) -> Optional[RevocationList]:
        current = self._current
        if current is None:
            return None
        return verify_list(current, self.issuer)

    def is_revoked(self, pid: str) -> bool:
        trusted = self._trusted()
        return trusted is not None and trusted.entry_for(pid) is not None

    def get_successor(self, pid: str) -> Optional[str]:
        trusted = self._trusted()
        if trusted is None:
            return None
        entry = trusted.entry_for(pid)
        return entry.new_pid if entry is not None else None

    def latest_successor(self, pid: str) -> Optional[str]:
        current = self._current
        if current is None:
            return None
        return latest_successor(pid, current, self.issuer)

    def check_not_revoked(self, pid: str) -> None:
        """Raise `RevokedPID` (with the newest successor) if `pid` is revoked."""
        if self.is_revoked(pid):
            raise RevokedPID(pid, self.latest_successor(pid))
