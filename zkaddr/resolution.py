"""
ZKADDR Resolution & Access Policy

The only path from a PID to a raw address. A carrier presents a resolution
request; the service checks the request, the caller's access token, the
owner's access policy and the revocation registry, and only then reads the
address store.

Every attempt, granted or not, is written to a tamper-evident, hash-chained
audit log before the response is returned. Raw addresses are never cached
and never logged: each call re-reads policy and store.

Resource patterns match PID segments:

    *               any PID
    JP-13-113-01    exactly that PID
    JP-13-*         JP-13 and every PID below it
    JP-*-113-01     any single segment in the starred position

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from zkaddr.core import format_rfc3339, parse_rfc3339, sha256_canonical, utc_now
from zkaddr.errors import AddressNotFound, PolicyDenied, ProtocolError
from zkaddr.hardening import AtomicCounter, CryptoUtils, ThreadSafeDict, Validators
from zkaddr.observability import Component, get_logger
from zkaddr.pid import SEPARATOR, PIDCodec
from zkaddr.revocation import RevocationRegistry

logger = get_logger("resolution", Component.RESOLUTION)

WILDCARD = "*"


class AccessAction(Enum):
    RESOLVE = "resolve"
    AUDIT_READ = "audit-read"


# =============================================================================
# POLICIES
# =============================================================================

def resource_matches(pattern: str, pid: str) -> bool:
    """Segment-wise match of a PID against a resource pattern."""
    if pattern == WILDCARD:
        return True
    # The whole-log resource '*' is not a PID.
    if pid == WILDCARD:
        return False
    want = pattern.split(SEPARATOR)
    have = pid.split(SEPARATOR)
    if want[-1] == WILDCARD:
        prefix = want[:-1]
        if len(have) < len(prefix):
            return False
        have = have[:len(prefix)]
        want = prefix
    if len(want) != len(have):
        return False
    return all(w == WILDCARD or w == h for w, h in zip(want, have))


@dataclass(frozen=True)
class AccessPolicy:
    """Which principal may perform which action on which PIDs."""
    policy_id: str
    owner: str
    principal: str
    resource_pattern: str
    action: str
    expires_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.policy_id,
            "owner": self.owner,
            "principal": self.principal,
            "resourcePattern": self.resource_pattern,
            "action": self.action,
        }
        if self.expires_at is not None:
            out["expiresAt"] = self.expires_at
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessPolicy":
        return cls(
            policy_id=data["id"],
            owner=data["owner"],
            principal=data["principal"],
            resource_pattern=data["resourcePattern"],
            action=data["action"],
            expires_at=data.get("expiresAt"),
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        expires = parse_rfc3339(self.expires_at)
        # Unparseable expiry counts as expired.
        return expires is None or expires < (now or utc_now())


def validate_policy(
    policy: AccessPolicy,
    principal: str,
    action: str,
    pid: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """True when `policy` grants `principal` the `action` (on `pid`, if given)."""
    if isinstance(action, AccessAction):
        action = action.value
    if policy.principal != WILDCARD and policy.principal != principal:
        return False
    if policy.action != WILDCARD and policy.action != action:
        return False
    if policy.is_expired(now):
        return False
    if pid is not None and not resource_matches(policy.resource_pattern, pid):
        return False
    return True


class PolicyStore:
    """
    Owner-managed access policies.

    Only the owner named on a policy may replace or delete it. The resolution
    service reads policies and never writes them.
    """

    def __init__(self):
        self._policies: ThreadSafeDict[AccessPolicy] = ThreadSafeDict()

    def create(self, policy: AccessPolicy) -> AccessPolicy:
        if not Validators.validate_identifier(policy.policy_id, "id").is_valid:
            raise ValueError(f"Invalid policy id {policy.policy_id!r}")
        for name, value in (("owner", policy.owner), ("principal", policy.principal)):
            if value != WILDCARD and not Validators.validate_did(value, name).is_valid:
                raise ValueError(f"{name} must be a DID or '*'")
        if policy.action != WILDCARD and policy.action not in {a.value for a in AccessAction}:
            raise ValueError(f"Unknown action {policy.action!r}")
        with self._policies.transaction():
            if policy.policy_id in self._policies:
                raise ValueError(f"Policy {policy.policy_id} already exists")
            self._policies[policy.policy_id] = policy
        logger.info("Policy created", operation="create", policy_id=policy.policy_id)
        return policy

    def get(self, policy_id: str) -> Optional[AccessPolicy]:
        return self._policies.get(policy_id)

    def _owned(self, policy_id: str, owner: str) -> AccessPolicy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise KeyError(policy_id)
        if policy.owner != owner:
            raise PolicyDenied("Only the policy owner may change it", policy_id=policy_id)
        return policy

    def replace(self, policy: AccessPolicy, owner: str) -> AccessPolicy:
        with self._policies.transaction():
            current = self._owned(policy.policy_id, owner)
            if policy.owner != current.owner:
                raise PolicyDenied("Policy ownership cannot be transferred", policy_id=policy.policy_id)
            self._policies[policy.policy_id] = policy
        logger.info("Policy replaced", operation="replace", policy_id=policy.policy_id)
        return policy

    def delete(self, policy_id: str, owner: str) -> None:
        with self._policies.transaction():
            self._owned(policy_id, owner)
            del self._policies[policy_id]
        logger.info("Policy deleted", operation="delete", policy_id=policy_id)

    def find(self, principal: str, action: str, pid: str,
             now: Optional[datetime] = None) -> Optional[AccessPolicy]:
        """First policy, by id, that grants the request."""
        for policy in sorted(self._policies.values_snapshot(), key=lambda p: p.policy_id):
            if validate_policy(policy, principal, action, pid, now):
                return policy
        return None

    def __len__(self) -> int:
        return len(self._policies)


# =============================================================================
# ACCESS TOKENS
# =============================================================================

class TokenAuthority:
    """
    HMAC access tokens bound to one principal.

    Format: ``<expiry-epoch>.<nonce>.<hmac>`` with the HMAC taken over
    principal, expiry and nonce.
    """

    def __init__(self, secret: Optional[bytes] = None, ttl_seconds: Optional[int] = None):
        from zkaddr.config import get_config

        self._secret = secret or CryptoUtils.secure_random_bytes(32)
        self.ttl_seconds = ttl_seconds or get_config().resolution.token_ttl_seconds.get()

    def _mac(self, principal: str, expiry: str, nonce: str) -> str:
        return CryptoUtils.hmac_sha256_hex(self._secret, f"{principal}|{expiry}|{nonce}")

    def issue(self, principal: str, now: Optional[datetime] = None) -> str:
        expiry = str(int(((now or utc_now()) + timedelta(seconds=self.ttl_seconds)).timestamp()))
        nonce = CryptoUtils.secure_random_bytes(8).hex()
        return f"{expiry}.{nonce}.{self._mac(principal, expiry, nonce)}"

    def check(self, token: Optional[str], principal: str, now: Optional[datetime] = None) -> None:
        """Raise `PolicyDenied` unless `token` is a live token for `principal`."""
        if not token:
            raise PolicyDenied("Access token required")
        parts = token.split(".")
        if len(parts) != 3 or not parts[0].isdigit():
            raise PolicyDenied("Malformed access token")
        expiry, nonce, mac = parts
        if not CryptoUtils.secure_compare_str(mac, self._mac(principal, expiry, nonce)):
            raise PolicyDenied("Access token is not valid for this principal")
        if int(expiry) < (now or utc_now()).timestamp():
            raise PolicyDenied("Access token has expired")


# =============================================================================
# AUDIT LOG
# =============================================================================

class AuditOutcome(Enum):
    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"


@dataclass
class AuditEntry:
    """One audit record; `digest` chains it to its predecessor."""
    entry_id: str
    timestamp: str
    pid: str
    principal: str
    action: str
    outcome: AuditOutcome
    context: Dict[str, Any] = field(default_factory=dict)
    previous_digest: Optional[str] = None
    digest: str = ""

    def __post_init__(self):
        if not self.digest:
            self.digest = self.compute_digest()

    def compute_digest(self) -> str:
        return sha256_canonical({
            "entry_id": self.entry_id,
            "timestamp": self.timestamp,
            "pid": self.pid,
            "principal": self.principal,
            "action": self.action,
            "outcome": self.outcome.value,
            "context": self.context,
            "previous_digest": self.previous_digest,
        })

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.entry_id,
            "timestamp": self.timestamp,
            "pid": self.pid,
            "principal": self.principal,
            "action": self.action,
            "result": self.outcome.value,
            "context": copy.deepcopy(self.context),
            "previousDigest": self.previous_digest,
            "digest": self.digest,
        }


class AuditLog:
    """Append-only, hash-chained audit log."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()
        self._counter = AtomicCounter(0)

    def append(
        self,
        pid: str,
        principal: str,
        action: str,
        outcome: AuditOutcome,
        context: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        with self._lock:
            entry = AuditEntry(
                entry_id=f"aud-{self._counter.increment():012d}",
                timestamp=format_rfc3339(utc_now()),
                pid=pid,
                principal=principal,
                action=action,
                outcome=outcome,
                context=dict(context or {}),
                previous_digest=self._entries[-1].digest if self._entries else None,
            )
            self._entries.append(entry)
            return entry

    def verify_chain(self) -> Tuple[bool, Optional[int]]:
        """Return ``(valid, first_invalid_index)``."""
        with self._lock:
            previous: Optional[str] = None
            for i, entry in enumerate(self._entries):
                if entry.compute_digest() != entry.digest or entry.previous_digest != previous:
                    return False, i
                previous = entry.digest
            return True, None

    def entries(
        self,
        pid: Optional[str] = None,
        principal: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        with self._lock:
            entries = list(self._entries)
        if pid is not None:
            entries = [e for e in entries if e.pid == pid]
        if principal is not None:
            entries = [e for e in entries if e.principal == principal]
        return entries[-limit:] if limit else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# =============================================================================
# ADDRESS STORE
# =============================================================================

class AddressStore:
    """Raw addresses keyed by PID, held by the address owner's provider."""

    def __init__(self):
        self._addresses: ThreadSafeDict[Dict[str, Any]] = ThreadSafeDict()

    def put(self, pid: str, address: Dict[str, Any]) -> None:
        self._addresses[pid] = copy.deepcopy(address)

    def get(self, pid: str) -> Optional[Dict[str, Any]]:
        address = self._addresses.get(pid)
        return copy.deepcopy(address) if address is not None else None

    def remove(self, pid: str) -> None:
        self._addresses.pop(pid, None)

    def __contains__(self, pid: object) -> bool:
        return pid in self._addresses


# =============================================================================
# REQUESTS AND RESPONSES
# =============================================================================

@dataclass(frozen=True)
class ResolutionRequest:
    pid: str
    requester_id: str
    access_token: Optional[str]
    reason: str
    timestamp: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pid": self.pid,
            "requesterId": self.requester_id,
            "accessToken": self.access_token,
            "reason": self.reason,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionRequest":
        return cls(
            pid=data["pid"],
            requester_id=data["requesterId"],
            access_token=data.get("accessToken"),
            reason=data.get("reason", ""),
            timestamp=data["timestamp"],
        )


@dataclass
class ResolutionResponse:
    success: bool
    timestamp: str
    address: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None
    access_log_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.success, "timestamp": self.timestamp}
        if self.address is not None:
            out["address"] = copy.deepcopy(self.address)
        if self.error is not None:
            out["error"] = dict(self.error)
        if self.access_log_id is not None:
            out["accessLogId"] = self.access_log_id
        return out


# =============================================================================
# SERVICE
# =============================================================================

class ResolutionService:
    """Gatekeeper between carriers and the address store."""

    def __init__(
        self,
        store: AddressStore,
        policies: Optional[PolicyStore] = None,
        tokens: Optional[TokenAuthority] = None,
        revocation: Optional[RevocationRegistry] = None,
        audit: Optional[AuditLog] = None,
        codec: Optional[PIDCodec] = None,
    ):
        self.store = store
        self.policies = policies or PolicyStore()
        self.tokens = tokens
        self.revocation = revocation
        self.audit = audit or AuditLog()
        self.codec = codec or PIDCodec()

    def _check_request(self, request: ResolutionRequest, now: datetime) -> None:
        from zkaddr.config import get_config

        self.codec.decode(request.pid)
        if not Validators.validate_did(request.requester_id, "requesterId").is_valid:
            raise PolicyDenied("Requester must be identified by a DID")
        age = Validators.validate_timestamp(
            request.timestamp,
            allow_future=False,
            max_age_seconds=get_config().resolution.max_request_age_seconds.get(),
            now=now,
        )
        if not age.is_valid:
            raise PolicyDenied(f"Request timestamp rejected: {age.reason}")

    def _authorize(self, principal: str, token: Optional[str], action: AccessAction, pid: str,
                   policy: Optional[AccessPolicy], now: datetime) -> AccessPolicy:
        if self.tokens is not None:
            self.tokens.check(token, principal, now)
        if policy is None:
            policy = self.policies.find(principal, action.value, pid, now)
            if policy is None:
                raise PolicyDenied("No policy grants this request", action=action.value)
        elif not validate_policy(policy, principal, action.value, pid, now):
            raise PolicyDenied("Policy does not grant this request", policy_id=policy.policy_id,
                               action=action.value)
        return policy

    def resolve(self, request: ResolutionRequest, policy: Optional[AccessPolicy] = None,
                now: Optional[datetime] = None) -> ResolutionResponse:
        """Resolve a PID to its address.

        Failures are returned as ``success=False`` with a structured error;
        every call leaves exactly one audit entry.
        """
        now = now or utc_now()
        action = AccessAction.RESOLVE.value
        try:
            self._check_request(request, now)
            granted = self._authorize(request.requester_id, request.access_token,
                                      AccessAction.RESOLVE, request.pid, policy, now)
            if self.revocation is not None:
                self.revocation.check_not_revoked(request.pid)
            address = self.store.get(request.pid)
            if address is None:
                raise AddressNotFound("No address stored for PID", pid=request.pid)
        except ProtocolError as e:
            outcome = AuditOutcome.DENIED if isinstance(e, PolicyDenied) else AuditOutcome.ERROR
            entry = self.audit.append(request.pid, request.requester_id, action, outcome,
                                      {"code": e.code, "reason": request.reason})
            logger.warning(
                "Resolution refused",
                error_code=e.code,
                operation="resolve",
                requester=request.requester_id,
                access_log_id=entry.entry_id,
            )
            return ResolutionResponse(False, format_rfc3339(now), error=e.to_dict(),
                                      access_log_id=entry.entry_id)
        except Exception as e:
            self.audit.append(request.pid, request.requester_id, action, AuditOutcome.ERROR,
                              {"code": type(e).__name__, "reason": request.reason})
            raise

        entry = self.audit.append(request.pid, request.requester_id, action, AuditOutcome.SUCCESS,
                                  {"policyId": granted.policy_id, "reason": request.reason})
        logger.info(
            "PID resolved",
            operation="resolve",
            requester=request.requester_id,
            policy_id=granted.policy_id,
            access_log_id=entry.entry_id,
        )
        return ResolutionResponse(True, format_rfc3339(now), address=address, access_log_id=entry.entry_id)

    def read_audit(
        self,
        principal: str,
        access_token: Optional[str] = None,
        pid: Optional[str] = None,
        policy: Optional[AccessPolicy] = None,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Audit entries for `pid` (or all, under a ``*`` policy); the read is itself audited.

        Raises:
            PolicyDenied: if no policy grants ``audit-read``
        """
        now = now or utc_now()
        resource = pid or WILDCARD
        action = AccessAction.AUDIT_READ.value
        try:
            self._authorize(principal, access_token, AccessAction.AUDIT_READ, resource, policy, now)
        except PolicyDenied as e:
            self.audit.append(resource, principal, action, AuditOutcome.DENIED, {"code": e.code})
            raise
        entries = [e.to_dict() for e in self.audit.entries(pid=pid, limit=limit)]
        self.audit.append(resource, principal, action, AuditOutcome.SUCCESS, {"returned": len(entries)})
        return entries
