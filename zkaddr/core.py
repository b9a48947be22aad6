"""zkaddr.core

Canonical bytes, digests and timestamps shared by every protocol layer.

Canonicalization is a JCS-like subset (RFC 8785 compatible for documents
without floats):
- keys sorted
- no insignificant whitespace
- UTF-8, non-ASCII preserved
- floats rejected (encode decimals as strings)
- datetimes coerced to RFC3339 `Z` strings

Credential signing input, revocation-list signing input, audit-chain digests
and circuit digests all go through `canonical_json_bytes`, so there is exactly
one byte-level definition in the package.
"""

from __future__ import annotations

import hashlib
import json
import os
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional


def _coerce_json_types(obj: Any) -> Any:
    """Coerce Python objects into strict JSON types."""
    if obj is None:
        return None
    if isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        raise ValueError("Floats are not allowed in canonical JSON. Use strings or integers.")
    if isinstance(obj, (datetime, date)):
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=timezone.utc)
            return obj.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_coerce_json_types(x) for x in obj]
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            out[str(k)] = _coerce_json_types(v)
        return out
    return str(obj)


def canonical_json_bytes(obj: Any) -> bytes:
    """Return canonical JSON bytes for hashing and signing."""
    clean = _coerce_json_types(obj)
    return json.dumps(clean, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha256_bytes(data: bytes) -> str:
    """Return the lowercase hex SHA-256 digest of `data`."""
    return hashlib.sha256(data).hexdigest()


def sha256_canonical(obj: Any) -> str:
    """Digest of the canonical JSON form of `obj`."""
    return sha256_bytes(canonical_json_bytes(obj))


def utc_now() -> datetime:
    """Current UTC time.

    For deterministic builds set `SOURCE_DATE_EPOCH` (seconds since the Unix
    epoch); when unset, uses the wall clock.
    """
    sde = os.environ.get("SOURCE_DATE_EPOCH")
    if sde is not None and str(sde).strip() != "":
        try:
            epoch = int(str(sde).strip(), 10)
        except ValueError as ex:
            raise ValueError("SOURCE_DATE_EPOCH must be an integer (seconds)") from ex
        return datetime.fromtimestamp(epoch, tz=timezone.utc)
    return datetime.now(timezone.utc)


def format_rfc3339(dt: datetime) -> str:
    """Format as RFC3339 with seconds precision and a `Z` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def now_rfc3339() -> str:
    return format_rfc3339(utc_now())


def parse_rfc3339(timestamp: str) -> Optional[datetime]:
    """Parse an ISO8601/RFC3339 timestamp; None when unparseable.

    Timezone-naive strings are taken as UTC so comparisons never mix aware
    and naive datetimes.
    """
    if not isinstance(timestamp, str) or not timestamp.strip():
        return None
    try:
        dt = datetime.fromisoformat(timestamp.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
