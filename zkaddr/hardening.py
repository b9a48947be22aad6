"""
ZKADDR Validation and Hardening Module

Validation, cryptographic comparison and thread-safety utilities used by the
protocol services. It addresses:

1. Input validation with sanitization
2. Constant-time comparison of digests, tags and tokens
3. Thread-safety primitives (including the single-writer/multi-reader lock
   guarding Merkle trees)
4. Registry invariant enforcement

Security Model:
    - All inputs are untrusted until validated
    - All secret-dependent comparisons are constant time
    - All registry mutations happen under a writer lock

Copyright (c) 2026 Momentum. All rights reserved.
Contact: engineering@momentum.inc
"""

from __future__ import annotations

import hashlib
import hmac
import re
import secrets
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, TypeVar, Union

from zkaddr.core import parse_rfc3339


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class InvariantViolation(Exception):
    """Registry invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    @property
    def reason(self) -> Optional[str]:
        if self.is_valid or not self.errors:
            return None
        return "; ".join(str(e) for e in self.errors)

    @classmethod
    def success(cls, sanitized_value: Any = None) -> 'ValidationResult':
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> 'ValidationResult':
        return cls(is_valid=False, errors=errors)


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators."""

    DID_PATTERN = re.compile(r'^did:[a-z0-9]+:[a-zA-Z0-9._:%-]+$')
    HEX64_PATTERN = re.compile(r'^[a-f0-9]{64}$')
    IDENTIFIER_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._:-]{0,127}$')

    MAX_STRING_LENGTH = 4096

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 1,
        max_length: Optional[int] = None,
        pattern: Optional[re.Pattern] = None,
    ) -> ValidationResult:
        """Validate a string value."""
        max_length = max_length or cls.MAX_STRING_LENGTH
        errors = []

        if not isinstance(value, str):
            errors.append(ValidationError(field_name, f"Expected string, got {type(value).__name__}", value))
            return ValidationResult.failure(errors)

        # Sanitize: strip whitespace and null bytes
        sanitized = value.strip().replace('\x00', '')

        if len(sanitized) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))

        if len(sanitized) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if pattern and not pattern.match(sanitized):
            errors.append(ValidationError(field_name, "Does not match required pattern", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(sanitized)

    @classmethod
    def validate_did(cls, value: Any, field_name: str = "did") -> ValidationResult:
        """Validate a DID."""
        return cls.validate_string(
            value, field_name,
            min_length=8, max_length=256,
            pattern=cls.DID_PATTERN,
        )

    @classmethod
    def validate_identifier(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate an opaque identifier (locker, facility, policy, requester)."""
        return cls.validate_string(
            value, field_name,
            min_length=1, max_length=128,
            pattern=cls.IDENTIFIER_PATTERN,
        )

    @classmethod
    def validate_digest(cls, value: Any, field_name: str = "digest") -> ValidationResult:
        """Validate a 32-byte value encoded as 64 lowercase hex characters."""
        result = cls.validate_string(value, field_name, min_length=64, max_length=64)
        if not result.is_valid:
            return result

        lowered = result.sanitized_value.lower()
        if not cls.HEX64_PATTERN.match(lowered):
            return ValidationResult.failure([
                ValidationError(field_name, "Must be 64 lowercase hex characters", value)
            ])
        return ValidationResult.success(lowered)

    @classmethod
    def validate_timestamp(
        cls,
        value: Any,
        field_name: str = "timestamp",
        allow_future: bool = True,
        max_age_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ValidationResult:
        """Validate an ISO8601 timestamp."""
        if isinstance(value, datetime):
            dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        else:
            dt = parse_rfc3339(value) if isinstance(value, str) else None
            if dt is None:
                return ValidationResult.failure([
                    ValidationError(field_name, "Invalid ISO8601 timestamp", value)
                ])

        now = now or datetime.now(timezone.utc)
        errors = []

        if not allow_future and dt > now + timedelta(seconds=60):  # 60s clock skew allowance
            errors.append(ValidationError(field_name, "Timestamp is in the future", value))

        if max_age_seconds is not None and dt < now - timedelta(seconds=max_age_seconds):
            errors.append(ValidationError(field_name, f"Timestamp too old (max {max_age_seconds}s)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(dt)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def secure_compare(a: bytes, b: bytes) -> bool:
        """Constant-time comparison of byte strings."""
        return hmac.compare_digest(a, b)

    @staticmethod
    def secure_compare_str(a: str, b: str) -> bool:
        """Constant-time comparison of strings."""
        return hmac.compare_digest(a.encode(), b.encode())

    @staticmethod
    def secure_random_bytes(n_bytes: int = 32) -> bytes:
        return secrets.token_bytes(n_bytes)

    @staticmethod
    def hmac_sha256_hex(key: bytes, data: Union[str, bytes]) -> str:
        if isinstance(data, str):
            data = data.encode("utf-8")
        return hmac.new(key, data, hashlib.sha256).hexdigest()


# =============================================================================
# THREAD SAFETY
# =============================================================================

T = TypeVar('T')


class ThreadSafeDict(Dict[str, T]):
    """Thread-safe dictionary wrapper."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.RLock()

    def __getitem__(self, key: str) -> T:
        with self._lock:
            return super().__getitem__(key)

    def __setitem__(self, key: str, value: T) -> None:
        with self._lock:
            super().__setitem__(key, value)

    def __delitem__(self, key: str) -> None:
        with self._lock:
            super().__delitem__(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return super().__contains__(key)

    def __iter__(self):
        with self._lock:
            return iter(list(super().keys()))

    def __len__(self):
        with self._lock:
            return super().__len__()

    def get(self, key: str, default: T = None) -> Optional[T]:
        with self._lock:
            return super().get(key, default)

    def pop(self, key: str, *args) -> T:
        with self._lock:
            return super().pop(key, *args)

    def values_snapshot(self) -> List[T]:
        with self._lock:
            return list(super().values())

    @contextmanager
    def transaction(self):
        """Context manager for atomic multi-operation transactions."""
        with self._lock:
            yield self


class AtomicCounter:
    """Thread-safe counter."""

    def __init__(self, initial: int = 0):
        self._value = initial
        self._lock = threading.Lock()

    def increment(self, delta: int = 1) -> int:
        """Atomically increment and return new value."""
        with self._lock:
            self._value += delta
            return self._value

    def get(self) -> int:
        """Get current value."""
        with self._lock:
            return self._value


class ReadWriteLock:
    """
    Single-writer, multiple-reader lock.

    Writers are preferred: once a writer is waiting, new readers block, so a
    steady stream of proofs cannot starve registrations.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# =============================================================================
# REGISTRY INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces registry invariants."""

    @staticmethod
    def check_monotonic_increase(
        field_name: str,
        old_value: int,
        new_value: int,
    ) -> None:
        """Ensure value strictly increases."""
        if new_value <= old_value:
            raise InvariantViolation(
                f"{field_name} must be monotonically increasing: "
                f"cannot go from {old_value} to {new_value}"
            )

    @staticmethod
    def check_superset(
        field_name: str,
        old_items: Iterable[str],
        new_items: Iterable[str],
    ) -> None:
        """Ensure an append-only collection lost nothing."""
        missing = set(old_items) - set(new_items)
        if missing:
            raise InvariantViolation(
                f"{field_name} is append-only; missing {sorted(missing)}"
            )
