"""
Tests for input validation, thread-safety primitives and registry invariants.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from zkaddr.hardening import (
    AtomicCounter,
    CryptoUtils,
    InvariantChecker,
    InvariantViolation,
    ReadWriteLock,
    ThreadSafeDict,
    Validators,
)


class TestValidators:

    def test_did(self):
        assert Validators.validate_did("did:key:z6MkhaXgBZDvotDkL5257faiztiGiC2QtKLGpbnnEGta2doK").is_valid
        assert not Validators.validate_did("did:").is_valid
        assert not Validators.validate_did(42).is_valid

    def test_string_sanitized(self):
        result = Validators.validate_string("  abc\x00 ", "name")
        assert result.sanitized_value == "abc"

    def test_identifier(self):
        assert Validators.validate_identifier("LOCKER-A-042", "locker").is_valid
        assert not Validators.validate_identifier("-leading", "locker").is_valid
        assert not Validators.validate_identifier("a" * 129, "locker").is_valid

    def test_digest(self):
        assert Validators.validate_digest("AB" * 32).sanitized_value == "ab" * 32
        result = Validators.validate_digest("zz" * 32)
        assert not result.is_valid
        assert "hex" in result.reason

    def test_timestamp(self):
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        assert Validators.validate_timestamp("2026-05-01T00:00:00Z", now=now).is_valid
        assert not Validators.validate_timestamp("yesterday", now=now).is_valid

    def test_timestamp_window(self):
        now = datetime(2026, 5, 1, tzinfo=timezone.utc)
        future = now + timedelta(minutes=5)
        old = now - timedelta(hours=1)
        assert not Validators.validate_timestamp(future, allow_future=False, now=now).is_valid
        assert Validators.validate_timestamp(now + timedelta(seconds=30), allow_future=False, now=now).is_valid
        assert not Validators.validate_timestamp(old, max_age_seconds=600, now=now).is_valid


class TestCryptoUtils:

    def test_compare(self):
        assert CryptoUtils.secure_compare(b"a", b"a")
        assert not CryptoUtils.secure_compare_str("a", "b")

    def test_hmac(self):
        mac = CryptoUtils.hmac_sha256_hex(b"key", "data")
        assert mac == CryptoUtils.hmac_sha256_hex(b"key", b"data")
        assert len(mac) == 64
        assert mac != CryptoUtils.hmac_sha256_hex(b"other", "data")

    def test_random(self):
        assert len(CryptoUtils.secure_random_bytes(16)) == 16


class TestConcurrency:

    def test_thread_safe_dict(self):
        d = ThreadSafeDict()
        with d.transaction():
            d["a"] = 1
            d["b"] = 2
        assert sorted(d) == ["a", "b"]
        assert d.pop("a") == 1
        assert d.values_snapshot() == [2]

    def test_atomic_counter(self):
        counter = AtomicCounter()

        def bump():
            for _ in range(500):
                counter.increment()

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert counter.get() == 4000

    def test_readers_share_writer_excludes(self):
        lock = ReadWriteLock()
        inside = []
        log = []

        def reader():
            with lock.read():
                inside.append(1)
                time.sleep(0.05)
                log.append(("read", len(inside)))
                inside.pop()

        def writer():
            with lock.write():
                log.append(("write", len(inside)))

        readers = [threading.Thread(target=reader) for _ in range(3)]
        for t in readers:
            t.start()
        time.sleep(0.01)
        w = threading.Thread(target=writer)
        w.start()
        for t in readers + [w]:
            t.join()
        assert ("write", 0) in log
        assert len(log) == 4


class TestInvariants:

    def test_monotonic(self):
        InvariantChecker.check_monotonic_increase("version", 1, 2)
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_monotonic_increase("version", 2, 2)

    def test_superset(self):
        InvariantChecker.check_superset("entries", ["a"], ["a", "b"])
        with pytest.raises(InvariantViolation) as exc:
            InvariantChecker.check_superset("entries", ["a", "b"], ["b"])
        assert "'a'" in str(exc.value)
