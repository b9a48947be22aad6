"""
ZKADDR Proof Worker Pool

Proof generation is CPU-bound and stateless per call, so it runs on a pool
sized to the available cores. A call that exceeds the deployment timeout
fails with the retryable `ProofTimeout`; proving has no side effects, so
nothing needs rolling back.

Process pools need picklable callables (module-level functions and plain
data). The thread executor exists for environments where forking is not
available and for tests.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import concurrent.futures
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from zkaddr.errors import ProofTimeout
from zkaddr.observability import Component, get_logger

logger = get_logger("pool", Component.WORKERS)

T = TypeVar("T")


@dataclass
class WorkerMetrics:
    """Pool metrics."""
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    timed_out_calls: int = 0
    total_duration_seconds: float = 0.0


class ProofWorkerPool:
    """
    Bounded executor for CPU-bound proof work.

    Example:
        with ProofWorkerPool() as pool:
            blob = pool.run(prove_blob, circuit, witness, publics, reps)
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        executor: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ):
        from zkaddr.config import get_config

        cfg = get_config().proof
        self.workers = workers or cfg.workers.get() or os.cpu_count() or 1
        self.kind = executor or cfg.executor.get()
        if self.kind not in ("process", "thread"):
            raise ValueError(f"Unknown executor kind {self.kind!r}")
        self.timeout_seconds = timeout_seconds or cfg.timeout_seconds.get()
        self._executor: Optional[concurrent.futures.Executor] = None
        self._lock = threading.Lock()
        self._metrics = WorkerMetrics()

    @property
    def metrics(self) -> WorkerMetrics:
        with self._lock:
            return WorkerMetrics(**vars(self._metrics))

    def _get_executor(self) -> concurrent.futures.Executor:
        with self._lock:
            if self._executor is None:
                if self.kind == "process":
                    self._executor = concurrent.futures.ProcessPoolExecutor(max_workers=self.workers)
                else:
                    self._executor = concurrent.futures.ThreadPoolExecutor(
                        max_workers=self.workers,
                        thread_name_prefix="zkaddr-prover",
                    )
                logger.debug("Worker pool started", operation="start", kind=self.kind, workers=self.workers)
            return self._executor

    def run(self, func: Callable[..., T], *args: Any, timeout: Optional[float] = None) -> T:
        """Run `func(*args)` on the pool and wait for it.

        Raises:
            ProofTimeout: if the call does not finish within the timeout
        """
        limit = timeout or self.timeout_seconds
        start = time.monotonic()
        future = self._get_executor().submit(func, *args)
        try:
            result = future.result(timeout=limit)
        except concurrent.futures.TimeoutError:
            future.cancel()
            with self._lock:
                self._metrics.total_calls += 1
                self._metrics.timed_out_calls += 1
            logger.warning(
                "Proof task timed out",
                error_code=ProofTimeout.code,
                operation="run",
                timeout_seconds=limit,
            )
            raise ProofTimeout(f"Proof generation exceeded {limit}s", timeout_seconds=limit)
        except Exception:
            with self._lock:
                self._metrics.total_calls += 1
                self._metrics.failed_calls += 1
            raise
        with self._lock:
            self._metrics.total_calls += 1
            self._metrics.successful_calls += 1
            self._metrics.total_duration_seconds += time.monotonic() - start
        return result

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "ProofWorkerPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()
