"""
tributary/metrics.py

Operation and fallback metrics for discovery and distribution.

One DistributionMetrics instance belongs to one engine; it is passed to
the RetryController and the HolderDiscoveryService at construction.

Usage:
    metrics = DistributionMetrics()
    metrics.record_operation("get_largest_accounts", success=True, duration_ms=84.0)
    metrics.record_fallback("collect", "largest_accounts", "transaction_history", "rpc error")

    stats = metrics.get_stats()
"""

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Any, Dict, List, Optional

logger = logging.getLogger("tributary.metrics")

SLOW_OPERATION_MS = 5000


@dataclass
class OperationRecord:
    """Record of a single RPC operation."""
    operation: str
    success: bool
    duration_ms: float
    timestamp: float
    attempts: int = 1
    error: Optional[str] = None


@dataclass
class FallbackRecord:
    """Record of a discovery tier handing over to the next one."""
    operation: str
    from_tier: str
    to_tier: str
    reason: str
    timestamp: float


class DistributionMetrics:
    """
    Collects operation outcomes and fallback events.

    Bounded in memory: old records are dropped once the limits are hit.
    """

    def __init__(self, max_operations: int = 10000, max_fallbacks: int = 1000):
        self._lock = Lock()
        self._operations: List[OperationRecord] = []
        self._fallbacks: List[FallbackRecord] = []
        self._max_operations = max_operations
        self._max_fallbacks = max_fallbacks
        self._start_time = time.time()

    def record_operation(
        self,
        operation: str,
        success: bool,
        duration_ms: float = 0,
        attempts: int = 1,
        error: Optional[str] = None,
    ) -> None:
        """
        Record an operation.

        Args:
            operation: Operation name (get_account, send_transaction, ...)
            success: Whether the operation eventually succeeded
            duration_ms: Total duration including retries
            attempts: Number of attempts made
            error: Last error message if failed
        """
        record = OperationRecord(
            operation=operation,
            success=success,
            duration_ms=duration_ms,
            timestamp=time.time(),
            attempts=attempts,
            error=error,
        )

        with self._lock:
            self._operations.append(record)
            if len(self._operations) > self._max_operations:
                self._operations = self._operations[-self._max_operations // 2:]

        if not success:
            logger.warning(f"Operation failed: {operation} after {attempts} attempts - {error or 'unknown error'}")
        elif duration_ms > SLOW_OPERATION_MS:
            logger.info(f"Slow operation: {operation} took {duration_ms:.0f}ms")

    def record_fallback(
        self,
        operation: str,
        from_tier: str,
        to_tier: str,
        reason: str,
    ) -> None:
        """Record a fallback from one discovery tier to the next."""
        record = FallbackRecord(
            operation=operation,
            from_tier=from_tier,
            to_tier=to_tier,
            reason=reason,
            timestamp=time.time(),
        )

        with self._lock:
            self._fallbacks.append(record)
            if len(self._fallbacks) > self._max_fallbacks:
                self._fallbacks = self._fallbacks[-self._max_fallbacks // 2:]

        logger.info(f"Fallback: {operation} from {from_tier} to {to_tier} - {reason}")

    @property
    def fallbacks(self) -> List[FallbackRecord]:
        with self._lock:
            return list(self._fallbacks)

    def get_stats(self) -> Dict[str, Any]:
        """
        Summarize recorded operations.

        Returns:
            Dict with per-operation totals, success rates, average durations
            and fallback counts
        """
        with self._lock:
            operations = list(self._operations)
            fallbacks = list(self._fallbacks)

        op_stats: Dict[str, Dict[str, Any]] = defaultdict(lambda: {
            "total": 0,
            "success": 0,
            "failure": 0,
            "attempts": 0,
            "avg_duration_ms": 0.0,
        })
        durations: Dict[str, List[float]] = defaultdict(list)

        for op in operations:
            stats = op_stats[op.operation]
            stats["total"] += 1
            stats["success" if op.success else "failure"] += 1
            stats["attempts"] += op.attempts
            if op.duration_ms > 0:
                durations[op.operation].append(op.duration_ms)

        for name, stats in op_stats.items():
            if durations[name]:
                stats["avg_duration_ms"] = sum(durations[name]) / len(durations[name])
            stats["success_rate"] = stats["success"] / stats["total"] * 100

        fallback_counts: Dict[str, int] = defaultdict(int)
        for fb in fallbacks:
            fallback_counts[f"{fb.from_tier}->{fb.to_tier}"] += 1

        return {
            "uptime_seconds": time.time() - self._start_time,
            "operations": dict(op_stats),
            "fallbacks": dict(fallback_counts),
            "fallback_count": len(fallbacks),
        }

    def reset(self) -> None:
        with self._lock:
            self._operations = []
            self._fallbacks = []
            self._start_time = time.time()
