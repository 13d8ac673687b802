"""Lightweight observability metrics for the chat command flow.

In-process only; each worker process keeps its own counters.
"""

import os
import threading
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricsCollector:
    """Thread-safe in-memory metrics collector."""

    # Counters keyed by intent tag ("delegate" for unmatched text)
    intent_counts: dict[str, int] = field(default_factory=dict)

    # Counters for reply statuses (ok, info, needs_confirmation, not_found, error)
    status_counts: dict[str, int] = field(default_factory=dict)

    # Counters for resolution tiers reached by executed commands
    resolution_tiers: dict[str, int] = field(default_factory=dict)

    # Counters for delegate failure categories
    delegate_errors: dict[str, int] = field(default_factory=dict)

    # Counters for confirmation replies (confirmed, cancelled, expired)
    confirm_outcomes: dict[str, int] = field(default_factory=dict)

    # Latency samples per submission (in milliseconds)
    command_latencies: list[float] = field(default_factory=list)

    _lock: threading.Lock = field(default_factory=threading.Lock)

    @staticmethod
    def _bump(counter: dict[str, int], key: str) -> None:
        counter[key] = counter.get(key, 0) + 1

    def record_command(self, intent_name: str, status: str, latency_ms: float) -> None:
        """Record one submission.

        Args:
            intent_name: Intent tag, or "delegate"
            status: Reply status
            latency_ms: Latency in milliseconds
        """
        with self._lock:
            self._bump(self.intent_counts, intent_name)
            self._bump(self.status_counts, status)
            self.command_latencies.append(latency_ms)

    def record_resolution(self, tier: str) -> None:
        with self._lock:
            self._bump(self.resolution_tiers, tier)

    def record_delegate_error(self, kind: str) -> None:
        with self._lock:
            self._bump(self.delegate_errors, kind)

    def record_confirmation(self, outcome: str) -> None:
        with self._lock:
            self._bump(self.confirm_outcomes, outcome)

    def _calculate_percentile(self, sorted_values: list[float], percentile: float) -> float | None:
        """Calculate a percentile (0.0 to 1.0) from ascending values."""
        if not sorted_values:
            return None

        n = len(sorted_values)
        idx = int(n * percentile)
        return sorted_values[min(idx, n - 1)]

    def get_snapshot(self) -> dict[str, Any]:
        """Get a snapshot of current metrics, including latency percentiles."""
        with self._lock:
            sorted_latencies = sorted(self.command_latencies)
            return {
                "intent_counts": dict(self.intent_counts),
                "status_counts": dict(self.status_counts),
                "resolution_tiers": dict(self.resolution_tiers),
                "delegate_errors": dict(self.delegate_errors),
                "confirm_outcomes": dict(self.confirm_outcomes),
                "command_latency_ms": {
                    "p50": self._calculate_percentile(sorted_latencies, 0.5),
                    "p95": self._calculate_percentile(sorted_latencies, 0.95),
                    "count": len(sorted_latencies),
                },
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self.intent_counts.clear()
            self.status_counts.clear()
            self.resolution_tiers.clear()
            self.delegate_errors.clear()
            self.confirm_outcomes.clear()
            self.command_latencies.clear()


_metrics_collector: MetricsCollector | None = None
_metrics_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get or create the global metrics collector instance."""
    global _metrics_collector
    with _metrics_lock:
        if _metrics_collector is None:
            _metrics_collector = MetricsCollector()
        return _metrics_collector


def is_metrics_enabled() -> bool:
    """True if TASKCHAT_ENABLE_METRICS is set to true/1/yes."""
    return os.getenv("TASKCHAT_ENABLE_METRICS", "false").lower() in ("true", "1", "yes")
