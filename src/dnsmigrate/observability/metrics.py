"""Metrics collection for phase transitions and collaborator calls."""

from abc import ABC, abstractmethod
from collections import Counter, defaultdict
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class MetricsBackend(ABC):
    """Abstract base class for metrics backends."""

    @abstractmethod
    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        pass

    @abstractmethod
    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        pass


class InMemoryBackend(MetricsBackend):
    """Aggregates counters and timings in memory for reports and logs."""

    def __init__(self) -> None:
        self.counters: Counter[str] = Counter()
        self.timings: dict[str, list[float]] = defaultdict(list)

    def increment(self, name: str, value: int = 1, tags: dict[str, str] | None = None) -> None:
        self.counters[self._format_key(name, tags)] += value

    def timing(self, name: str, value: float, tags: dict[str, str] | None = None) -> None:
        self.timings[self._format_key(name, tags)].append(value)

    def _format_key(self, name: str, tags: dict[str, str] | None) -> str:
        if not tags:
            return name
        tag_str = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}[{tag_str}]"

    def get_summary(self) -> dict[str, Any]:
        summary: dict[str, Any] = {"counters": dict(self.counters), "timings": {}}
        for name, values in self.timings.items():
            if values:
                summary["timings"][name] = {
                    "count": len(values),
                    "avg": sum(values) / len(values),
                    "max": max(values),
                }
        return summary


class MetricsCollector:
    """Central collector for orchestrator metrics."""

    def __init__(self, backend: MetricsBackend | None = None) -> None:
        self.backend = backend or InMemoryBackend()

    def count_phase(self, phase: str, status: str) -> None:
        """Record a phase transition outcome (committed, failed, noop, cancelled)."""
        self.backend.increment("phase_transition_total", tags={"phase": phase, "status": status})

    def count_call(self, operation: str, status: str) -> None:
        """Record a collaborator call outcome (ok, transient, rejected, timeout)."""
        self.backend.increment(
            "collaborator_call_total", tags={"operation": operation, "status": status}
        )

    def count_probe(self, direction: str, status: str) -> None:
        self.backend.increment("link_probe_total", tags={"status": status})
        logger.debug("Probe recorded", direction=direction, status=status)

    def record_latency(self, operation: str, duration_ms: float) -> None:
        self.backend.timing("collaborator_call_ms", duration_ms, tags={"operation": operation})

    def get_summary(self) -> dict[str, Any]:
        if isinstance(self.backend, InMemoryBackend):
            return self.backend.get_summary()
        return {}


_GLOBAL_COLLECTOR: MetricsCollector | None = None


def get_global_collector() -> MetricsCollector:
    """Get or create the global metrics collector."""
    global _GLOBAL_COLLECTOR
    if _GLOBAL_COLLECTOR is None:
        _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR


def reset_global_collector() -> MetricsCollector:
    """Replace the global collector with a fresh one."""
    global _GLOBAL_COLLECTOR
    _GLOBAL_COLLECTOR = MetricsCollector()
    return _GLOBAL_COLLECTOR
