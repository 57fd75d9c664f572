"""
Command Center — Observability Sink

The orchestrator writes timing and counter events here and never reads
them back. Two implementations:

  - NullMetricsSink:     drops everything (tests, embedded use)
  - InMemoryMetricsSink: keeps timers, task and worker aggregates in
                         process memory and logs every event

Usage:
    sink = InMemoryMetricsSink()
    handle = sink.start_timer("task_execution", {"task_id": "task_1"})
    metric = sink.end_timer(handle, {"success": True})
    sink.record_task_outcome("completed", metric.duration)
"""

from __future__ import annotations

import abc
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("cmdctr.metrics")


@dataclass
class PerformanceMetric:
    """One completed timer. ``duration`` is in milliseconds."""
    operation: str
    duration: float
    timestamp: float
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "duration": round(self.duration, 3),
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class TaskMetrics:
    total_tasks: int = 0
    tasks_by_status: dict[str, int] = field(default_factory=dict)
    average_completion_time: float = 0.0
    queue_length: int = 0


@dataclass
class WorkerMetrics:
    worker_id: str
    worker_name: str
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_execution_time: float = 0.0
    last_activity: float = 0.0

    @property
    def success_rate(self) -> float:
        """Ratio in [0, 1]; 0.0 before the first outcome."""
        total = self.tasks_completed + self.tasks_failed
        if total == 0:
            return 0.0
        return self.tasks_completed / total


# ═══════════════════════════════════════════════════════════════════
# Sink Interface
# ═══════════════════════════════════════════════════════════════════

class MetricsSink(abc.ABC):
    """Write-only observability interface consumed by the orchestrator."""

    @abc.abstractmethod
    def start_timer(self, operation: str, metadata: dict[str, Any] | None = None) -> str:
        """Start a named timer. Returns an opaque handle."""
        ...

    @abc.abstractmethod
    def end_timer(
        self,
        handle: str,
        extra_metadata: dict[str, Any] | None = None,
    ) -> PerformanceMetric | None:
        """Stop a timer. Returns None for an unknown handle."""
        ...

    @abc.abstractmethod
    def record_task_outcome(self, status: str, duration_ms: float | None = None) -> None:
        ...

    @abc.abstractmethod
    def record_worker_outcome(
        self,
        worker_id: str,
        worker_name: str,
        success: bool,
        duration_ms: float | None = None,
    ) -> None:
        ...

    @abc.abstractmethod
    def set_queue_depth(self, depth: int) -> None:
        ...


class NullMetricsSink(MetricsSink):
    """Sink that records nothing. Timers still measure so callers get durations."""

    def __init__(self):
        self._timers: dict[str, tuple[str, float, dict[str, Any]]] = {}

    def start_timer(self, operation: str, metadata: dict[str, Any] | None = None) -> str:
        handle = f"timer_{uuid.uuid4().hex[:12]}"
        self._timers[handle] = (operation, time.perf_counter(), dict(metadata or {}))
        return handle

    def end_timer(self, handle, extra_metadata=None):
        timer = self._timers.pop(handle, None)
        if timer is None:
            return None
        operation, started, metadata = timer
        return PerformanceMetric(
            operation=operation,
            duration=(time.perf_counter() - started) * 1000,
            timestamp=time.time(),
            metadata={**metadata, **(extra_metadata or {})},
        )

    def record_task_outcome(self, status, duration_ms=None):
        pass

    def record_worker_outcome(self, worker_id, worker_name, success, duration_ms=None):
        pass

    def set_queue_depth(self, depth):
        pass


# ═══════════════════════════════════════════════════════════════════
# In-Memory Sink
# ═══════════════════════════════════════════════════════════════════

class InMemoryMetricsSink(MetricsSink):
    """
    Process-local metrics with a performance report.

    Thread-safe: the orchestrator runs on one event loop, but CLI and
    test harnesses may read reports from other threads.
    """

    def __init__(self, max_history: int = 10_000):
        self._lock = threading.Lock()
        self._timers: dict[str, tuple[str, float, dict[str, Any]]] = {}
        self._history: list[PerformanceMetric] = []
        self._max_history = max_history
        self.task_metrics = TaskMetrics()
        self._workers: dict[str, WorkerMetrics] = {}

    # ── Timers ─────────────────────────────────────────────────────

    def start_timer(self, operation: str, metadata: dict[str, Any] | None = None) -> str:
        handle = f"timer_{uuid.uuid4().hex[:12]}"
        with self._lock:
            self._timers[handle] = (operation, time.perf_counter(), dict(metadata or {}))
        logger.debug("Started timer for %s (%s)", operation, handle)
        return handle

    def end_timer(
        self,
        handle: str,
        extra_metadata: dict[str, Any] | None = None,
    ) -> PerformanceMetric | None:
        with self._lock:
            timer = self._timers.pop(handle, None)
        if timer is None:
            logger.warning("Timer not found: %s", handle)
            return None

        operation, started, metadata = timer
        metric = PerformanceMetric(
            operation=operation,
            duration=(time.perf_counter() - started) * 1000,
            timestamp=time.time(),
            metadata={**metadata, **(extra_metadata or {})},
        )
        with self._lock:
            self._history.append(metric)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history:]

        logger.info(
            "Performance: %s completed in %.2fms", operation, metric.duration,
            extra={"structured": {"action": "timer_end", **metric.to_dict()}},
        )
        return metric

    # ── Counters ───────────────────────────────────────────────────

    def record_task_outcome(self, status: str, duration_ms: float | None = None) -> None:
        with self._lock:
            tm = self.task_metrics
            tm.total_tasks += 1
            tm.tasks_by_status[status] = tm.tasks_by_status.get(status, 0) + 1
            if duration_ms is not None and status == "completed":
                n = tm.tasks_by_status["completed"]
                tm.average_completion_time = (
                    tm.average_completion_time * (n - 1) + duration_ms
                ) / n
        logger.debug("Task metrics updated: status=%s duration_ms=%s", status, duration_ms)

    def record_worker_outcome(
        self,
        worker_id: str,
        worker_name: str,
        success: bool,
        duration_ms: float | None = None,
    ) -> None:
        with self._lock:
            wm = self._workers.get(worker_id)
            if wm is None:
                wm = WorkerMetrics(worker_id=worker_id, worker_name=worker_name)
                self._workers[worker_id] = wm
            if success:
                wm.tasks_completed += 1
            else:
                wm.tasks_failed += 1
            if duration_ms is not None:
                n = wm.tasks_completed + wm.tasks_failed
                wm.average_execution_time = (
                    wm.average_execution_time * (n - 1) + duration_ms
                ) / n
            wm.last_activity = time.time()
        logger.debug("Worker metrics updated: worker=%s success=%s", worker_id, success)

    def set_queue_depth(self, depth: int) -> None:
        with self._lock:
            self.task_metrics.queue_length = depth
        logger.debug("Queue length updated: %d", depth)

    # ── Reads (reporting only; the orchestrator never calls these) ──

    def worker_metrics(self, worker_id: str) -> WorkerMetrics | None:
        with self._lock:
            return self._workers.get(worker_id)

    def performance_report(self, window: int = 100) -> dict[str, Any]:
        """Recent timers, task/worker aggregates and a duration summary."""
        with self._lock:
            recent = list(self._history[-window:])
            workers = list(self._workers.values())
            tm = self.task_metrics
            task_metrics = {
                "total_tasks": tm.total_tasks,
                "tasks_by_status": dict(tm.tasks_by_status),
                "average_completion_time": tm.average_completion_time,
                "queue_length": tm.queue_length,
            }

        total = len(recent)
        slowest = max(recent, key=lambda m: m.duration) if recent else None
        fastest = min(recent, key=lambda m: m.duration) if recent else None
        return {
            "recent_metrics": [m.to_dict() for m in recent],
            "task_metrics": task_metrics,
            "worker_metrics": [
                {
                    "worker_id": w.worker_id,
                    "worker_name": w.worker_name,
                    "tasks_completed": w.tasks_completed,
                    "tasks_failed": w.tasks_failed,
                    "average_execution_time": w.average_execution_time,
                    "success_rate": w.success_rate,
                    "last_activity": w.last_activity,
                }
                for w in workers
            ],
            "summary": {
                "total_operations": total,
                "average_duration": sum(m.duration for m in recent) / total if total else 0.0,
                "slowest_operation": slowest.to_dict() if slowest else None,
                "fastest_operation": fastest.to_dict() if fastest else None,
            },
        }

    def clear_old_metrics(self, older_than_hours: float = 24, now: float | None = None) -> int:
        """Drop timer history older than the cutoff. Returns count removed."""
        cutoff = (now or time.time()) - older_than_hours * 3600
        with self._lock:
            before = len(self._history)
            self._history = [m for m in self._history if m.timestamp > cutoff]
            removed = before - len(self._history)
        logger.debug("Cleared %d metrics older than %sh", removed, older_than_hours)
        return removed


def build_sink(kind: str | None) -> MetricsSink:
    """Build a sink from the ``metrics.sink`` config value."""
    if kind in (None, "", "memory"):
        return InMemoryMetricsSink()
    if kind in ("none", "null"):
        return NullMetricsSink()
    raise ValueError(f"Unknown metrics sink: {kind!r}")
