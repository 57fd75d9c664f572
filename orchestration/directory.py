"""
Command Center — Worker Directory

Holds live worker instances. Responsibilities:

  1. Registration / removal / lookup
  2. Filtered listing (WorkerFilter, all provided fields ANDed)
  3. Best-match selection: eligibility filter, then weighted ranking
  4. Capacity slots (acquire/release): the only code that mutates
     ``current_count``, guarded by one lock
  5. Performance feedback (running average per worker)

Ranking weights:
    0.40 * average recorded performance
  + 0.30 * availability headroom  (100 * (1 - current/max))
  + 0.20 * success rate
  + 0.10 * recency                (max(0, 100 - 10 * days idle))
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any

from orchestration.capabilities import CapabilityCatalog, CapabilityEntry
from orchestration.types import (
    NotFoundError,
    WorkerFilter,
    WorkerStatus,
)
from orchestration.workers import WORKER_TEMPLATES, Worker, get_worker_templates

logger = logging.getLogger("cmdctr.directory")

WEIGHT_PERFORMANCE = 0.40
WEIGHT_HEADROOM = 0.30
WEIGHT_SUCCESS = 0.20
WEIGHT_RECENCY = 0.10

SECONDS_PER_DAY = 86400.0


@dataclass
class DirectoryEntry:
    """Registry bookkeeping kept alongside each worker."""
    worker: Worker
    registered_at: float
    last_updated: float
    usage_count: int = 0
    average_performance: float = 0.0


@dataclass
class MatchScore:
    """Per-worker score breakdown, kept for audit/debug logging."""
    worker_id: str
    total: float
    features: dict[str, float] = field(default_factory=dict)


class WorkerDirectory:
    """In-memory worker directory with capability-aware matching."""

    def __init__(self, catalog: CapabilityCatalog | None = None):
        self.catalog = catalog or CapabilityCatalog()
        self._entries: dict[str, DirectoryEntry] = {}
        self._lock = threading.RLock()

    # ─── Registration ────────────────────────────────────────────

    def register(self, worker: Worker) -> None:
        """Register (or re-register) a worker. Re-registering keeps its metadata."""
        now = time.time()
        with self._lock:
            existing = self._entries.get(worker.worker_id)
            if existing is not None:
                existing.worker = worker
                existing.last_updated = now
            else:
                self._entries[worker.worker_id] = DirectoryEntry(
                    worker=worker, registered_at=now, last_updated=now,
                )
        logger.info("Registered worker: %s (%s)", worker.name, worker.worker_id)

    def unregister(self, worker_id: str) -> bool:
        with self._lock:
            removed = self._entries.pop(worker_id, None) is not None
        if removed:
            logger.info("Unregistered worker: %s", worker_id)
        else:
            logger.warning("Attempted to unregister non-existent worker: %s", worker_id)
        return removed

    def get(self, worker_id: str) -> Worker | None:
        entry = self._entries.get(worker_id)
        if entry is None:
            logger.warning("Worker not found: %s", worker_id)
            return None
        return entry.worker

    def require(self, worker_id: str) -> Worker:
        worker = self.get(worker_id)
        if worker is None:
            raise NotFoundError(f"Worker not found: {worker_id}")
        return worker

    def entry(self, worker_id: str) -> DirectoryEntry | None:
        return self._entries.get(worker_id)

    def list_all(self) -> list[Worker]:
        with self._lock:
            return [e.worker for e in self._entries.values()]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, worker_id: object) -> bool:
        return worker_id in self._entries

    # ─── Lookup ──────────────────────────────────────────────────

    def list_by_filter(self, flt: WorkerFilter) -> list[Worker]:
        return [w for w in self.list_all() if _matches_filter(w, flt)]

    def find_by_capability(self, capability: str) -> list[Worker]:
        return [w for w in self.list_all() if capability in w.capabilities]

    def find_by_phase(self, phase_id: str) -> list[Worker]:
        return [w for w in self.list_all() if w.phase_id == phase_id]

    def find_by_workflow(self, workflow_id: str) -> list[Worker]:
        return [w for w in self.list_all() if w.workflow_id == workflow_id]

    def find_live_worker(
        self,
        name: str,
        workflow_id: str,
        phase_id: str,
        organization_id: str,
    ) -> Worker | None:
        """
        Resolve a workflow manifest to a registered worker: same declared
        name, same workflow/phase affinity and same organization.
        """
        for w in self.list_all():
            if w.name != name:
                continue
            if w.workflow_id != workflow_id or w.phase_id != phase_id:
                continue
            if w.organization_id != organization_id:
                continue
            return w
        return None

    # ─── Best Match ──────────────────────────────────────────────

    def eligible_workers(
        self,
        required_capabilities: set[str] | list[str],
        organization_id: str,
        phase_id: str | None = None,
        workflow_id: str | None = None,
    ) -> list[Worker]:
        required = set(required_capabilities)
        eligible = []
        for w in self.list_all():
            if w.organization_id != organization_id:
                continue
            if not required <= w.capabilities:
                continue
            if not w.capacity.is_available:
                continue
            if not w.capacity.has_headroom:
                continue
            # Workers without a declared affinity are not excluded
            if phase_id and w.phase_id and w.phase_id != phase_id:
                continue
            if workflow_id and w.workflow_id and w.workflow_id != workflow_id:
                continue
            eligible.append(w)
        return eligible

    def score(self, worker: Worker, now: float | None = None) -> MatchScore:
        now = now or time.time()
        entry = self._entries.get(worker.worker_id)
        avg_perf = entry.average_performance if entry else 0.0
        headroom = worker.capacity.headroom_pct
        success = worker.performance.success_rate
        days_idle = max(0.0, (now - worker.performance.last_activity) / SECONDS_PER_DAY)
        recency = max(0.0, 100.0 - 10.0 * days_idle)
        total = (
            WEIGHT_PERFORMANCE * avg_perf
            + WEIGHT_HEADROOM * headroom
            + WEIGHT_SUCCESS * success
            + WEIGHT_RECENCY * recency
        )
        return MatchScore(
            worker_id=worker.worker_id,
            total=total,
            features={
                "performance": avg_perf,
                "headroom": headroom,
                "success_rate": success,
                "recency": recency,
            },
        )

    def find_best_match(
        self,
        required_capabilities: set[str] | list[str],
        organization_id: str,
        phase_id: str | None = None,
        workflow_id: str | None = None,
    ) -> Worker | None:
        """
        Highest-scoring eligible worker, or None. Ties go to the worker
        registered first (stable sort). Never creates workers.
        """
        with self._lock:
            candidates = self.eligible_workers(
                required_capabilities, organization_id, phase_id, workflow_id,
            )
            if not candidates:
                return None
            now = time.time()
            scored = [(w, self.score(w, now)) for w in candidates]

        scored.sort(key=lambda pair: pair[1].total, reverse=True)
        best, best_score = scored[0]
        logger.debug(
            "Best match %s (score=%.2f) among %d candidates",
            best.worker_id, best_score.total, len(scored),
            extra={"structured": {"action": "match", **best_score.features}},
        )
        return best

    # ─── Capacity Slots ──────────────────────────────────────────

    def acquire_slot(self, worker_id: str) -> bool:
        """
        Take one capacity slot. Atomic: checks headroom and increments in
        one step. Returns False if the worker is full or unknown.
        """
        with self._lock:
            entry = self._entries.get(worker_id)
            if entry is None:
                return False
            cap = entry.worker.capacity
            if not cap.has_headroom:
                return False
            cap.current_count += 1
            entry.worker.updated_at = time.time()
            return True

    def release_slot(self, worker_id: str) -> bool:
        """Return one slot, floored at zero. Unknown ids are a no-op."""
        with self._lock:
            entry = self._entries.get(worker_id)
            if entry is None:
                return False
            cap = entry.worker.capacity
            cap.current_count = max(0, cap.current_count - 1)
            entry.worker.updated_at = time.time()
            return True

    # ─── Status & Performance ────────────────────────────────────

    def update_status(self, worker_id: str, status: WorkerStatus | str) -> None:
        worker = self.require(worker_id)
        worker.update_status(WorkerStatus(status))

    def set_availability(self, worker_id: str, is_available: bool) -> None:
        worker = self.require(worker_id)
        with self._lock:
            worker.capacity.is_available = is_available
            worker.updated_at = time.time()

    def record_outcome(self, worker_id: str, success: bool) -> None:
        """Update completed/failed counters and last activity."""
        with self._lock:
            entry = self._entries.get(worker_id)
            if entry is None:
                logger.warning("Outcome for non-existent worker: %s", worker_id)
                return
            perf = entry.worker.performance
            if success:
                perf.tasks_completed += 1
            else:
                perf.tasks_failed += 1
            perf.last_activity = time.time()

    def record_performance(self, worker_id: str, score: float) -> None:
        """
        Fold a 0-100 score into the worker's running average. Unknown ids
        are logged and ignored.
        """
        with self._lock:
            entry = self._entries.get(worker_id)
            if entry is None:
                logger.warning("Attempted to update performance for non-existent worker: %s", worker_id)
                return
            entry.usage_count += 1
            n = entry.usage_count
            entry.average_performance = (entry.average_performance * (n - 1) + score) / n
            entry.last_updated = time.time()
        logger.info("Updated performance for worker %s: new avg=%.2f", worker_id, entry.average_performance)

    # ─── Templates & Catalog ─────────────────────────────────────

    def instantiate_from_template(
        self,
        template_name: str,
        init_args: dict[str, Any],
    ) -> Worker | None:
        """Construct (but do not register) a built-in worker. Unknown name → None."""
        cls = WORKER_TEMPLATES.get(template_name)
        if cls is None:
            logger.warning("Unknown worker template: %s", template_name)
            return None
        logger.info("Creating %s from template", cls.__name__)
        return cls(**init_args)

    def templates(self) -> list[dict[str, Any]]:
        return get_worker_templates()

    def capabilities(self) -> list[CapabilityEntry]:
        return self.catalog.list_all()

    def capability(self, key: str) -> CapabilityEntry | None:
        return self.catalog.get(key)

    # ─── Stats ───────────────────────────────────────────────────

    def stats(self) -> dict[str, Any]:
        workers = self.list_all()
        by_type: dict[str, int] = {}
        by_status: dict[str, int] = {}
        for w in workers:
            by_type[w.worker_type.value] = by_type.get(w.worker_type.value, 0) + 1
            by_status[w.status.value] = by_status.get(w.status.value, 0) + 1
        total = len(workers)
        return {
            "total_workers": total,
            "active_workers": sum(1 for w in workers if w.status == WorkerStatus.ACTIVE),
            "workers_by_type": by_type,
            "workers_by_status": by_status,
            "average_success_rate": (
                sum(w.performance.success_rate for w in workers) / total if total else 0.0
            ),
        }


def _matches_filter(w: Worker, flt: WorkerFilter) -> bool:
    if w.organization_id != flt.organization_id:
        return False
    if flt.workflow_id and w.workflow_id != flt.workflow_id:
        return False
    if flt.phase_id and w.phase_id != flt.phase_id:
        return False
    if flt.worker_types and w.worker_type not in flt.worker_types:
        return False
    if flt.statuses and w.status not in flt.statuses:
        return False
    if flt.capabilities and not (flt.capabilities & w.capabilities):
        return False
    if flt.is_available is not None and w.capacity.is_available != flt.is_available:
        return False
    if flt.current_object_ref and w.current_object_ref != flt.current_object_ref:
        return False
    if flt.created_before is not None and w.created_at > flt.created_before:
        return False
    if flt.created_after is not None and w.created_at < flt.created_after:
        return False
    return True
