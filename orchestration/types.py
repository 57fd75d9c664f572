"""
Command Center — Orchestration Type Definitions

Data structures for tasks, collaborations, worker state, execution
contexts/results and the error taxonomy shared by every module.
"""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Any


# ─── Errors ──────────────────────────────────────────────────────────

class OrchestrationError(Exception):
    """Base class for orchestration errors."""


class NotFoundError(OrchestrationError):
    """A task, worker, collaboration or workflow id does not exist."""


class PreconditionViolation(OrchestrationError):
    """The operation is not valid for the current state."""


class InvalidTransitionError(PreconditionViolation):
    """Raised when a task state transition is not allowed."""


# ─── Enumerations ────────────────────────────────────────────────────

class TaskPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.URGENT: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class TaskStatus(str, enum.Enum):
    """Lifecycle states for an orchestration task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Allowed transitions: from_state → set of valid to_states
TASK_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
}

TERMINAL_TASK_STATES = {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}


class WorkerStatus(str, enum.Enum):
    ACTIVE = "active"
    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"
    ERROR = "error"
    MAINTENANCE = "maintenance"


class WorkerType(str, enum.Enum):
    AI = "ai"
    HUMAN = "human"
    HYBRID = "hybrid"


class CollaborationMode(str, enum.Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    REVIEW = "review"
    HANDOFF = "handoff"


class CollaborationRole(str, enum.Enum):
    ASSISTANT = "assistant"
    REVIEWER = "reviewer"
    SPECIALIST = "specialist"
    COORDINATOR = "coordinator"


class CollaborationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# ─── Worker Contract Payloads ────────────────────────────────────────

@dataclass
class ExecutionContext:
    """
    What a worker receives. ``metadata`` is free-form; collaboration
    protocols add their own keys to a copy of it.
    """
    organization_id: str
    workflow_id: str | None = None
    phase_id: str | None = None
    object_ref: str | None = None
    user_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def with_metadata(self, **extra: Any) -> ExecutionContext:
        """Copy of this context with ``extra`` merged into metadata."""
        return ExecutionContext(
            organization_id=self.organization_id,
            workflow_id=self.workflow_id,
            phase_id=self.phase_id,
            object_ref=self.object_ref,
            user_id=self.user_id,
            metadata={**self.metadata, **extra},
        )


@dataclass
class ExecutionResult:
    """What a worker returns. The orchestrator never inspects ``data``."""
    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def failure(error: str, **metadata: Any) -> ExecutionResult:
        return ExecutionResult(success=False, data=None, error=error, metadata=metadata)

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> ExecutionResult:
        return ExecutionResult(
            success=bool(payload.get("success", False)),
            data=payload.get("data"),
            error=payload.get("error"),
            metadata=dict(payload.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "data": self.data,
            "error": self.error,
            "metadata": dict(self.metadata),
        }


# ─── Worker State ────────────────────────────────────────────────────

@dataclass
class WorkerCapacity:
    """Slot capacity. Invariant: 0 <= current_count <= max_concurrent."""
    max_concurrent: int = 1
    current_count: int = 0
    is_available: bool = True

    def __post_init__(self):
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")

    @property
    def has_headroom(self) -> bool:
        return self.current_count < self.max_concurrent

    @property
    def headroom_pct(self) -> float:
        return 100.0 * (1 - self.current_count / self.max_concurrent)


@dataclass
class WorkerPerformance:
    tasks_completed: int = 0
    tasks_failed: int = 0
    last_activity: float = 0.0

    @property
    def success_rate(self) -> float:
        """Percentage in [0, 100]; 0.0 before the first outcome."""
        total = self.tasks_completed + self.tasks_failed
        if total == 0:
            return 0.0
        return self.tasks_completed / total * 100


@dataclass
class WorkerFilter:
    """
    Directory lookup filter. ``organization_id`` is required; every other
    field is optional and all provided fields are ANDed. ``capabilities``
    matches when the worker has ANY of the listed names.
    """
    organization_id: str
    workflow_id: str | None = None
    phase_id: str | None = None
    worker_types: set[WorkerType] | None = None
    statuses: set[WorkerStatus] | None = None
    capabilities: set[str] | None = None
    is_available: bool | None = None
    current_object_ref: str | None = None
    created_before: float | None = None
    created_after: float | None = None

    def __post_init__(self):
        # Accept any iterable (lists from JSON or query params) and raw enum values
        if self.worker_types is not None:
            self.worker_types = {WorkerType(t) for t in self.worker_types}
        if self.statuses is not None:
            self.statuses = {WorkerStatus(s) for s in self.statuses}
        if self.capabilities is not None:
            self.capabilities = set(self.capabilities)


# ─── Tasks ───────────────────────────────────────────────────────────

@dataclass
class Task:
    """
    A queued unit of work. At most one worker is assigned at a time;
    handoff transfers the assignment.
    """
    task_id: str
    task_type: str
    object_ref: str
    organization_id: str
    required_capabilities: set[str]
    context: ExecutionContext
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.PENDING

    workflow_id: str | None = None
    phase_id: str | None = None
    assigned_worker_id: str | None = None

    created_at: float = 0.0
    updated_at: float = 0.0
    completed_at: float | None = None

    result: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def create(
        task_type: str,
        object_ref: str,
        organization_id: str,
        required_capabilities: list[str] | set[str],
        context: ExecutionContext,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        now = time.time()
        return Task(
            task_id=f"task_{uuid.uuid4().hex[:12]}",
            task_type=task_type,
            object_ref=object_ref,
            organization_id=organization_id,
            required_capabilities=set(required_capabilities),
            context=context,
            priority=TaskPriority(priority),
            workflow_id=context.workflow_id,
            phase_id=context.phase_id,
            created_at=now,
            updated_at=now,
            metadata=dict(metadata or {}),
        )

    def transition(self, to: TaskStatus, now: float | None = None) -> None:
        """
        Enforce the task state machine.
        Raises InvalidTransitionError if the transition is not allowed.
        """
        now = now or time.time()
        allowed = TASK_TRANSITIONS.get(self.status, set())
        if to not in allowed:
            raise InvalidTransitionError(
                f"Task {self.task_id}: "
                f"{self.status.value} → {to.value} is not allowed. "
                f"Valid transitions: {sorted(s.value for s in allowed)}"
            )
        self.status = to
        self.updated_at = now
        if to == TaskStatus.COMPLETED:
            self.completed_at = now

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATES


# ─── Collaborations ──────────────────────────────────────────────────

@dataclass
class Participant:
    worker_id: str
    role: CollaborationRole = CollaborationRole.ASSISTANT
    contribution: str = ""

    @staticmethod
    def coerce(value: Participant | dict[str, Any]) -> Participant:
        if isinstance(value, Participant):
            return value
        return Participant(
            worker_id=value["worker_id"],
            role=CollaborationRole(value.get("role", CollaborationRole.ASSISTANT)),
            contribution=value.get("contribution", ""),
        )


@dataclass
class Collaboration:
    """
    A multi-worker execution episode for one task. Holds no capacity of
    its own; slots belong to task assignment.
    """
    collaboration_id: str
    task_id: str
    primary_worker_id: str
    participants: list[Participant]
    mode: CollaborationMode = CollaborationMode.PARALLEL
    status: CollaborationStatus = CollaborationStatus.ACTIVE
    created_at: float = 0.0
    completed_at: float | None = None
    error: str | None = None

    @staticmethod
    def create(
        task_id: str,
        primary_worker_id: str,
        participants: list[Participant],
        mode: CollaborationMode | str = CollaborationMode.PARALLEL,
    ) -> Collaboration:
        return Collaboration(
            collaboration_id=f"collab_{uuid.uuid4().hex[:12]}",
            task_id=task_id,
            primary_worker_id=primary_worker_id,
            participants=list(participants),
            mode=CollaborationMode(mode),
            created_at=time.time(),
        )
