"""
Command Center — Task Orchestration

Selects capable workers for units of work, tracks task lifecycle, runs
multi-worker collaborations and executes configured workflow phases.

Usage:
    from orchestration import Orchestrator, WorkerDirectory, WorkflowCatalog

    directory = WorkerDirectory()
    directory.register(worker)
    orch = Orchestrator(directory, WorkflowCatalog.from_directory())
    task = orch.create_task("research_lead", "obj_1", "org_1", ["investor_research"], ctx)
"""

from orchestration.types import (
    Collaboration,
    CollaborationMode,
    CollaborationRole,
    CollaborationStatus,
    ExecutionContext,
    ExecutionResult,
    InvalidTransitionError,
    NotFoundError,
    OrchestrationError,
    Participant,
    PreconditionViolation,
    Task,
    TaskPriority,
    TaskStatus,
    WorkerFilter,
    WorkerStatus,
    WorkerType,
)
from orchestration.capabilities import CapabilityCatalog, CapabilityEntry
from orchestration.workers import (
    CallableWorker,
    InvestorResearchWorker,
    OutreachWorker,
    Worker,
)
from orchestration.directory import WorkerDirectory
from orchestration.workflows import (
    WorkerManifest,
    WorkflowCatalog,
    WorkflowDefinition,
    validate_workflow,
)
from orchestration.orchestrator import Orchestrator

__all__ = [
    "Orchestrator",
    "WorkerDirectory",
    "CapabilityCatalog",
    "CapabilityEntry",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "WorkerManifest",
    "validate_workflow",
    "Worker",
    "CallableWorker",
    "InvestorResearchWorker",
    "OutreachWorker",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "Collaboration",
    "CollaborationMode",
    "CollaborationRole",
    "CollaborationStatus",
    "Participant",
    "ExecutionContext",
    "ExecutionResult",
    "WorkerFilter",
    "WorkerStatus",
    "WorkerType",
    "OrchestrationError",
    "NotFoundError",
    "PreconditionViolation",
    "InvalidTransitionError",
]
