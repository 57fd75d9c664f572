"""
Command Center — Orchestrator

Owns the task queue and the two execution paths:

  Task path (queue-driven, one worker per task):
    create_task → assign_task → execute_task
    plus cancel_task, handoff_task and multi-worker collaborations.

  Batch path (workflow-driven, no task records):
    execute_phase / execute_workflow / execute_parallel_phases resolve
    workflow manifests to live workers and run them. Failures come back
    as failure-shaped results, never as exceptions.

Capacity is only ever changed through WorkerDirectory.acquire_slot /
release_slot. Metrics go to an injected MetricsSink; sink errors are
logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from common.config_loader import OrchestratorSettings
from common.logging import log_context, log_event
from common.metrics import MetricsSink, NullMetricsSink
from orchestration.directory import WorkerDirectory
from orchestration.types import (
    Collaboration,
    CollaborationMode,
    CollaborationRole,
    CollaborationStatus,
    ExecutionContext,
    ExecutionResult,
    InvalidTransitionError,
    NotFoundError,
    Participant,
    PreconditionViolation,
    Task,
    TaskPriority,
    TaskStatus,
)
from orchestration.workers import Worker
from orchestration.workflows import WorkerManifest, WorkflowCatalog

logger = logging.getLogger("cmdctr.orchestrator")

SUCCESS_SCORE = 100
FAILURE_SCORE = 0


class Orchestrator:
    """
    Task lifecycle, collaboration protocols and workflow batch execution.

    Usage:
        directory = WorkerDirectory()
        directory.register(worker)
        orch = Orchestrator(directory, WorkflowCatalog.from_directory())

        task = orch.create_task("research_lead", "obj_1", "org_1", ["investor_research"], ctx)
        if orch.assign_task(task.task_id):
            result = await orch.execute_task(task.task_id)
    """

    def __init__(
        self,
        directory: WorkerDirectory,
        workflows: WorkflowCatalog | None = None,
        sink: MetricsSink | None = None,
        config: dict[str, Any] | None = None,
    ):
        self.directory = directory
        self.workflows = workflows or WorkflowCatalog()
        self.sink = sink or NullMetricsSink()

        settings = OrchestratorSettings.model_validate((config or {}).get("orchestrator") or {})
        self.execution_timeout: float | None = settings.execution_timeout_seconds
        self.task_retention_hours: float | None = settings.task_retention_hours

        self._tasks: dict[str, Task] = {}
        self._queue: list[str] = []
        self._collaborations: dict[str, Collaboration] = {}
        # Task ids whose worker call is in flight
        self._running: set[str] = set()

    # ═══════════════════════════════════════════════════════════════
    # Task Lifecycle
    # ═══════════════════════════════════════════════════════════════

    def create_task(
        self,
        task_type: str,
        object_ref: str,
        organization_id: str,
        required_capabilities: list[str] | set[str],
        context: ExecutionContext,
        priority: TaskPriority | str = TaskPriority.MEDIUM,
        metadata: dict[str, Any] | None = None,
    ) -> Task:
        """Create a pending task and queue it by priority."""
        if self.task_retention_hours:
            self.prune_tasks(self.task_retention_hours)

        task = Task.create(
            task_type=task_type,
            object_ref=object_ref,
            organization_id=organization_id,
            required_capabilities=required_capabilities,
            context=context,
            priority=priority,
            metadata=metadata,
        )
        self._tasks[task.task_id] = task
        self._queue.append(task.task_id)
        # list.sort is stable: FIFO within equal priority
        self._queue.sort(key=lambda tid: -self._tasks[tid].priority.rank)

        self._emit("set_queue_depth", len(self._queue))
        self._emit("record_task_outcome", TaskStatus.PENDING.value)
        logger.info(
            "Created task %s (%s, priority=%s)", task.task_id, task_type, task.priority.value,
            extra={"structured": {"action": "task_created", "task_id": task.task_id,
                                  "organization_id": organization_id}},
        )
        return task

    def assign_task(self, task_id: str) -> Worker | None:
        """
        Assign a pending task to the best-matching worker.

        Returns the worker, or None when nobody is eligible (the task
        stays pending). Raises NotFoundError / InvalidTransitionError.
        """
        task = self.require_task(task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTransitionError(
                f"Task {task_id} is not pending (status={task.status.value})"
            )

        worker = self.directory.find_best_match(
            task.required_capabilities,
            task.organization_id,
            phase_id=task.phase_id,
            workflow_id=task.workflow_id,
        )
        if worker is None:
            logger.warning("No suitable worker found for task %s", task_id)
            return None

        if not self.directory.acquire_slot(worker.worker_id):
            # Capacity taken between match and acquire
            logger.warning("Worker %s filled up before task %s could be assigned",
                           worker.worker_id, task_id)
            return None

        task.transition(TaskStatus.IN_PROGRESS)
        task.assigned_worker_id = worker.worker_id
        worker.current_object_ref = task.object_ref
        self._dequeue(task_id)
        self._emit("set_queue_depth", len(self._queue))

        logger.info("Assigned task %s to worker %s", task_id, worker.name)
        return worker

    async def execute_task(self, task_id: str) -> ExecutionResult:
        """
        Run the assigned worker against the task's context.

        A reported failure (success=False) marks the task failed and is
        returned. A raised exception (including a timeout) marks the task
        failed and is re-raised after bookkeeping.
        """
        task = self.require_task(task_id)
        if task.assigned_worker_id is None:
            raise PreconditionViolation(f"Task {task_id} has no assigned worker")
        if task.status != TaskStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Task {task_id} is not in progress (status={task.status.value})"
            )
        worker = self.directory.get(task.assigned_worker_id)
        if worker is None:
            raise NotFoundError(f"Assigned worker not found: {task.assigned_worker_id}")

        timer = self._emit("start_timer", "task_execution", {
            "task_id": task_id,
            "worker_id": worker.worker_id,
            "worker_name": worker.name,
            "task_type": task.task_type,
        })
        started = time.perf_counter()

        with log_context(task_id=task_id, worker_id=worker.worker_id,
                         organization_id=task.organization_id):
            logger.info("Executing task %s with worker %s", task_id, worker.name)
            self._running.add(task_id)
            try:
                result = await self._invoke(worker, task.context)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error("Task %s execution failed: %s", task_id, error, exc_info=True)
                self._settle(task, worker, success=False, data=None, error=error,
                             timer=timer, started=started)
                raise
            finally:
                self._running.discard(task_id)

            self._settle(task, worker, success=result.success, data=result.data,
                         error=result.error, timer=timer, started=started)
            logger.info("Task %s %s", task_id, task.status.value)
        return result

    def cancel_task(self, task_id: str, reason: str = "") -> Task:
        """
        Cancel a pending or in-progress task, releasing its worker slot.
        Terminal tasks raise InvalidTransitionError.
        """
        task = self.require_task(task_id)
        task.transition(TaskStatus.CANCELLED)
        self._dequeue(task_id)
        if task.assigned_worker_id:
            self.directory.release_slot(task.assigned_worker_id)
        task.metadata["cancel_reason"] = reason
        task.metadata["cancelled_at"] = task.updated_at

        self._emit("set_queue_depth", len(self._queue))
        self._emit("record_task_outcome", TaskStatus.CANCELLED.value)
        log_event(logger, logging.INFO, "task_cancelled", task_id=task_id,
                  reason=reason or "no reason given")
        return task

    def handoff_task(self, task_id: str, target_worker_id: str, reason: str) -> Task:
        """
        Move a task to another worker. Preconditions (checked before any
        state changes): the task is not terminal and not mid-execution, the
        target is not the current worker, has every required capability
        and has a free slot.
        """
        task = self.require_task(task_id)
        if task.is_terminal:
            raise PreconditionViolation(
                f"Task {task_id} is {task.status.value}; cannot hand off"
            )
        if task_id in self._running:
            raise PreconditionViolation(
                f"Task {task_id} is executing on {task.assigned_worker_id}; cannot hand off"
            )
        target = self.directory.get(target_worker_id)
        if target is None:
            raise NotFoundError(f"Target worker not found: {target_worker_id}")
        if target_worker_id == task.assigned_worker_id:
            raise PreconditionViolation(
                f"Task {task_id} is already assigned to {target_worker_id}"
            )
        if not target.has_capabilities(task.required_capabilities):
            missing = sorted(task.required_capabilities - target.capabilities)
            raise PreconditionViolation(
                f"Target worker {target_worker_id} lacks required capabilities: {missing}"
            )
        if not self.directory.acquire_slot(target_worker_id):
            raise PreconditionViolation(f"Target worker {target_worker_id} is at capacity")

        previous = task.assigned_worker_id
        if previous:
            self.directory.release_slot(previous)
        if task.status == TaskStatus.PENDING:
            task.transition(TaskStatus.IN_PROGRESS)
            self._dequeue(task_id)
            self._emit("set_queue_depth", len(self._queue))

        now = time.time()
        task.assigned_worker_id = target_worker_id
        task.updated_at = now
        task.metadata["handoff_reason"] = reason
        task.metadata["handoff_timestamp"] = now
        target.current_object_ref = task.object_ref

        log_event(logger, logging.INFO, "task_handoff", task_id=task_id,
                  from_worker_id=previous, to_worker_id=target_worker_id, reason=reason)
        return task

    def prune_tasks(self, older_than_hours: float, now: float | None = None) -> int:
        """
        Drop terminal tasks (and their collaborations) last updated before
        the cutoff. Returns the number of tasks removed.
        """
        cutoff = (now or time.time()) - older_than_hours * 3600
        stale = [
            tid for tid, t in self._tasks.items()
            if t.is_terminal and t.updated_at < cutoff
        ]
        for tid in stale:
            del self._tasks[tid]
        if stale:
            stale_set = set(stale)
            self._collaborations = {
                cid: c for cid, c in self._collaborations.items()
                if c.task_id not in stale_set
            }
            logger.info("Pruned %d task(s) older than %sh", len(stale), older_than_hours)
        return len(stale)

    # ═══════════════════════════════════════════════════════════════
    # Collaboration
    # ═══════════════════════════════════════════════════════════════

    def create_collaboration(
        self,
        task_id: str,
        primary_worker_id: str,
        participants: list[Participant | dict[str, Any]],
        mode: CollaborationMode | str = CollaborationMode.PARALLEL,
    ) -> Collaboration:
        """Record a collaboration in ``active`` status. Executes nothing."""
        self.require_task(task_id)
        try:
            members = [Participant.coerce(p) for p in participants]
            collab = Collaboration.create(task_id, primary_worker_id, members, mode)
        except (KeyError, ValueError) as e:
            raise PreconditionViolation(f"Invalid collaboration for task {task_id}: {e}") from e

        self._collaborations[collab.collaboration_id] = collab
        logger.info("Created collaboration %s for task %s (%s, %d participant(s))",
                    collab.collaboration_id, task_id, collab.mode.value, len(members))
        return collab

    async def execute_collaboration(self, collaboration_id: str) -> list[ExecutionResult]:
        """
        Run a collaboration by mode. Any exception marks it failed and
        propagates; otherwise it is marked completed.
        """
        collab = self._collaborations.get(collaboration_id)
        if collab is None:
            raise NotFoundError(f"Collaboration not found: {collaboration_id}")
        if collab.status != CollaborationStatus.ACTIVE:
            raise PreconditionViolation(
                f"Collaboration {collaboration_id} is {collab.status.value}"
            )
        if collab.mode == CollaborationMode.HANDOFF:
            raise PreconditionViolation(
                "Handoff collaborations are not executed; use handoff_task to reassign"
            )
        task = self.require_task(collab.task_id)

        logger.info("Executing %s collaboration %s", collab.mode.value, collaboration_id)
        try:
            if collab.mode == CollaborationMode.PARALLEL:
                results = await self._run_parallel(collab, task)
            elif collab.mode == CollaborationMode.SEQUENTIAL:
                results = await self._run_sequential(collab, task)
            else:
                results = await self._run_review(collab, task)
        except Exception as e:
            collab.status = CollaborationStatus.FAILED
            collab.error = str(e) or type(e).__name__
            logger.error("Collaboration %s failed: %s", collaboration_id, collab.error,
                         exc_info=True)
            raise

        collab.status = CollaborationStatus.COMPLETED
        collab.completed_at = time.time()
        logger.info("Collaboration %s completed with %d result(s)", collaboration_id, len(results))
        return results

    async def _run_parallel(self, collab: Collaboration, task: Task) -> list[ExecutionResult]:
        workers = [self._participant_worker(p) for p in collab.participants]
        coros = [
            self._invoke(w, self._participant_context(task, collab, p))
            for w, p in zip(workers, collab.participants)
        ]
        # Barrier: one participant raising does not cancel the others
        settled = await asyncio.gather(*coros, return_exceptions=True)
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
        return list(settled)

    async def _run_sequential(self, collab: Collaboration, task: Task) -> list[ExecutionResult]:
        results: list[ExecutionResult] = []
        for p in collab.participants:
            worker = self._participant_worker(p)
            ctx = self._participant_context(task, collab, p, previous_results=list(results))
            results.append(await self._invoke(worker, ctx))
        return results

    async def _run_review(self, collab: Collaboration, task: Task) -> list[ExecutionResult]:
        primary = self.directory.get(collab.primary_worker_id)
        if primary is None:
            raise NotFoundError(f"Primary worker not found: {collab.primary_worker_id}")
        primary_result = await self._invoke(primary, task.context)
        results = [primary_result]

        for p in collab.participants:
            reviewer = self.directory.get(p.worker_id)
            if reviewer is None:
                logger.warning("Reviewer %s not found; skipping", p.worker_id)
                continue
            ctx = task.context.with_metadata(
                collaboration_role=CollaborationRole.REVIEWER.value,
                primary_worker_id=collab.primary_worker_id,
                contribution=p.contribution,
                primary_result=primary_result,
            )
            results.append(await self._invoke(reviewer, ctx))
        return results

    def _participant_worker(self, participant: Participant) -> Worker:
        worker = self.directory.get(participant.worker_id)
        if worker is None:
            raise NotFoundError(f"Participant worker not found: {participant.worker_id}")
        return worker

    @staticmethod
    def _participant_context(
        task: Task,
        collab: Collaboration,
        participant: Participant,
        **extra: Any,
    ) -> ExecutionContext:
        return task.context.with_metadata(
            collaboration_role=participant.role.value,
            primary_worker_id=collab.primary_worker_id,
            contribution=participant.contribution,
            **extra,
        )

    # ═══════════════════════════════════════════════════════════════
    # Workflow Batch Execution
    # ═══════════════════════════════════════════════════════════════

    async def execute_phase(
        self,
        workflow_id: str,
        phase_id: str,
        organization_id: str,
        execution_type: str = "phase_execution",
    ) -> list[ExecutionResult]:
        """
        Run every manifest declared for a phase, concurrently, each with
        its own context. Returns one result per manifest in declaration
        order. Unknown workflow or an empty phase raises NotFoundError.
        """
        definition = self.workflows.require(workflow_id)
        manifests = definition.phase_workers(phase_id)
        if not manifests:
            raise NotFoundError(f"No workers declared for phase {phase_id} in workflow {workflow_id}")

        logger.info("Executing phase %s of %s (%d manifest(s))", phase_id, workflow_id, len(manifests))
        return list(await asyncio.gather(*(
            self._run_manifest(m, workflow_id, phase_id, organization_id, execution_type)
            for m in manifests
        )))

    async def execute_workflow(
        self,
        workflow_id: str,
        organization_id: str,
    ) -> dict[str, list[ExecutionResult]]:
        """Run every phase in declared order. A failing phase never stops the rest."""
        definition = self.workflows.require(workflow_id)
        results: dict[str, list[ExecutionResult]] = {}
        for phase_id in definition.phases:
            results[phase_id] = await self._phase_as_data(
                workflow_id, phase_id, organization_id, "workflow_execution",
            )
        return results

    async def execute_parallel_phases(
        self,
        workflow_id: str,
        phase_ids: list[str],
        organization_id: str,
    ) -> dict[str, list[ExecutionResult]]:
        """Run the listed phases concurrently and join."""
        self.workflows.require(workflow_id)
        if not phase_ids:
            return {}
        if len(phase_ids) == 1:
            only = phase_ids[0]
            return {only: await self._phase_as_data(
                workflow_id, only, organization_id, "parallel_phase_execution",
            )}

        settled = await asyncio.gather(*(
            self._phase_as_data(workflow_id, pid, organization_id, "parallel_phase_execution")
            for pid in phase_ids
        ))
        return dict(zip(phase_ids, settled))

    async def _phase_as_data(
        self,
        workflow_id: str,
        phase_id: str,
        organization_id: str,
        execution_type: str,
    ) -> list[ExecutionResult]:
        try:
            return await self.execute_phase(workflow_id, phase_id, organization_id, execution_type)
        except Exception as e:
            logger.error("Phase %s of %s failed: %s", phase_id, workflow_id, e)
            return [ExecutionResult.failure(
                str(e) or type(e).__name__,
                workflow_id=workflow_id,
                phase_id=phase_id,
                timestamp=time.time(),
                execution_type=execution_type,
            )]

    async def _run_manifest(
        self,
        manifest: WorkerManifest,
        workflow_id: str,
        phase_id: str,
        organization_id: str,
        execution_type: str,
    ) -> ExecutionResult:
        worker = self.directory.find_live_worker(
            manifest.name, workflow_id, phase_id, organization_id,
        )
        if worker is None:
            message = (f"Worker instance not found for {manifest.name} "
                       f"(id: {manifest.id}) in phase {phase_id}")
            logger.error("%s, workflow %s", message, workflow_id)
            return self._manifest_failure(message, manifest, workflow_id, phase_id, execution_type)

        context = ExecutionContext(
            organization_id=worker.organization_id,
            workflow_id=workflow_id,
            phase_id=phase_id,
            metadata={
                "execution_type": execution_type,
                "manifest_id": manifest.id,
                "manifest_config": dict(manifest.config or {}),
            },
        )
        with log_context(workflow_id=workflow_id, phase_id=phase_id,
                         manifest_id=manifest.id, worker_id=worker.worker_id):
            try:
                return await self._invoke(worker, context)
            except Exception as e:
                logger.error("Worker %s failed in phase %s: %s", manifest.name, phase_id, e,
                             exc_info=True)
                return self._manifest_failure(
                    str(e) or type(e).__name__, manifest, workflow_id, phase_id, execution_type,
                )

    @staticmethod
    def _manifest_failure(
        error: str,
        manifest: WorkerManifest,
        workflow_id: str,
        phase_id: str,
        execution_type: str,
    ) -> ExecutionResult:
        return ExecutionResult.failure(
            error,
            worker_id=manifest.id,
            worker_name=manifest.name,
            workflow_id=workflow_id,
            phase_id=phase_id,
            timestamp=time.time(),
            execution_type=execution_type,
        )

    # ═══════════════════════════════════════════════════════════════
    # Queries
    # ═══════════════════════════════════════════════════════════════

    def get_task(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def tasks_by_status(self, status: TaskStatus | str) -> list[Task]:
        status = TaskStatus(status)
        return [t for t in self._tasks.values() if t.status == status]

    def tasks_by_worker(self, worker_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.assigned_worker_id == worker_id]

    def tasks_by_organization(self, organization_id: str) -> list[Task]:
        return [t for t in self._tasks.values() if t.organization_id == organization_id]

    def queue_snapshot(self) -> list[Task]:
        """Pending tasks, highest priority first, FIFO within a priority."""
        return [self._tasks[tid] for tid in self._queue if tid in self._tasks]

    def get_collaboration(self, collaboration_id: str) -> Collaboration | None:
        return self._collaborations.get(collaboration_id)

    def collaborations_for_task(self, task_id: str) -> list[Collaboration]:
        return [c for c in self._collaborations.values() if c.task_id == task_id]

    def list_collaborations(self) -> list[Collaboration]:
        return list(self._collaborations.values())

    def stats(self) -> dict[str, Any]:
        tasks = list(self._tasks.values())
        by_status: dict[str, int] = {}
        by_priority: dict[str, int] = {}
        for t in tasks:
            by_status[t.status.value] = by_status.get(t.status.value, 0) + 1
            by_priority[t.priority.value] = by_priority.get(t.priority.value, 0) + 1

        durations = [
            (t.completed_at - t.created_at) / 3600
            for t in tasks
            if t.status == TaskStatus.COMPLETED and t.completed_at is not None
        ]
        return {
            "total_tasks": len(tasks),
            "tasks_by_status": by_status,
            "tasks_by_priority": by_priority,
            "active_collaborations": sum(
                1 for c in self._collaborations.values()
                if c.status == CollaborationStatus.ACTIVE
            ),
            "average_task_completion_time_hours": (
                sum(durations) / len(durations) if durations else 0.0
            ),
        }

    # ═══════════════════════════════════════════════════════════════
    # Internals
    # ═══════════════════════════════════════════════════════════════

    async def _invoke(self, worker: Worker, context: ExecutionContext) -> ExecutionResult:
        """Call the worker contract, bounded by the configured deadline."""
        if self.execution_timeout is None:
            return await worker.execute(context)
        try:
            return await asyncio.wait_for(worker.execute(context), self.execution_timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"Worker {worker.name} timed out after {self.execution_timeout}s"
            ) from e

    def _settle(
        self,
        task: Task,
        worker: Worker,
        success: bool,
        data: Any,
        error: str | None,
        timer: str | None,
        started: float,
    ) -> None:
        """Post-execution bookkeeping shared by every outcome."""
        if task.status == TaskStatus.CANCELLED:
            # cancel_task already released the slot while the worker ran
            logger.info("Task %s was cancelled during execution; result discarded", task.task_id)
            self._emit("end_timer", timer, {"success": success, "task_status": "cancelled"})
            return

        task.transition(TaskStatus.COMPLETED if success else TaskStatus.FAILED)
        task.result = data
        task.error = None if success else (error or "Worker reported failure")

        self.directory.release_slot(worker.worker_id)
        self.directory.record_outcome(worker.worker_id, success)
        self.directory.record_performance(worker.worker_id, SUCCESS_SCORE if success else FAILURE_SCORE)

        metric = self._emit("end_timer", timer, {
            "success": success,
            "task_status": task.status.value,
        })
        duration_ms = metric.duration if metric is not None else (time.perf_counter() - started) * 1000
        self._emit("record_task_outcome", task.status.value, duration_ms)
        self._emit("record_worker_outcome", worker.worker_id, worker.name, success, duration_ms)

    def _dequeue(self, task_id: str) -> None:
        try:
            self._queue.remove(task_id)
        except ValueError:
            pass

    def _emit(self, method: str, *args: Any) -> Any:
        """Best-effort sink call. Failures are logged, never raised."""
        try:
            return getattr(self.sink, method)(*args)
        except Exception as e:
            logger.warning("Metrics sink %s failed: %s", method, e)
            return None
