"""
Command Center — Worker Contract

A worker is anything that accepts an ExecutionContext and asynchronously
produces an ExecutionResult (or raises). The directory tracks its
capacity, capabilities and performance; the orchestrator never looks
inside ``execute``.

Built-in templates (instantiated by name through the directory):
  - investor_research → InvestorResearchWorker
  - ai_outreach       → OutreachWorker

Both produce simulated business output; real integrations replace them.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import random
import time
import uuid
from typing import Any, Awaitable, Callable

from orchestration.types import (
    ExecutionContext,
    ExecutionResult,
    WorkerCapacity,
    WorkerPerformance,
    WorkerStatus,
    WorkerType,
)

logger = logging.getLogger("cmdctr.workers")


class Worker(abc.ABC):
    """
    Base class for every worker. Subclasses implement ``execute``.

    State mutated by the directory/orchestrator lives on ``capacity``,
    ``performance``, ``status`` and ``current_object_ref``.
    """

    def __init__(
        self,
        name: str,
        organization_id: str,
        capabilities: list[str] | set[str] | None = None,
        worker_id: str | None = None,
        description: str = "",
        workflow_id: str | None = None,
        phase_id: str | None = None,
        worker_type: WorkerType | str = WorkerType.AI,
        status: WorkerStatus | str = WorkerStatus.ACTIVE,
        max_concurrent: int = 1,
        is_available: bool = True,
        config: dict[str, Any] | None = None,
    ):
        now = time.time()
        self.worker_id = worker_id or f"wrk_{uuid.uuid4().hex[:12]}"
        self.name = name
        self.description = description
        self.organization_id = organization_id
        self.workflow_id = workflow_id
        self.phase_id = phase_id
        self.worker_type = WorkerType(worker_type)
        self.status = WorkerStatus(status)
        self.capabilities: set[str] = set(capabilities or ())
        self.capacity = WorkerCapacity(max_concurrent=max_concurrent, is_available=is_available)
        self.performance = WorkerPerformance(last_activity=now)
        self.current_object_ref: str | None = None
        self.config: dict[str, Any] = dict(config or {})
        self.created_at = now
        self.updated_at = now

    @abc.abstractmethod
    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        ...

    # ── Helpers for subclasses ─────────────────────────────────────

    def has_capabilities(self, required: set[str] | list[str]) -> bool:
        """True if this worker has ALL of ``required``."""
        return set(required) <= self.capabilities

    def update_status(self, status: WorkerStatus, message: str = "") -> None:
        self.status = status
        self.updated_at = time.time()
        logger.debug("Worker %s status → %s %s", self.name, status.value, message)

    def log_activity(self, message: str) -> None:
        self.performance.last_activity = time.time()
        logger.info("%s: %s", self.name, message)

    def validate_context(self, context: ExecutionContext) -> bool:
        if not context.organization_id:
            self.log_activity("Error: missing organization in context")
            return False
        return True

    def create_result(self, data: Any, **metadata: Any) -> ExecutionResult:
        self.update_status(WorkerStatus.ACTIVE)
        return ExecutionResult(
            success=True,
            data=data,
            metadata={
                "worker_id": self.worker_id,
                "worker_name": self.name,
                "timestamp": time.time(),
                **metadata,
            },
        )

    def handle_error(self, error: Exception) -> ExecutionResult:
        logger.error("Worker %s error: %s", self.name, error)
        self.update_status(WorkerStatus.ERROR, str(error))
        return ExecutionResult.failure(
            str(error),
            worker_id=self.worker_id,
            worker_name=self.name,
            timestamp=time.time(),
        )

    def describe(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "name": self.name,
            "organization_id": self.organization_id,
            "workflow_id": self.workflow_id,
            "phase_id": self.phase_id,
            "worker_type": self.worker_type.value,
            "status": self.status.value,
            "capabilities": sorted(self.capabilities),
            "max_concurrent": self.capacity.max_concurrent,
            "current_count": self.capacity.current_count,
            "is_available": self.capacity.is_available,
            "tasks_completed": self.performance.tasks_completed,
            "tasks_failed": self.performance.tasks_failed,
            "success_rate": self.performance.success_rate,
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.worker_id} {self.name!r}>"


ExecuteFn = Callable[[ExecutionContext], Awaitable["ExecutionResult | dict[str, Any]"]]


class CallableWorker(Worker):
    """Adapts an async callable to the worker contract."""

    def __init__(self, name: str, organization_id: str, fn: ExecuteFn, **kwargs: Any):
        super().__init__(name, organization_id, **kwargs)
        self._fn = fn

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        result = await self._fn(context)
        if isinstance(result, dict):
            return ExecutionResult.from_dict(result)
        return result


# ═══════════════════════════════════════════════════════════════════
# Built-in Templates
# ═══════════════════════════════════════════════════════════════════

_RESEARCH_FIXTURES: list[dict[str, Any]] = [
    {
        "name": "Sequoia Capital",
        "investor_type": "Venture Capital",
        "stage": "Series A to C",
        "size": "$1M - $50M",
        "portfolio": ["Apple", "Google", "Airbnb", "Stripe"],
        "contact": "partners@sequoiacap.com",
        "confidence": 0.95,
        "next_action": "Schedule intro call with partner",
    },
    {
        "name": "Andreessen Horowitz",
        "investor_type": "Venture Capital",
        "stage": "Seed to Series B",
        "size": "$500K - $25M",
        "portfolio": ["Facebook", "Twitter", "GitHub", "Coinbase"],
        "contact": "invest@a16z.com",
        "confidence": 0.88,
        "next_action": "Send detailed pitch deck",
    },
    {
        "name": "Y Combinator",
        "investor_type": "Accelerator",
        "stage": "Pre-seed to Series A",
        "size": "$125K - $5M",
        "portfolio": ["Dropbox", "Airbnb", "Stripe", "Reddit"],
        "contact": "apply@ycombinator.com",
        "confidence": 0.92,
        "next_action": "Apply for next batch",
    },
]


class InvestorResearchWorker(Worker):
    """Produces investor profiles for the identifying-investors phase."""

    DEFAULT_CAPABILITIES = ("investor_research", "network_analysis", "financial_analysis")

    def __init__(self, name: str = "Investor Research Agent", organization_id: str = "", **kwargs: Any):
        kwargs.setdefault("capabilities", self.DEFAULT_CAPABILITIES)
        kwargs.setdefault("description",
                          "Identifies and researches potential investors that match company criteria")
        super().__init__(name, organization_id, **kwargs)

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        try:
            self.log_activity("Starting investor research")
            if not self.validate_context(context):
                return ExecutionResult.failure("Invalid context: missing organization")

            self.update_status(WorkerStatus.BUSY, "Researching potential investors")
            await asyncio.sleep(float(self.config.get("simulated_latency", 0)))

            profiles = [
                {
                    "object_id": f"co_{uuid.uuid4().hex[:10]}",
                    "title": f"Investor: {inv['name']}",
                    "data": dict(inv),
                }
                for inv in _RESEARCH_FIXTURES
            ]
            self.log_activity(f"Research completed: {len(profiles)} investors identified")
            return self.create_result(
                {
                    "investors": profiles,
                    "next_actions": [
                        "Review investor profiles for fit",
                        "Prioritize outreach list",
                        "Prepare personalized pitch materials",
                    ],
                },
                total_investors_found=len(profiles),
                workflow_id=context.workflow_id,
                phase_id=context.phase_id,
            )
        except Exception as e:
            return self.handle_error(e)


class OutreachWorker(Worker):
    """
    Drafts outreach for investors found earlier. Expects investor profiles
    in ``context.metadata["investors"]`` (or in a prior collaboration
    result); without them the run fails as data.
    """

    DEFAULT_CAPABILITIES = ("personalized_outreach", "email_automation", "follow_up_sequences")
    _CHANNELS = ("email", "linkedin", "phone", "warm_intro")

    def __init__(self, name: str = "AI Outreach Agent", organization_id: str = "", **kwargs: Any):
        kwargs.setdefault("capabilities", self.DEFAULT_CAPABILITIES)
        kwargs.setdefault("description", "Manages personalized outreach campaigns to investors")
        super().__init__(name, organization_id, **kwargs)
        self._rng = random.Random(self.config.get("seed"))

    async def execute(self, context: ExecutionContext) -> ExecutionResult:
        try:
            self.log_activity("Starting outreach")
            if not self.validate_context(context):
                return ExecutionResult.failure("Invalid context: missing organization")

            investors = self._investors_from(context)
            if not investors:
                return ExecutionResult.failure(
                    "No investors found to outreach to. Run investor research first.",
                    worker_id=self.worker_id,
                )

            self.update_status(WorkerStatus.BUSY, "Performing outreach")
            await asyncio.sleep(float(self.config.get("simulated_latency", 0)))

            records = [self._outreach_record(inv) for inv in investors]
            responses = sum(1 for r in records if r["response_received"])
            self.log_activity(f"Outreach completed: {len(records)} contacts made")
            return self.create_result(
                {"outreach": records},
                total_contacts_made=len(records),
                response_rate=responses / len(records) * 100,
            )
        except Exception as e:
            return self.handle_error(e)

    @staticmethod
    def _investors_from(context: ExecutionContext) -> list[dict[str, Any]]:
        investors = context.metadata.get("investors")
        if investors:
            return list(investors)
        for prior in context.metadata.get("previous_results", []):
            data = prior.data if isinstance(prior, ExecutionResult) else (prior or {}).get("data")
            if isinstance(data, dict) and data.get("investors"):
                return list(data["investors"])
        return []

    def _outreach_record(self, investor: dict[str, Any]) -> dict[str, Any]:
        data = investor.get("data", investor)
        name = data.get("name") or investor.get("title", "").replace("Investor: ", "")
        investor_type = data.get("investor_type", "")
        responded = self._rng.random() > 0.7
        follow_up = not responded or self._rng.random() > 0.5
        base = {"Venture Capital": 0.4, "Accelerator": 0.6}.get(investor_type, 0.3)
        if responded:
            next_action = "Schedule meeting or call"
        elif follow_up:
            next_action = "Send follow-up message"
        else:
            next_action = "Move to next prospect"
        return {
            "investor_name": name,
            "channel": self._rng.choice(self._CHANNELS),
            "contact_method": data.get("contact", "email"),
            "message": self._message_for(investor_type, data.get("portfolio", [])),
            "response_received": responded,
            "follow_up_needed": follow_up,
            "success_probability": min(0.95, base + self._rng.random() * 0.3),
            "next_action": next_action,
        }

    @staticmethod
    def _message_for(investor_type: str, portfolio: list[str]) -> str:
        if investor_type == "Venture Capital":
            names = " and ".join(portfolio[:2])
            return (f"I noticed your track record with companies like {names}. "
                    "Would you be open to a 15-minute call next week?")
        if investor_type == "Accelerator":
            return "We're applying to your program and would value feedback on our application."
        return "I'd like to introduce our company and connect."


WORKER_TEMPLATES: dict[str, type[Worker]] = {
    "investor_research": InvestorResearchWorker,
    "ai_outreach": OutreachWorker,
}

_TEMPLATE_INFO: dict[str, dict[str, Any]] = {
    "investor_research": {
        "description": "AI worker specialized in investor research and analysis",
        "supported_phases": ["identifying_investors"],
        "supported_workflows": ["fundraising"],
    },
    "ai_outreach": {
        "description": "AI worker specialized in personalized investor outreach",
        "supported_phases": ["direct_outreach", "automated_intro"],
        "supported_workflows": ["fundraising", "sales", "marketing"],
    },
}


def get_worker_templates() -> list[dict[str, Any]]:
    """Descriptors of the built-in templates."""
    return [
        {
            "name": name,
            "capabilities": list(cls.DEFAULT_CAPABILITIES),
            **_TEMPLATE_INFO.get(name, {}),
        }
        for name, cls in WORKER_TEMPLATES.items()
    ]
