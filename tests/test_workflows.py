"""
Command Center — Workflow Catalog & Batch Execution Tests

Covers:
  1. Definition models, validation and directory loading
  2. execute_phase (missing workers and raising workers become data)
  3. execute_workflow (phase order, phase errors become data)
  4. execute_parallel_phases (empty, single, fan-out)
  5. Built-in template workers run end to end through a phase
"""

import asyncio
import json
import os
import sys
import tempfile
import unittest
from pathlib import Path

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from orchestration.directory import WorkerDirectory
from orchestration.orchestrator import Orchestrator
from orchestration.types import ExecutionContext, ExecutionResult, NotFoundError
from orchestration.workers import CallableWorker, InvestorResearchWorker, OutreachWorker
from orchestration.workflows import (
    WorkerManifest,
    WorkflowCatalog,
    WorkflowDefinition,
    validate_workflow,
)


def pipeline_definition():
    return {
        "id": "pipeline",
        "name": "Pipeline",
        "phases": ["research", "outreach", "close"],
        "workers": [
            {"id": "researcher", "name": "Researcher", "phase": "research", "workflow": "pipeline"},
            {"id": "analyst", "name": "Analyst", "phase": "research", "workflow": "pipeline"},
            {"id": "writer", "name": "Writer", "phase": "outreach", "workflow": "pipeline",
             "config": {"tone": "warm"}},
        ],
    }


async def ok(context):
    return ExecutionResult(success=True, data={"phase": context.phase_id})


async def crash(context):
    raise RuntimeError("rate limited")


# ═══════════════════════════════════════════════════════════════════
# 1. CATALOG
# ═══════════════════════════════════════════════════════════════════

class TestWorkflowCatalog(unittest.TestCase):

    def test_shipped_fundraising_workflow(self):
        catalog = WorkflowCatalog.from_directory()
        self.assertIn("fundraising", catalog)
        phases = catalog.phases("fundraising")
        self.assertEqual(len(phases), 9)
        self.assertEqual(phases[0], "identifying_investors")
        self.assertEqual(phases[-1], "closing")
        manifest = catalog.get_manifest("fundraising", "investor_research")
        self.assertEqual(manifest.name, "Investor Research Agent")
        self.assertEqual(manifest.config["apis"], ["crunchbase", "pitchbook", "linkedin"])
        self.assertEqual(
            [m.id for m in catalog.phase_workers("fundraising", "closing")], ["closing"],
        )

    def test_register_dict(self):
        catalog = WorkflowCatalog([pipeline_definition()])
        self.assertEqual(catalog.count(), 1)
        self.assertEqual(len(catalog.phase_workers("pipeline", "research")), 2)
        self.assertEqual(catalog.phase_workers("pipeline", "close"), [])

    def test_require_unknown(self):
        with self.assertRaises(NotFoundError):
            WorkflowCatalog().require("nope")
        self.assertIsNone(WorkflowCatalog().get_manifest("nope", "x"))

    def test_validation_errors(self):
        d = pipeline_definition()
        d["phases"].append("research")
        d["workers"].append({"id": "writer", "name": "W2", "phase": "unknown", "workflow": "other"})
        errors = validate_workflow(WorkflowDefinition.model_validate(d))
        self.assertTrue(any("Duplicate phase" in e for e in errors))
        self.assertTrue(any("Duplicate worker manifest id" in e for e in errors))
        self.assertTrue(any("undeclared phase" in e for e in errors))
        self.assertTrue(any("belongs to workflow" in e for e in errors))
        with self.assertRaises(ValueError):
            WorkflowCatalog([d])

    def test_valid_definition_has_no_errors(self):
        self.assertEqual(validate_workflow(WorkflowDefinition.model_validate(pipeline_definition())), [])

    def test_load_directory_skips_invalid(self):
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "pipeline.json").write_text(json.dumps(pipeline_definition()))
            Path(tmp, "broken.yaml").write_text("id: broken\nphases: [a]\n")
            Path(tmp, "notes.txt").write_text("ignored")
            with self.assertLogs("cmdctr.workflows", level="WARNING"):
                catalog = WorkflowCatalog.from_directory(tmp)
        self.assertEqual([d.id for d in catalog.list_all()], ["pipeline"])

    def test_missing_directory(self):
        catalog = WorkflowCatalog.from_directory("/nonexistent/definitions")
        self.assertEqual(catalog.count(), 0)

    def test_from_config(self):
        with tempfile.TemporaryDirectory() as tmp:
            Path(tmp, "pipeline.json").write_text(json.dumps(pipeline_definition()))
            catalog = WorkflowCatalog.from_config({"workflows": {"definitions_dir": tmp}})
        self.assertIn("pipeline", catalog)

    def test_manifest_model(self):
        m = WorkerManifest(id="x", name="X", phase="p", workflow="w")
        self.assertIsNone(m.config)
        self.assertEqual(m.description, "")


# ═══════════════════════════════════════════════════════════════════
# 2-4. BATCH EXECUTION
# ═══════════════════════════════════════════════════════════════════

class _BatchCase(unittest.IsolatedAsyncioTestCase):

    def setUp(self):
        self.directory = WorkerDirectory()
        self.orch = Orchestrator(self.directory, WorkflowCatalog([pipeline_definition()]))

    def add(self, name, phase, fn=ok, org="org_1"):
        w = CallableWorker(name, org, fn, workflow_id="pipeline", phase_id=phase)
        self.directory.register(w)
        return w


class TestExecutePhase(_BatchCase):

    async def test_missing_worker_becomes_failure_result(self):
        self.add("Researcher", "research")
        results = await self.orch.execute_phase("pipeline", "research", "org_1")

        self.assertEqual(len(results), 2)
        self.assertTrue(results[0].success)
        self.assertEqual(results[0].data, {"phase": "research"})
        missing = results[1]
        self.assertFalse(missing.success)
        self.assertIn("Analyst", missing.error)
        self.assertEqual(missing.metadata["worker_id"], "analyst")
        self.assertEqual(missing.metadata["worker_name"], "Analyst")
        self.assertEqual(missing.metadata["phase_id"], "research")
        self.assertEqual(missing.metadata["execution_type"], "phase_execution")

    async def test_raising_worker_becomes_failure_result(self):
        self.add("Researcher", "research", fn=crash)
        self.add("Analyst", "research")
        results = await self.orch.execute_phase("pipeline", "research", "org_1")
        self.assertFalse(results[0].success)
        self.assertEqual(results[0].error, "rate limited")
        self.assertTrue(results[1].success)

    async def test_isolated_contexts(self):
        seen = []

        async def capture(context):
            seen.append(context)
            context.metadata["scribble"] = True
            return ExecutionResult(success=True)

        self.add("Researcher", "research", fn=capture)
        self.add("Analyst", "research", fn=capture)
        await self.orch.execute_phase("pipeline", "research", "org_1")
        self.assertEqual(len(seen), 2)
        self.assertIsNot(seen[0], seen[1])
        self.assertIsNot(seen[0].metadata, seen[1].metadata)
        by_manifest = {c.metadata["manifest_id"] for c in seen}
        self.assertEqual(by_manifest, {"researcher", "analyst"})
        self.assertEqual(seen[0].organization_id, "org_1")

    async def test_manifest_config_passed(self):
        seen = []

        async def capture(context):
            seen.append(context)
            return ExecutionResult(success=True)

        self.add("Writer", "outreach", fn=capture)
        await self.orch.execute_phase("pipeline", "outreach", "org_1")
        self.assertEqual(seen[0].metadata["manifest_config"], {"tone": "warm"})

    async def test_organization_scoping(self):
        self.add("Researcher", "research", org="org_2")
        self.add("Analyst", "research", org="org_2")
        results = await self.orch.execute_phase("pipeline", "research", "org_1")
        self.assertEqual([r.success for r in results], [False, False])

    async def test_other_organization_worker_never_runs(self):
        calls = []

        async def record(context):
            calls.append(context.organization_id)
            return ExecutionResult(success=True)

        self.add("Researcher", "research", fn=record, org="org_2")
        self.add("Analyst", "research", fn=record, org="org_2")
        self.add("Writer", "outreach", fn=record, org="org_2")

        results = await self.orch.execute_workflow("pipeline", "org_1")
        self.assertEqual(calls, [])
        self.assertFalse(any(r.success for r in results["research"]))
        self.assertFalse(results["outreach"][0].success)

        await self.orch.execute_phase("pipeline", "research", "org_2")
        self.assertEqual(calls, ["org_2", "org_2"])

    async def test_organization_is_required(self):
        self.add("Researcher", "research")
        with self.assertRaises(TypeError):
            await self.orch.execute_phase("pipeline", "research")
        with self.assertRaises(TypeError):
            await self.orch.execute_workflow("pipeline")
        with self.assertRaises(TypeError):
            await self.orch.execute_parallel_phases("pipeline", ["research"])

    async def test_unknown_workflow_raises(self):
        with self.assertRaises(NotFoundError):
            await self.orch.execute_phase("nope", "research", "org_1")

    async def test_empty_phase_raises(self):
        with self.assertRaises(NotFoundError):
            await self.orch.execute_phase("pipeline", "close", "org_1")


class TestExecuteWorkflow(_BatchCase):

    async def test_all_phases_in_order(self):
        self.add("Researcher", "research")
        self.add("Analyst", "research", fn=crash)
        self.add("Writer", "outreach")

        results = await self.orch.execute_workflow("pipeline", "org_1")
        self.assertEqual(list(results), ["research", "outreach", "close"])
        self.assertEqual([r.success for r in results["research"]], [True, False])
        self.assertEqual(results["research"][1].metadata["execution_type"], "workflow_execution")
        self.assertTrue(results["outreach"][0].success)

        # Empty phase becomes one synthetic failure
        self.assertEqual(len(results["close"]), 1)
        self.assertFalse(results["close"][0].success)
        self.assertEqual(results["close"][0].metadata["phase_id"], "close")

    async def test_unknown_workflow_raises(self):
        with self.assertRaises(NotFoundError):
            await self.orch.execute_workflow("nope", "org_1")


class TestExecuteParallelPhases(_BatchCase):

    async def test_empty_list(self):
        self.assertEqual(await self.orch.execute_parallel_phases("pipeline", [], "org_1"), {})

    async def test_single_phase(self):
        self.add("Writer", "outreach")
        results = await self.orch.execute_parallel_phases("pipeline", ["outreach"], "org_1")
        self.assertEqual(list(results), ["outreach"])
        self.assertTrue(results["outreach"][0].success)

    async def test_single_phase_error_is_data(self):
        results = await self.orch.execute_parallel_phases("pipeline", ["close"], "org_1")
        self.assertFalse(results["close"][0].success)

    async def test_phases_run_concurrently(self):
        running = []
        peak = []

        async def overlapping(context):
            running.append(context.phase_id)
            peak.append(len(running))
            await asyncio.sleep(0.02)
            running.remove(context.phase_id)
            return ExecutionResult(success=True)

        self.add("Researcher", "research", fn=overlapping)
        self.add("Analyst", "research", fn=overlapping)
        self.add("Writer", "outreach", fn=overlapping)

        results = await self.orch.execute_parallel_phases(
            "pipeline", ["research", "outreach", "close"], "org_1",
        )
        self.assertEqual(list(results), ["research", "outreach", "close"])
        self.assertEqual(len(results["research"]), 2)
        self.assertFalse(results["close"][0].success)
        self.assertEqual(
            results["close"][0].metadata["execution_type"], "parallel_phase_execution",
        )
        self.assertEqual(max(peak), 3)

    async def test_unknown_workflow_raises(self):
        with self.assertRaises(NotFoundError):
            await self.orch.execute_parallel_phases("nope", ["research"], "org_1")


# ═══════════════════════════════════════════════════════════════════
# 5. TEMPLATE WORKERS
# ═══════════════════════════════════════════════════════════════════

class TestTemplateWorkers(unittest.IsolatedAsyncioTestCase):

    async def test_research_phase_with_template(self):
        directory = WorkerDirectory()
        research = directory.instantiate_from_template("investor_research", {
            "organization_id": "org_1",
            "workflow_id": "fundraising",
            "phase_id": "identifying_investors",
        })
        directory.register(research)
        orch = Orchestrator(directory, WorkflowCatalog.from_directory())

        results = await orch.execute_phase("fundraising", "identifying_investors", "org_1")
        self.assertEqual(len(results), 1)
        self.assertTrue(results[0].success)
        self.assertEqual(len(results[0].data["investors"]), 3)
        self.assertEqual(results[0].metadata["worker_id"], research.worker_id)

    async def test_outreach_uses_investors(self):
        research = InvestorResearchWorker(organization_id="org_1")
        found = await research.execute(ExecutionContext(organization_id="org_1"))

        outreach = OutreachWorker(organization_id="org_1", config={"seed": 7})
        result = await outreach.execute(
            ExecutionContext(organization_id="org_1", metadata={"previous_results": [found]}),
        )
        self.assertTrue(result.success)
        records = result.data["outreach"]
        self.assertEqual(len(records), 3)
        self.assertEqual(records[0]["investor_name"], "Sequoia Capital")
        self.assertIn(records[0]["channel"], ("email", "linkedin", "phone", "warm_intro"))

    async def test_outreach_without_investors_fails_as_data(self):
        outreach = OutreachWorker(organization_id="org_1")
        result = await outreach.execute(ExecutionContext(organization_id="org_1"))
        self.assertFalse(result.success)
        self.assertIn("No investors", result.error)

    async def test_missing_organization(self):
        research = InvestorResearchWorker()
        result = await research.execute(ExecutionContext(organization_id=""))
        self.assertFalse(result.success)


if __name__ == "__main__":
    unittest.main()
