"""
Command Center — Structured Logging Tests

Tests:
  - every line is valid JSON with the required fields
  - structured fields from log_event are merged into the entry
  - level filtering
  - exception type/message captured
  - reconfiguring does not duplicate handlers
  - log_context fields bound per scope and per asyncio task
  - orchestrator operations emit entries under the cmdctr namespace
"""

import asyncio
import io
import json
import logging
import os
import sys
import unittest

_base = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _base not in sys.path:
    sys.path.insert(0, _base)

from common.logging import (
    ROOT_LOGGER,
    JSONFormatter,
    configure_logging,
    current_context,
    get_logger,
    log_context,
    log_event,
)
from orchestration.directory import WorkerDirectory
from orchestration.orchestrator import Orchestrator
from orchestration.types import ExecutionContext, ExecutionResult
from orchestration.workers import CallableWorker


def _capture_logs(level="DEBUG"):
    buf = io.StringIO()
    configure_logging(level=level, stream=buf)
    return buf


def _parse_log_lines(buf):
    buf.seek(0)
    return [json.loads(line) for line in buf.read().splitlines() if line.strip()]


class _LoggingCase(unittest.TestCase):
    def tearDown(self):
        root = logging.getLogger(ROOT_LOGGER)
        root.handlers.clear()
        root.propagate = True
        root.setLevel(logging.NOTSET)


class TestLogEntrySchema(_LoggingCase):

    def test_required_fields_present(self):
        buf = _capture_logs()
        get_logger("test").info("hello %s", "world")
        entries = _parse_log_lines(buf)

        self.assertEqual(len(entries), 1)
        entry = entries[0]
        for key in ("timestamp", "level", "logger", "message", "service.name", "service.version"):
            self.assertIn(key, entry)
        self.assertEqual(entry["message"], "hello world")
        self.assertEqual(entry["logger"], "cmdctr.test")
        self.assertEqual(entry["level"], "INFO")
        self.assertEqual(entry["service.name"], "cmdctr_orchestration")

    def test_log_event_merges_fields(self):
        buf = _capture_logs()
        log_event(get_logger("orchestrator"), logging.INFO, "task_created",
                  task_id="task_abc", priority="high")
        entry = _parse_log_lines(buf)[0]
        self.assertEqual(entry["action"], "task_created")
        self.assertEqual(entry["message"], "task_created")
        self.assertEqual(entry["task_id"], "task_abc")
        self.assertEqual(entry["priority"], "high")

    def test_exception_captured(self):
        buf = _capture_logs()
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").exception("failed")
        entry = _parse_log_lines(buf)[0]
        self.assertEqual(entry["exception.type"], "ValueError")
        self.assertEqual(entry["exception.message"], "boom")

    def test_formatter_standalone(self):
        record = logging.LogRecord("cmdctr.x", logging.WARNING, __file__, 1, "msg", None, None)
        entry = json.loads(JSONFormatter(service_name="svc").format(record))
        self.assertEqual(entry["service.name"], "svc")
        self.assertEqual(entry["level"], "WARNING")


class TestLevelFiltering(_LoggingCase):

    def test_info_hides_debug(self):
        buf = _capture_logs("INFO")
        log = get_logger("test")
        log.debug("hidden")
        log.info("shown")
        messages = [e["message"] for e in _parse_log_lines(buf)]
        self.assertEqual(messages, ["shown"])

    def test_log_event_skips_disabled_level(self):
        buf = _capture_logs("WARNING")
        log_event(get_logger("test"), logging.DEBUG, "noise", x=1)
        self.assertEqual(_parse_log_lines(buf), [])

    def test_reconfigure_does_not_duplicate(self):
        configure_logging(level="INFO", stream=io.StringIO())
        buf = _capture_logs("INFO")
        get_logger("test").info("once")
        self.assertEqual(len(_parse_log_lines(buf)), 1)
        self.assertEqual(len(logging.getLogger(ROOT_LOGGER).handlers), 1)


class TestLogContext(_LoggingCase):

    def test_bound_fields_on_every_line(self):
        buf = _capture_logs()
        log = get_logger("test")
        with log_context(task_id="task_1", worker_id=None):
            log.info("inside")
            with log_context(worker_id="wrk_1"):
                log.info("nested")
        log.info("outside")
        inside, nested, outside = _parse_log_lines(buf)
        self.assertEqual(inside["task_id"], "task_1")
        self.assertNotIn("worker_id", inside)
        self.assertEqual((nested["task_id"], nested["worker_id"]), ("task_1", "wrk_1"))
        self.assertNotIn("task_id", outside)
        self.assertEqual(current_context(), {})

    def test_call_fields_win(self):
        buf = _capture_logs()
        with log_context(action="outer"):
            log_event(get_logger("test"), logging.INFO, "inner")
        self.assertEqual(_parse_log_lines(buf)[0]["action"], "inner")

    def test_concurrent_tasks_isolated(self):
        buf = _capture_logs()
        log = get_logger("test")

        async def job(task_id):
            with log_context(task_id=task_id):
                await asyncio.sleep(0.01)
                log.info("done %s", task_id)

        async def main():
            await asyncio.gather(job("a"), job("b"))

        asyncio.run(main())
        for entry in _parse_log_lines(buf):
            self.assertEqual(entry["message"], f"done {entry['task_id']}")


class TestOrchestratorLogging(_LoggingCase):

    def test_create_and_no_match_logged(self):
        buf = _capture_logs("INFO")
        orch = Orchestrator(WorkerDirectory())
        task = orch.create_task("research_lead", "obj_1", "org_1", ["research"],
                                ExecutionContext(organization_id="org_1"))
        self.assertIsNone(orch.assign_task(task.task_id))

        entries = _parse_log_lines(buf)
        created = [e for e in entries if e.get("action") == "task_created"]
        self.assertEqual(len(created), 1)
        self.assertEqual(created[0]["task_id"], task.task_id)
        self.assertEqual(created[0]["logger"], "cmdctr.orchestrator")

        warnings = [e for e in entries if e["level"] == "WARNING"]
        self.assertTrue(any("No suitable worker" in e["message"] for e in warnings))

    def test_execution_lines_carry_task_context(self):
        buf = _capture_logs("INFO")
        directory = WorkerDirectory()

        async def body(context):
            get_logger("worker").info("working")
            return ExecutionResult(success=True)

        worker = CallableWorker("W", "org_1", body, capabilities=["research"])
        directory.register(worker)
        orch = Orchestrator(directory)
        task = orch.create_task("research_lead", "obj_1", "org_1", ["research"],
                                ExecutionContext(organization_id="org_1"))
        orch.assign_task(task.task_id)
        asyncio.run(orch.execute_task(task.task_id))

        working = [e for e in _parse_log_lines(buf) if e["message"] == "working"]
        self.assertEqual(len(working), 1)
        self.assertEqual(working[0]["task_id"], task.task_id)
        self.assertEqual(working[0]["worker_id"], worker.worker_id)
        self.assertEqual(working[0]["organization_id"], "org_1")

    def test_failed_execution_carries_exception(self):
        buf = _capture_logs("INFO")
        directory = WorkerDirectory()

        async def body(context):
            raise RuntimeError("upstream API down")

        worker = CallableWorker("W", "org_1", body, capabilities=["research"])
        directory.register(worker)
        orch = Orchestrator(directory)
        task = orch.create_task("research_lead", "obj_1", "org_1", ["research"],
                                ExecutionContext(organization_id="org_1"))
        orch.assign_task(task.task_id)
        with self.assertRaises(RuntimeError):
            asyncio.run(orch.execute_task(task.task_id))

        errors = [e for e in _parse_log_lines(buf) if e["level"] == "ERROR"]
        self.assertEqual(len(errors), 1)
        self.assertEqual(errors[0]["exception.type"], "RuntimeError")
        self.assertEqual(errors[0]["exception.message"], "upstream API down")
        self.assertEqual(errors[0]["task_id"], task.task_id)


if __name__ == "__main__":
    unittest.main()
