"""
Command Center — Orchestration CLI

Inspect the capability catalog, worker templates and workflow
definitions, or run a workflow against template workers.

Usage:
    # List capabilities / templates / workflows
    cmdctr-orchestrate capabilities
    cmdctr-orchestrate templates
    cmdctr-orchestrate workflows --workflow fundraising

    # Run a whole workflow (or selected phases, concurrently)
    cmdctr-orchestrate run \\
        --workflow fundraising \\
        --workers workers.yaml \\
        --org org_1 \\
        --phase identifying_investors --phase direct_outreach

Workers file:
    workers:
      - template: investor_research
        name: Investor Research Agent
        organization_id: org_1
        workflow_id: fundraising
        phase_id: identifying_investors
        max_concurrent: 2
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

import yaml

from common.config_loader import load_config
from common.logging import configure_logging
from common.metrics import build_sink
from orchestration.capabilities import CapabilityCatalog
from orchestration.directory import WorkerDirectory
from orchestration.orchestrator import Orchestrator
from orchestration.workflows import WorkflowCatalog


def cmd_capabilities(args, directory: WorkerDirectory, workflows: WorkflowCatalog):
    """List the capability catalog."""
    entries = directory.capabilities()
    print(f"\nCapabilities ({len(entries)})")
    print(f"{'─' * 70}")
    for e in entries:
        print(f"  {e.key:<24} {e.description}")
        print(f"  {'':<24} phases: {', '.join(e.supported_phases)}")


def cmd_templates(args, directory: WorkerDirectory, workflows: WorkflowCatalog):
    """List built-in worker templates."""
    print(json.dumps(directory.templates(), indent=2))


def cmd_workflows(args, directory: WorkerDirectory, workflows: WorkflowCatalog):
    """List workflow definitions, or show one in full."""
    if args.workflow:
        definition = workflows.get(args.workflow)
        if definition is None:
            print(f"Error: workflow not found: {args.workflow}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(definition.model_dump(), indent=2))
        return

    for d in workflows.list_all():
        print(f"  {d.id:<20} {len(d.phases)} phases, {len(d.workers)} workers  {d.description}")


def cmd_run(args, directory: WorkerDirectory, workflows: WorkflowCatalog, orch: Orchestrator):
    """Register template workers and run a workflow."""
    p = Path(args.workers)
    if not p.exists():
        print(f"Error: workers file not found: {args.workers}", file=sys.stderr)
        sys.exit(1)
    with open(p) as f:
        spec = yaml.safe_load(f) or {}

    for entry in spec.get("workers", []):
        init_args = dict(entry)
        template = init_args.pop("template", None)
        init_args.setdefault("organization_id", args.org)
        try:
            worker = directory.instantiate_from_template(template, init_args)
        except (TypeError, ValueError) as e:
            print(f"Error: invalid worker entry for template {template}: {e}", file=sys.stderr)
            sys.exit(1)
        if worker is None:
            print(f"Error: unknown worker template: {template}", file=sys.stderr)
            sys.exit(1)
        directory.register(worker)

    print(f"\n{'═' * 70}", file=sys.stderr)
    print(f"  WORKFLOW: {args.workflow}  ({len(directory)} workers)", file=sys.stderr)
    print(f"{'═' * 70}", file=sys.stderr, flush=True)

    try:
        if args.phase:
            results = asyncio.run(orch.execute_parallel_phases(args.workflow, args.phase, args.org))
        else:
            results = asyncio.run(orch.execute_workflow(args.workflow, args.org))
    except Exception as e:
        print(f"\n  ✗ FAILED: {e}", file=sys.stderr)
        sys.exit(1)

    for phase_id, phase_results in results.items():
        ok = sum(1 for r in phase_results if r.success)
        mark = "✓" if ok == len(phase_results) else "✗"
        print(f"  {mark} {phase_id:<24} {ok}/{len(phase_results)} succeeded", file=sys.stderr)

    print(json.dumps({
        "results": {pid: [r.to_dict() for r in rs] for pid, rs in results.items()},
        "directory": directory.stats(),
    }, indent=2, default=str))


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Command Center — Task Orchestration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--env", default=None, help="Config environment (default: CMDCTR_ENV or dev)")
    parser.add_argument("--project-root", default=".", help="Directory holding config/")

    subs = parser.add_subparsers(dest="command", help="Command")

    subs.add_parser("capabilities", help="List the capability catalog")
    subs.add_parser("templates", help="List built-in worker templates")

    wf_p = subs.add_parser("workflows", help="List workflow definitions")
    wf_p.add_argument("--workflow", "-w", help="Show one workflow in full")

    run_p = subs.add_parser("run", help="Run a workflow against template workers")
    run_p.add_argument("--workflow", "-w", required=True)
    run_p.add_argument("--workers", required=True, help="YAML file declaring workers")
    run_p.add_argument("--org", default="default", help="Organization id")
    run_p.add_argument("--phase", "-p", action="append", default=[],
                       help="Run only this phase (repeatable; phases run concurrently)")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    env = args.env or os.environ.get("CMDCTR_ENV", "dev")
    loader = load_config(env=env, project_root=args.project_root)
    try:
        settings = loader.settings()
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    config = loader.get_all()
    definitions_dir = settings.workflows.definitions_dir
    if definitions_dir and not Path(definitions_dir).is_absolute():
        config["workflows"]["definitions_dir"] = str(Path(args.project_root) / definitions_dir)
    configure_logging(level=settings.logging.level, stream=sys.stderr)
    logging.getLogger("cmdctr.cli").debug("Config sources: %s", loader.sources)

    directory = WorkerDirectory(CapabilityCatalog.from_config(config))
    workflows = WorkflowCatalog.from_config(config)

    if args.command == "capabilities":
        cmd_capabilities(args, directory, workflows)
    elif args.command == "templates":
        cmd_templates(args, directory, workflows)
    elif args.command == "workflows":
        cmd_workflows(args, directory, workflows)
    elif args.command == "run":
        orch = Orchestrator(
            directory,
            workflows,
            sink=build_sink(settings.metrics.sink),
            config=config,
        )
        cmd_run(args, directory, workflows, orch)


if __name__ == "__main__":
    main()
