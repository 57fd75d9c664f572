"""
Command Center — Workflow Configuration Source

Read-only catalog of workflow definitions. A definition lists its phases
in execution order and the worker manifests eligible to run in each
phase. Definitions are YAML (or JSON) files; the shipped ``definitions/``
directory holds the fundraising workflow.

Manifests are declarations, not workers: the orchestrator resolves each
one to a live worker registered in the directory (by name, workflow,
phase and organization) at execution time.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from orchestration.types import NotFoundError

logger = logging.getLogger("cmdctr.workflows")

DEFAULT_DEFINITIONS_DIR = Path(__file__).parent / "definitions"

_SUFFIXES = (".yaml", ".yml", ".json")


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class WorkerManifest(BaseModel):
    """Declaration of a worker that runs in one phase of one workflow."""
    id: str = Field(description="Manifest id, unique within the workflow")
    name: str = Field(description="Worker name used to resolve the live instance")
    description: str = Field(default="")
    phase: str = Field(description="Phase this worker runs in")
    workflow: str = Field(description="Workflow this manifest belongs to")
    config: Optional[dict[str, Any]] = Field(default=None)


class WorkflowDefinition(BaseModel):
    """Ordered phases plus the manifests eligible in each phase."""
    id: str
    name: str
    description: str = Field(default="")
    phases: list[str] = Field(default_factory=list)
    workers: list[WorkerManifest] = Field(default_factory=list)

    def phase_workers(self, phase_id: str) -> list[WorkerManifest]:
        return [m for m in self.workers if m.phase == phase_id]


def validate_workflow(definition: WorkflowDefinition) -> list[str]:
    """
    Structural checks beyond what the model enforces.
    Returns a list of error strings; empty means valid.
    """
    errors: list[str] = []

    seen_phases: set[str] = set()
    for phase in definition.phases:
        if phase in seen_phases:
            errors.append(f"Duplicate phase: {phase}")
        seen_phases.add(phase)

    seen_ids: set[str] = set()
    for manifest in definition.workers:
        if manifest.id in seen_ids:
            errors.append(f"Duplicate worker manifest id: {manifest.id}")
        seen_ids.add(manifest.id)
        if manifest.phase not in seen_phases:
            errors.append(
                f"Manifest '{manifest.id}' references undeclared phase '{manifest.phase}'"
            )
        if manifest.workflow != definition.id:
            errors.append(
                f"Manifest '{manifest.id}' belongs to workflow '{manifest.workflow}', "
                f"not '{definition.id}'"
            )

    return errors


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class WorkflowCatalog:
    """Workflow definitions keyed by id."""

    def __init__(self, definitions: list[WorkflowDefinition | dict[str, Any]] | None = None):
        self._workflows: dict[str, WorkflowDefinition] = {}
        for d in definitions or []:
            self.register(d)

    @classmethod
    def from_directory(cls, path: str | Path | None = None) -> WorkflowCatalog:
        """
        Load every definition file in ``path`` (default: the shipped
        definitions). Invalid files are logged and skipped.
        """
        directory = Path(path) if path else DEFAULT_DEFINITIONS_DIR
        catalog = cls()
        if not directory.is_dir():
            logger.warning("Workflow definitions directory not found: %s", directory)
            return catalog

        for file in sorted(directory.iterdir()):
            if file.suffix not in _SUFFIXES:
                continue
            try:
                catalog.register(_read_definition(file))
            except (OSError, ValueError, yaml.YAMLError, ValidationError) as e:
                logger.warning("Skipping workflow definition %s: %s", file.name, e)
        logger.info("Loaded %d workflow(s) from %s", catalog.count(), directory)
        return catalog

    @classmethod
    def from_config(cls, config: dict[str, Any] | None) -> WorkflowCatalog:
        """Build from the ``workflows:`` config section (``definitions_dir`` key)."""
        section = (config or {}).get("workflows") or {}
        return cls.from_directory(section.get("definitions_dir"))

    def register(self, definition: WorkflowDefinition | dict[str, Any]) -> WorkflowDefinition:
        if isinstance(definition, dict):
            definition = WorkflowDefinition.model_validate(definition)
        errors = validate_workflow(definition)
        if errors:
            raise ValueError(f"Invalid workflow '{definition.id}': " + "; ".join(errors))
        if definition.id in self._workflows:
            logger.info("Workflow %s replaced", definition.id)
        self._workflows[definition.id] = definition
        return definition

    def get(self, workflow_id: str) -> WorkflowDefinition | None:
        return self._workflows.get(workflow_id)

    def require(self, workflow_id: str) -> WorkflowDefinition:
        definition = self._workflows.get(workflow_id)
        if definition is None:
            raise NotFoundError(f"Workflow not found: {workflow_id}")
        return definition

    def list_all(self) -> list[WorkflowDefinition]:
        return list(self._workflows.values())

    def phases(self, workflow_id: str) -> list[str]:
        return list(self.require(workflow_id).phases)

    def phase_workers(self, workflow_id: str, phase_id: str) -> list[WorkerManifest]:
        return self.require(workflow_id).phase_workers(phase_id)

    def get_manifest(self, workflow_id: str, manifest_id: str) -> WorkerManifest | None:
        definition = self._workflows.get(workflow_id)
        if definition is None:
            return None
        for m in definition.workers:
            if m.id == manifest_id:
                return m
        return None

    def count(self) -> int:
        return len(self._workflows)

    def __contains__(self, workflow_id: object) -> bool:
        return workflow_id in self._workflows


def _read_definition(path: Path) -> WorkflowDefinition:
    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)
    if not isinstance(raw, dict):
        raise ValueError("definition must be a mapping")
    return WorkflowDefinition.model_validate(raw)
