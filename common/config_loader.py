"""
Command Center — Configuration

Three layers, later ones winning:

  1. config/orchestration.yaml          shipped defaults
  2. config/{CMDCTR_ENV}.yaml            per-environment overlay (dev, prod, ...)
  3. CMDCTR_* environment variables      operator overrides

The merged dict is what callers pass around; ``settings()`` gives the
typed, validated view of the sections the orchestrator consumes.

Usage:
    from common.config_loader import load_config

    config = load_config(env="prod", project_root=".")
    config.get("orchestrator.execution_timeout_seconds")   # 300
    config.settings().orchestrator.task_retention_hours    # 72.0
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("cmdctr.config")

DEFAULT_BASE_FILES = ["config/orchestration.yaml"]

ENV_PREFIX = "CMDCTR_"
_FREEFORM_PREFIX = "CMDCTR_CONFIG__"

# Named env vars → dotted config path
_ENV_MAPPINGS: dict[str, str] = {
    "CMDCTR_LOG_LEVEL": "logging.level",
    "CMDCTR_EXECUTION_TIMEOUT": "orchestrator.execution_timeout_seconds",
    "CMDCTR_TASK_RETENTION_HOURS": "orchestrator.task_retention_hours",
    "CMDCTR_WORKFLOWS_DIR": "workflows.definitions_dir",
    "CMDCTR_METRICS_SINK": "metrics.sink",
}


# ---------------------------------------------------------------------------
# Typed settings
# ---------------------------------------------------------------------------

class LoggingSettings(BaseModel):
    level: str = Field(default="INFO")

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level {v!r}")
        return v


class OrchestratorSettings(BaseModel):
    """Null (or absent) disables the deadline / pruning."""
    execution_timeout_seconds: Optional[float] = Field(default=None, gt=0)
    task_retention_hours: Optional[float] = Field(default=None, gt=0)


class MetricsSettings(BaseModel):
    sink: str = Field(default="memory", description="memory | none")


class WorkflowsSettings(BaseModel):
    definitions_dir: Optional[str] = Field(
        default=None, description="Directory of workflow YAML/JSON; null = shipped definitions",
    )


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)
    workflows: WorkflowsSettings = Field(default_factory=WorkflowsSettings)
    capabilities: dict[str, Any] = Field(default_factory=dict)

    @field_validator("logging", "orchestrator", "metrics", "workflows", "capabilities", mode="before")
    @classmethod
    def _null_section(cls, v: Any) -> Any:
        # An empty YAML section parses as None
        return {} if v is None else v


def parse_settings(config: dict[str, Any] | None) -> Settings:
    """Validate a merged config dict. Raises pydantic.ValidationError."""
    raw = {k: v for k, v in (config or {}).items() if not k.startswith("_")}
    return Settings.model_validate(raw)


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class ConfigLoader:
    """Merges the config layers for one environment and answers dotted lookups."""

    def __init__(
        self,
        env: str = "dev",
        project_root: str | Path = ".",
        base_files: list[str] | None = None,
    ):
        self.env = env
        self.project_root = Path(project_root)
        self.base_files = list(DEFAULT_BASE_FILES) if base_files is None else list(base_files)
        self._data: dict[str, Any] = {}
        self._source_log: list[str] = []
        self._loaded = False

    def _layers(self) -> list[tuple[str, Path]]:
        layers = [(f"base:{name}", self.project_root / name) for name in self.base_files]
        overlay = f"config/{self.env}.yaml"
        layers.append((f"overlay:{overlay}", self.project_root / overlay))
        return layers

    def load(self) -> dict[str, Any]:
        """(Re)build the merged dict from every layer."""
        merged: dict[str, Any] = {}
        sources: list[str] = []

        for label, path in self._layers():
            layer = _read_yaml(path)
            if layer is None:
                continue
            merged = _deep_merge(merged, layer)
            sources.append(label)

        overrides = _load_env_overrides()
        if overrides:
            merged = _deep_merge(merged, overrides)
            sources.append(f"env_vars({_count_leaves(overrides)} keys)")

        merged["_config_meta"] = {
            "env": self.env,
            "sources": sources,
            "project_root": str(self.project_root),
        }
        self._data = merged
        self._source_log = sources
        self._loaded = True
        logger.info("Config loaded: env=%s sources=%s", self.env, sources)
        return self._data

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """``get("orchestrator.execution_timeout_seconds")``; missing → default."""
        self._ensure_loaded()
        node: Any = self._data
        for part in dotted_key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def get_all(self) -> dict[str, Any]:
        """Deep copy of the merged dict; callers may mutate it freely."""
        self._ensure_loaded()
        return copy.deepcopy(self._data)

    def section(self, name: str) -> dict[str, Any]:
        value = self.get(name)
        return copy.deepcopy(value) if isinstance(value, dict) else {}

    def settings(self) -> Settings:
        self._ensure_loaded()
        return parse_settings(self._data)

    @property
    def sources(self) -> list[str]:
        return list(self._source_log)

    def reload(self) -> dict[str, Any]:
        self._loaded = False
        return self.load()


def _read_yaml(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping")
    return data


def _deep_merge(base: dict, overlay: dict) -> dict:
    """New dict with ``overlay`` merged into ``base``; nested dicts merge, anything else is replaced."""
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = _deep_merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _count_leaves(tree: dict) -> int:
    return sum(_count_leaves(v) if isinstance(v, dict) else 1 for v in tree.values())


# ---------------------------------------------------------------------------
# Environment variables
# ---------------------------------------------------------------------------

def _load_env_overrides() -> dict[str, Any]:
    """
    Collect overrides from the named CMDCTR_* variables plus free-form
    ``CMDCTR_CONFIG__section__key=value`` (double underscore = one level).
    """
    overrides: dict[str, Any] = {}
    for name, value in os.environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        if name in _ENV_MAPPINGS:
            path = _ENV_MAPPINGS[name]
        elif name.startswith(_FREEFORM_PREFIX):
            path = name[len(_FREEFORM_PREFIX):].lower().replace("__", ".")
        else:
            continue
        _assign(overrides, path.split("."), _auto_convert(value))
    return overrides


def _assign(tree: dict[str, Any], keys: list[str], value: Any) -> None:
    for key in keys[:-1]:
        tree = tree.setdefault(key, {})
    tree[keys[-1]] = value


def _auto_convert(value: str) -> Any:
    """'yes'/'true' → True, 'no'/'false' → False, numerals → int/float, else str."""
    lowered = value.lower()
    if lowered in ("true", "yes"):
        return True
    if lowered in ("false", "no"):
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value


# ---------------------------------------------------------------------------
# Process-wide loader
# ---------------------------------------------------------------------------

_instance: ConfigLoader | None = None


def get_config(env: str | None = None, project_root: str | None = None) -> ConfigLoader:
    """Cached loader; env/root default to CMDCTR_ENV and CMDCTR_PROJECT_ROOT."""
    global _instance
    if _instance is None:
        _instance = load_config(
            env=env or os.environ.get("CMDCTR_ENV", "dev"),
            project_root=project_root or os.environ.get("CMDCTR_PROJECT_ROOT", "."),
        )
    return _instance


def load_config(
    env: str = "dev",
    project_root: str | Path = ".",
    base_files: list[str] | None = None,
) -> ConfigLoader:
    """Fresh, uncached loader with every layer already merged."""
    loader = ConfigLoader(env=env, project_root=project_root, base_files=base_files)
    loader.load()
    return loader


def reset_config() -> None:
    global _instance
    _instance = None
