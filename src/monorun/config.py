# config.py
from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Dict, List, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError, InvalidTaskConfig

# ---------------------------------------------------------------------
# Repository configuration
# ---------------------------------------------------------------------
# monorun.config.json (or monorun.json) at the repo root:
#
#   {
#     "extends": "../shared/monorun.base.json",
#     "remote_cache_url": "http://cache.internal:8080",
#     "workspaces": ["apps/*", "packages/*"],
#     "pipeline": {
#       "build": { "outputs": ["dist/**"], "depends_on": ["^build"] },
#       "test":  { "inputs": ["src/**", "tests/**"], "env": ["CI"] }
#     },
#     "plugins": [{ "command": "node", "args": ["./tools/notify.js"] }]
#   }
# ---------------------------------------------------------------------

CONFIG_FILES = ("monorun.config.json", "monorun.json")
DEFAULT_CACHE_DIR = ".monorun/cache"
CACHE_DIR_ENV = "MONORUN_CACHE_DIR"


class TaskSpec(BaseModel):
    """Per-task configuration (one entry of `pipeline`)."""
    model_config = ConfigDict(frozen=True)

    inputs: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    env: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)

    def validate_prerequisites(self, task_name: str) -> None:
        for dep in self.depends_on:
            if dep == "":
                raise InvalidTaskConfig(task_name)
            if dep == "^":
                raise InvalidTaskConfig(task_name, "invalid depends_on entry: '^' without a task name")

    def merged_with(self, overlay: "TaskSpec") -> "TaskSpec":
        return TaskSpec(
            inputs=overlay.inputs or self.inputs,
            outputs=overlay.outputs or self.outputs,
            env=overlay.env or self.env,
            depends_on=overlay.depends_on or self.depends_on,
        )


class PluginSpec(BaseModel):
    command: str
    args: List[str] = Field(default_factory=list)
    enabled: bool = True


class RepoConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    schema_url: Optional[str] = Field(default=None, alias="$schema")
    extends: List[str] = Field(default_factory=list)
    remote_cache_url: Optional[str] = None
    workspaces: List[str] = Field(default_factory=list)
    pipeline: Dict[str, TaskSpec] = Field(default_factory=dict)
    plugins: List[PluginSpec] = Field(default_factory=list)

    @field_validator("extends", mode="before")
    @classmethod
    def _one_or_many(cls, value: Union[None, str, List[str]]) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    def task(self, name: str) -> TaskSpec:
        """Spec for `name`; tasks missing from the pipeline get an empty spec."""
        return self.pipeline.get(name) or TaskSpec()

    def merged_with(self, overlay: "RepoConfig") -> "RepoConfig":
        pipeline = dict(self.pipeline)
        for name, spec in overlay.pipeline.items():
            pipeline[name] = pipeline[name].merged_with(spec) if name in pipeline else spec

        return RepoConfig(
            schema_url=overlay.schema_url or self.schema_url,
            # keep the overlay's extends for inspection
            extends=overlay.extends,
            remote_cache_url=overlay.remote_cache_url or self.remote_cache_url,
            workspaces=overlay.workspaces or self.workspaces,
            pipeline=pipeline,
            plugins=overlay.plugins or self.plugins,
        )

    def validate_config(self) -> None:
        if not self.workspaces:
            raise ConfigError("Configuration validation failed: 'workspaces' array cannot be empty.")
        for ext in self.extends:
            if not ext.strip():
                raise ConfigError("Configuration validation failed: 'extends' cannot contain empty string")
        for plugin in self.plugins:
            if not plugin.command.strip():
                raise ConfigError("Configuration validation failed: plugins[].command cannot be empty")
        for name, spec in self.pipeline.items():
            spec.validate_prerequisites(name)


# ---------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------

def _parse(path: Path) -> RepoConfig:
    try:
        return RepoConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as e:
        raise ConfigError(f"Invalid config file {path}: {e}") from e


def _load_recursive(path: Path, visited: Set[Path]) -> RepoConfig:
    canonical = path.resolve()
    if canonical in visited:
        raise ConfigError(f"Configuration validation failed: circular extends detected at {canonical}")
    visited.add(canonical)

    current = _parse(path)
    merged = RepoConfig()
    for ext in current.extends:
        ext_path = path.parent / ext
        if not ext_path.is_file():
            raise ConfigError(f"Configuration validation failed: extends file not found: {ext_path}")
        merged = merged.merged_with(_load_recursive(ext_path, visited))

    visited.discard(canonical)
    return merged.merged_with(current)


def load_config_file(path: str | Path) -> RepoConfig:
    """Load one config file, resolving `extends` chains. Does not validate."""
    return _load_recursive(Path(path), set())


def detect_workspaces(root: Path) -> List[str]:
    """Workspace globs from package.json `workspaces`, then pnpm-workspace.yaml."""
    package_json = root / "package.json"
    if package_json.is_file():
        try:
            data = json.loads(package_json.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            data = {}
        workspaces = data.get("workspaces") if isinstance(data, dict) else None
        if isinstance(workspaces, list):
            return [w for w in workspaces if isinstance(w, str)]
        if isinstance(workspaces, dict) and isinstance(workspaces.get("packages"), list):
            return [w for w in workspaces["packages"] if isinstance(w, str)]

    pnpm = root / "pnpm-workspace.yaml"
    if pnpm.is_file():
        m = re.search(r"packages:\s*\n((?:\s+-\s+.+\n?)+)", pnpm.read_text(encoding="utf-8"))
        if m:
            patterns = [line.strip().lstrip("-").strip().strip("'\"") for line in m.group(1).splitlines()]
            return [p for p in patterns if p]

    return []


def find_config_file(root: str | Path = ".") -> Optional[Path]:
    root = Path(root)
    for name in CONFIG_FILES:
        candidate = root / name
        if candidate.is_file():
            return candidate
    return None


def load_config(root: str | Path = ".") -> RepoConfig:
    root = Path(root)
    path = find_config_file(root)
    if path is not None:
        config = load_config_file(path)
    else:
        config = RepoConfig(workspaces=detect_workspaces(root))

    config.validate_config()
    return config


def cache_dir(root: str | Path = ".") -> Path:
    value = os.environ.get(CACHE_DIR_ENV, "")
    if value.strip():
        return Path(value)
    return Path(root) / DEFAULT_CACHE_DIR


DEFAULT_CONFIG = {
    "workspaces": ["apps/*", "packages/*"],
    "pipeline": {
        "build": {"outputs": ["dist/**"]},
    },
}
