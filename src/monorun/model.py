# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional


@dataclass(frozen=True)
class Package:
    """A workspace package: one buildable unit of the monorepo."""
    name: str
    path: Path = Path(".")

    # Names of packages declared in the manifest (workspace or not)
    dependencies: FrozenSet[str] = frozenset()
    scripts: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)


class CacheSource(str, Enum):
    NONE = "none"
    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class TaskOutcome:
    """Result of one package's primary task. Created once per package per run."""
    name: str
    task: str
    hash: str
    cache: CacheSource
    cached: bool
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "task": self.task,
            "hash": self.hash,
            "cache": self.cache.value,
            "cached": self.cached,
            "duration_ms": self.duration_ms,
        }


@dataclass
class RunReport:
    task: str
    scope: Optional[str]
    workspaces: List[TaskOutcome] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "task": self.task,
            "scope": self.scope,
            "workspaces": [o.to_dict() for o in self.workspaces],
        }


@dataclass(frozen=True)
class RunOptions:
    concurrency: int = 0            # 0 -> os.cpu_count()
    explain: bool = False
    report_path: Optional[str] = None
    dry_run: bool = False
    print_graph: bool = False
    no_cache: bool = False
    force: bool = False
    strict: bool = False
    clean: bool = False

    @property
    def skip_cache_checks(self) -> bool:
        return self.force or self.no_cache
