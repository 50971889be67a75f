from .config import RepoConfig, TaskSpec, load_config
from .model import CacheSource, Package, RunOptions, RunReport, TaskOutcome
from .runner import run_task_graph
from .workspace import discover_packages

__all__ = [
    "RepoConfig",
    "TaskSpec",
    "load_config",
    "CacheSource",
    "Package",
    "RunOptions",
    "RunReport",
    "TaskOutcome",
    "run_task_graph",
    "discover_packages",
]
