# pipeline.py
from __future__ import annotations

from typing import List, Mapping, Tuple

from .backend import TaskBackend
from .config import RepoConfig, TaskSpec
from .model import Package, RunOptions

UPSTREAM_MARKER = "^"


def direct_dependencies(package: Package, packages: Mapping[str, Package]) -> List[Package]:
    """Workspace packages `package` declares directly. Transitive ones are not included."""
    return [packages[name] for name in sorted(package.dependencies) if name in packages]


def expand_prerequisites(
    package: Package,
    spec: TaskSpec,
    packages: Mapping[str, Package],
) -> List[Tuple[Package, str]]:
    """
    Turn a task's depends_on list into concrete (package, task) pairs.

      "^build" -> ("build" in each direct dependency of `package`)
      "lint"   -> ("lint" in `package` itself)

    One level only: the prerequisites' own depends_on are not expanded.
    """
    pairs: List[Tuple[Package, str]] = []
    for decl in spec.depends_on:
        if decl.startswith(UPSTREAM_MARKER):
            upstream = decl[len(UPSTREAM_MARKER):]
            pairs.extend((dep, upstream) for dep in direct_dependencies(package, packages))
        else:
            pairs.append((package, decl))
    return pairs


def run_prerequisite(
    package: Package,
    task_name: str,
    spec: TaskSpec,
    *,
    options: RunOptions,
    backend: TaskBackend,
) -> None:
    """Restore `task_name` for `package` from the local cache, or run it."""
    fingerprint = backend.compute_fingerprint(package, task_name, spec)
    if not options.skip_cache_checks and backend.is_cached_locally(fingerprint):
        backend.restore_outputs(package, fingerprint)
        return

    if options.clean:
        backend.clean_outputs(package, spec)
    backend.execute_task(package, task_name, spec, fingerprint, options.strict, options.no_cache)


def resolve_prerequisites(
    package: Package,
    spec: TaskSpec,
    *,
    config: RepoConfig,
    packages: Mapping[str, Package],
    options: RunOptions,
    backend: TaskBackend,
) -> None:
    """
    Satisfy every prerequisite of a package's task, in declaration order.

    Runs inside the package's unit of work and emits no plugin events.
    Raises InvalidTaskConfig if a prerequisite's own config is invalid.
    """
    for dep_package, dep_task in expand_prerequisites(package, spec, packages):
        dep_spec = config.task(dep_task)
        dep_spec.validate_prerequisites(dep_task)
        run_prerequisite(dep_package, dep_task, dep_spec, options=options, backend=backend)
