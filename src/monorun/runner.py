# runner.py
from __future__ import annotations

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Optional, Sequence

from .backend import TaskBackend, default_backend
from .config import RepoConfig
from .dag import DependencyGraph, build_dependency_graph, graph_edges, reduce_to_scope
from .engine import RunContext, run_package_task
from .errors import CircularDependency, ConcurrencyPermitFailure, MonorunError, TaskExecutionFailure
from .model import Package, RunOptions, RunReport, TaskOutcome
from .plugins import EventEmitter, NullEmitter
from .report import RunReporter, write_report
from .ui.console import Console, get_console


class PermitPool:
    """
    Run-wide counting semaphore. Bounds how many package units are in flight
    across all waves, not per wave.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._sem = threading.BoundedSemaphore(capacity)
        self._closed = False

    def acquire(self) -> None:
        if self._closed:
            raise ConcurrencyPermitFailure("permit pool is closed")
        self._sem.acquire()
        if self._closed:
            self._sem.release()
            raise ConcurrencyPermitFailure("permit pool closed while waiting for a permit")

    def release(self) -> None:
        self._sem.release()

    def close(self) -> None:
        self._closed = True


def resolve_concurrency(requested: int) -> int:
    """0 (or less) means one unit per available CPU."""
    if requested and requested > 0:
        return requested
    return os.cpu_count() or 1


def _run_unit(ctx: RunContext, permits: PermitPool, pkg: Package, task: str) -> TaskOutcome:
    try:
        return run_package_task(ctx, pkg, task, ctx.config.task(task))
    finally:
        permits.release()


def _run_wave(
    ctx: RunContext,
    graph: DependencyGraph,
    ready: List[int],
    task: str,
    permits: PermitPool,
    pool: ThreadPoolExecutor,
    reporter: RunReporter,
) -> None:
    """
    Launch every ready node and wait for all of them.

    Successful units are recorded and retired from the graph as they finish.
    The first failure is raised once the whole wave has drained.
    """
    futures: Dict[Future, int] = {}
    failure: Optional[BaseException] = None

    for node in ready:
        pkg = ctx.packages[graph.name(node)]
        try:
            permits.acquire()
        except ConcurrencyPermitFailure as e:
            failure = e
            break
        futures[pool.submit(_run_unit, ctx, permits, pkg, task)] = node

    for fut in as_completed(futures):
        node = futures[fut]
        name = graph.name(node)
        try:
            outcome = fut.result()
        except Exception as e:
            ctx.console.print_task_failed(name, str(e))
            if failure is None:
                failure = e if isinstance(e, MonorunError) else TaskExecutionFailure(package=name, task=task, cause=e)
            continue

        reporter.record(outcome)
        if not ctx.options.dry_run and not outcome.cached:
            ctx.console.print_finished(name)
        graph.remove_node(node)

    if failure is not None:
        raise failure


def run_task_graph(
    config: RepoConfig,
    packages: Sequence[Package],
    task: str,
    scope: Optional[str] = None,
    options: Optional[RunOptions] = None,
    *,
    backend: Optional[TaskBackend] = None,
    emitter: Optional[EventEmitter] = None,
    console: Optional[Console] = None,
) -> RunReport:
    """
    Run `task` for every package in dependency order, one wave at a time.

    Raises:
        InvalidTaskConfig / ScopeNotFound: before any work is launched
        CircularDependency: when no package is ready but some remain
        TaskExecutionFailure: a package failed; the wave drained first
    """
    options = options or RunOptions()
    console = console or get_console()
    backend = backend or default_backend(".")

    config.task(task).validate_prerequisites(task)

    if options.print_graph:
        for line in graph_edges(packages):
            console.print_graph_edge(line)

    full, index = build_dependency_graph(packages)
    graph = reduce_to_scope(full, index, scope)

    ctx = RunContext(
        config=config,
        packages={p.name: p for p in packages},
        options=options,
        backend=backend,
        emitter=emitter or NullEmitter(),
        console=console,
    )

    capacity = resolve_concurrency(options.concurrency)
    permits = PermitPool(capacity)
    reporter = RunReporter()

    console.print_run_started(task, graph.node_count(), scope)
    try:
        with ThreadPoolExecutor(max_workers=capacity) as pool:
            while graph.node_count() > 0:
                ready = graph.roots()
                if not ready:
                    raise CircularDependency(sorted(graph.name(i) for i in graph.nodes()))
                _run_wave(ctx, graph, ready, task, permits, pool, reporter)
    finally:
        permits.close()

    report = reporter.build(task, scope)
    if options.report_path:
        write_report(options.report_path, report)
    return report
