# engine.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from . import plugins
from .backend import TaskBackend
from .config import RepoConfig, TaskSpec
from .errors import InvalidTaskConfig, RemoteCacheError, TaskExecutionFailure
from .model import CacheSource, Package, RunOptions, TaskOutcome
from .pipeline import resolve_prerequisites
from .plugins import EventEmitter, NullEmitter
from .ui.console import Console, get_console


@dataclass
class RunContext:
    """Read-only state shared by every unit of work in a run."""
    config: RepoConfig
    packages: Dict[str, Package]
    options: RunOptions
    backend: TaskBackend
    emitter: EventEmitter = field(default_factory=NullEmitter)
    console: Console = field(default_factory=get_console)

    @property
    def remote_cache_url(self) -> Optional[str]:
        return self.config.remote_cache_url


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _outcome(pkg: Package, task: str, fingerprint: str, source: CacheSource, cached: bool, started: float) -> TaskOutcome:
    return TaskOutcome(
        name=pkg.name,
        task=task,
        hash=fingerprint,
        cache=source,
        cached=cached,
        duration_ms=_elapsed_ms(started),
    )


def _emit(ctx: RunContext, event: plugins.PluginEvent) -> None:
    """Hand an event to the emitter. Emitter errors are reported, never raised."""
    try:
        ctx.emitter.emit(event)
    except Exception as e:
        ctx.console.print_debug(f"plugin event {event.kind} dropped: {e}")


def _try_remote(ctx: RunContext, pkg: Package, fingerprint: str) -> bool:
    """
    Remote tier lookup + download. Any RemoteCacheError degrades to a miss.
    Returns True when the artifact is now in the local tier.
    """
    url = ctx.remote_cache_url
    if not url:
        return False

    try:
        if not ctx.backend.remote_cache_exists(fingerprint, url):
            return False
    except RemoteCacheError as e:
        ctx.console.print_warning(f"Remote cache lookup failed for {pkg.name}: {e}")
        return False

    try:
        ctx.backend.download_remote_cache(fingerprint, url)
    except RemoteCacheError as e:
        ctx.console.print_warning(f"Remote cache download failed for {pkg.name}, running task instead: {e}")
        return False

    ctx.console.print_cache_hit(pkg.name, "remote")
    if ctx.options.explain:
        ctx.console.print_explain(f"remote cache hit (hash={fingerprint})")
    return True


def _upload_best_effort(ctx: RunContext, pkg: Package, fingerprint: str) -> None:
    """Upload failures are logged and dropped; they never fail the run."""
    url = ctx.remote_cache_url
    if not url or ctx.options.no_cache:
        return
    try:
        ctx.backend.upload_remote_cache(fingerprint, url)
    except RemoteCacheError as e:
        ctx.console.print_warning(f"Failed to upload cache for {pkg.name}: {e}")


def run_package_task(ctx: RunContext, pkg: Package, task: str, spec: TaskSpec) -> TaskOutcome:
    """
    One package's unit of work: prerequisites, then the cache decision for the
    primary task.

    Order of checks:
      dry run            -> synthetic cached outcome, nothing else happens
      force / no_cache   -> execute
      local tier hit     -> restore (CacheSource.LOCAL)
      remote tier hit    -> download + restore (CacheSource.REMOTE)
      miss               -> [clean], execute, best-effort upload (CacheSource.NONE)

    Raises:
        InvalidTaskConfig: invalid prerequisite config
        TaskExecutionFailure: anything else that went wrong for this package
    """
    spec.validate_prerequisites(task)
    started = time.monotonic()
    opts = ctx.options

    if opts.dry_run:
        ctx.console.print_dry_run(pkg.name, task)
        return _outcome(pkg, task, "", CacheSource.NONE, True, started)

    try:
        resolve_prerequisites(
            pkg,
            spec,
            config=ctx.config,
            packages=ctx.packages,
            options=opts,
            backend=ctx.backend,
        )
        fingerprint = ctx.backend.compute_fingerprint(pkg, task, spec)
    except (InvalidTaskConfig, TaskExecutionFailure):
        raise
    except Exception as e:
        raise TaskExecutionFailure(package=pkg.name, task=task, cause=e) from e

    _emit(ctx, plugins.before_task(pkg.name, task, fingerprint))

    try:
        if not opts.skip_cache_checks:
            if ctx.backend.is_cached_locally(fingerprint):
                ctx.console.print_cache_hit(pkg.name, "local")
                if opts.explain:
                    ctx.console.print_explain(f"local cache hit (hash={fingerprint})")
                _emit(ctx, plugins.cache_hit(pkg.name, task, fingerprint, "local"))
                ctx.backend.restore_outputs(pkg, fingerprint)
                _emit(ctx, plugins.after_task(pkg.name, task, fingerprint, True))
                return _outcome(pkg, task, fingerprint, CacheSource.LOCAL, True, started)

            if _try_remote(ctx, pkg, fingerprint):
                _emit(ctx, plugins.cache_hit(pkg.name, task, fingerprint, "remote"))
                ctx.backend.restore_outputs(pkg, fingerprint)
                _emit(ctx, plugins.after_task(pkg.name, task, fingerprint, True))
                return _outcome(pkg, task, fingerprint, CacheSource.REMOTE, True, started)

        ctx.console.print_cache_miss(pkg.name)
        if opts.explain:
            reason = "cache checks skipped" if opts.skip_cache_checks else "cache miss"
            ctx.console.print_explain(f"{reason} (hash={fingerprint})")
        _emit(ctx, plugins.cache_miss(pkg.name, task, fingerprint))

        if opts.clean:
            ctx.backend.clean_outputs(pkg, spec)

        try:
            ctx.backend.execute_task(pkg, task, spec, fingerprint, opts.strict, opts.no_cache)
        except Exception:
            _emit(ctx, plugins.after_task(pkg.name, task, fingerprint, False))
            raise
        _emit(ctx, plugins.after_task(pkg.name, task, fingerprint, True))
    except Exception as e:
        raise TaskExecutionFailure(package=pkg.name, task=task, cause=e) from e

    _upload_best_effort(ctx, pkg, fingerprint)
    return _outcome(pkg, task, fingerprint, CacheSource.NONE, False, started)
