# cli.py
from __future__ import annotations

import json
import subprocess
from pathlib import Path

import click

from monorun.backend import default_backend
from monorun.cache import LocalCache
from monorun.config import CONFIG_FILES, DEFAULT_CONFIG, cache_dir, find_config_file, load_config
from monorun.errors import MonorunError
from monorun.git_facts.git import changed_files, merge_base, uncommitted_files
from monorun.model import RunOptions
from monorun.plugins import create_emitter
from monorun.runner import run_task_graph
from monorun.ui.console import Console, get_console, set_console
from monorun.workspace import discover_packages, packages_for_files


def _fail(ctx: click.Context, exc: BaseException) -> None:
    get_console().print_exception(exc)
    ctx.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """monorun: cache-aware task runner for workspace monorepos."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.argument("task")
@click.option("--scope", default=None, help="Only run for this package and the packages that depend on it")
@click.option("--concurrency", default=0, type=int, show_default=True, help="Max parallel tasks (0 = CPU count)")
@click.option("--explain", is_flag=True, default=False, help="Explain every cache decision")
@click.option("--report-json", "report_json", default=None, help="Write a JSON report to PATH ('-' for stdout)")
@click.option("--dry-run", is_flag=True, default=False, help="Show what would run without running it")
@click.option("--print-graph", is_flag=True, default=False, help="Print 'dependency -> dependent' edges first")
@click.option("--no-cache", is_flag=True, default=False, help="Neither read nor write the cache")
@click.option("--force", is_flag=True, default=False, help="Ignore cache hits and run every task")
@click.option("--strict", is_flag=True, default=False, help="Fail when a package has no script for the task")
@click.option("--clean", is_flag=True, default=False, help="Remove declared outputs before running a task")
@click.pass_context
def run(ctx, task, scope, concurrency, explain, report_json, dry_run, print_graph, no_cache, force, strict, clean):
    """Run TASK in every workspace package, in dependency order."""
    console = get_console()
    root = Path(".")

    try:
        config = load_config(root)
        packages = discover_packages(root, config.workspaces)
    except MonorunError as e:
        _fail(ctx, e)
        return

    options = RunOptions(
        concurrency=concurrency,
        explain=explain,
        report_path=report_json,
        dry_run=dry_run,
        print_graph=print_graph,
        no_cache=no_cache,
        force=force,
        strict=strict,
        clean=clean,
    )
    emitter = create_emitter(config.plugins)

    try:
        report = run_task_graph(
            config,
            packages,
            task,
            scope,
            options,
            backend=default_backend(root),
            emitter=emitter,
            console=console,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        ctx.exit(130)
    except MonorunError as e:
        _fail(ctx, e)
    else:
        # keep stdout clean for the JSON report
        if report_json != "-":
            console.print_results(report.workspaces)
    finally:
        emitter.close(wait=True)


@cli.command()
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file")
@click.pass_context
def init(ctx, force):
    """Create a starter monorun.config.json."""
    console = get_console()
    existing = find_config_file(".")
    if existing is not None and not force:
        console.print_error(
            "Config already exists",
            f"Found {existing}.",
            suggestion="Re-run with --force to overwrite it.",
        )
        ctx.exit(1)

    target = existing or Path(CONFIG_FILES[0])
    target.write_text(json.dumps(DEFAULT_CONFIG, indent=2) + "\n", encoding="utf-8")
    console.print_info(f"Wrote {target}")


@cli.command()
@click.option("--since", default="origin/main", show_default=True, help="Git ref to compare against")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print a JSON array")
@click.pass_context
def changed(ctx, since, as_json):
    """List packages touched since a git ref (plus uncommitted changes)."""
    console = get_console()
    root = Path(".")

    try:
        config = load_config(root)
        packages = discover_packages(root, config.workspaces)
    except MonorunError as e:
        _fail(ctx, e)
        return

    try:
        try:
            base = merge_base(since)
        except subprocess.CalledProcessError:
            # no remote configured, shallow clone, etc.
            base = since
        files = set(changed_files(base, "HEAD")) | set(uncommitted_files())
    except (OSError, subprocess.CalledProcessError) as e:
        console.print_error("git failed", f"Could not compute changed files since '{since}'.", details=[str(e)])
        ctx.exit(1)
        return

    names = packages_for_files(packages, sorted(files), root)
    if as_json:
        click.echo(json.dumps(names))
    else:
        for name in names:
            click.echo(name)


@cli.group()
def cache():
    """Inspect and maintain the local cache."""


def _local_cache() -> LocalCache:
    return LocalCache(cache_dir("."))


@cache.command("inspect")
def cache_inspect():
    """Show cache location, entry count and size."""
    store = _local_cache()
    stats = store.inspect()
    click.echo(f"path: {store.root}")
    click.echo(f"entries: {stats.entries}")
    click.echo(f"bytes: {stats.bytes}")


@cache.command("ls")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print entries as JSON")
def cache_ls(as_json):
    """List cache entries."""
    entries = _local_cache().entries()
    if as_json:
        click.echo(json.dumps([{"file_name": e.file_name, "bytes": e.bytes, "modified": e.modified} for e in entries], indent=2))
        return
    for e in entries:
        click.echo(f"{e.file_name}\t{e.bytes}")


@cache.command("gc")
@click.option("--max-bytes", type=int, default=None, help="Keep the cache under this many bytes")
@click.option("--max-entries", type=int, default=None, help="Keep at most this many entries")
@click.option("--ttl-seconds", type=int, default=None, help="Remove entries older than this")
@click.option("--dry-run", is_flag=True, default=False, help="Only report what would be removed")
@click.pass_context
def cache_gc(ctx, max_bytes, max_entries, ttl_seconds, dry_run):
    """Remove old entries, oldest first."""
    if max_bytes is None and max_entries is None and ttl_seconds is None:
        get_console().print_error(
            "Nothing to do",
            "cache gc needs at least one limit.",
            suggestion="Pass --max-bytes, --max-entries or --ttl-seconds.",
        )
        ctx.exit(2)

    result = _local_cache().gc(
        max_bytes=max_bytes,
        max_entries=max_entries,
        ttl_seconds=ttl_seconds,
        dry_run=dry_run,
    )
    verb = "would remove" if dry_run else "removed"
    click.echo(f"{verb} {result.removed_entries} entries ({result.removed_bytes} bytes)")
    click.echo(f"remaining: {result.remaining_entries} entries ({result.remaining_bytes} bytes)")


@cache.command("clean")
def cache_clean():
    """Delete the whole local cache."""
    store = _local_cache()
    store.clear()
    click.echo(f"removed {store.root}")


if __name__ == "__main__":
    cli()
