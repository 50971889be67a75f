"""Console output formatting utilities for monorun."""

from __future__ import annotations

import sys
import threading
from typing import Optional


class Console:
    """Centralized console output formatting. Safe to call from worker threads."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug
        self._lock = threading.Lock()

    def _out(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_run_started(self, task: str, package_count: int, scope: Optional[str] = None) -> None:
        """Print run start information."""
        target = f"scope '{scope}'" if scope else "all packages"
        self._out(f"\nRunning task '{task}' for {target} ({package_count} packages)...")

    def print_graph_edge(self, line: str) -> None:
        self._out(line)

    def print_dry_run(self, package: str, task: str) -> None:
        self._out(f"DRY RUN: {package} -> {task}")

    def print_cache_hit(self, package: str, source: str) -> None:
        """Print cache hit message (source: local | remote)."""
        self._out(f"{source.upper()} CACHE HIT: {package}")

    def print_cache_miss(self, package: str) -> None:
        self._out(f"CACHE MISS: {package}")

    def print_explain(self, message: str) -> None:
        self._out(f"EXPLAIN: {message}")

    def print_task_start(self, package: str, task: str, cmd: str) -> None:
        self._out(f"[{package}] > {task}: {cmd}")

    def print_task_output(self, package: str, output: str) -> None:
        self._out(*(f"[{package}] {line}" for line in output.rstrip().splitlines()))

    def print_finished(self, package: str) -> None:
        self._out(f"Finished task for {package}")

    def print_task_failed(self, package: str, reason: str) -> None:
        """Print the failing package and the underlying cause."""
        if self.debug:
            self._out(f"\nError in task for {package}: {reason}", err=True)
        else:
            first = reason.split("\n")[0] if reason else "Unknown error"
            self._out(f"\nError in task for {package}: {first}", err=True)

    def print_warning(self, message: str) -> None:
        self._out(f"WARNING: {message}", err=True)

    def print_results(self, outcomes) -> None:
        """Print final results summary."""
        self._out("\n" + "=" * 40, "RESULTS", "=" * 40)
        for o in outcomes:
            status = f"CACHED ({o.cache.value})" if o.cached else "SUCCESS"
            self._out(f"  {o.name}: {status} {o.duration_ms}ms")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._out(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            with self._lock:
                traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    def print_info(self, message: str) -> None:
        self._out(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._out(f"[DEBUG] {message}", err=True)


# Global console instance (initialized by the CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
