# plugins.py
from __future__ import annotations

import json
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .config import PluginSpec
from .ui.console import get_console

PLUGIN_TIMEOUT_S = 30

BEFORE_TASK = "before_task"
CACHE_HIT = "cache_hit"
CACHE_MISS = "cache_miss"
AFTER_TASK = "after_task"


@dataclass(frozen=True)
class PluginEvent:
    """Lifecycle notification for a package's primary task."""
    kind: str
    workspace: str
    task: str
    hash: str
    source: Optional[str] = None     # cache_hit only: "local" | "remote"
    success: Optional[bool] = None   # after_task only

    def to_dict(self) -> dict:
        data = {"event": self.kind, "workspace": self.workspace, "task": self.task, "hash": self.hash}
        if self.source is not None:
            data["source"] = self.source
        if self.success is not None:
            data["success"] = self.success
        return data


def before_task(workspace: str, task: str, hash: str) -> PluginEvent:
    return PluginEvent(BEFORE_TASK, workspace, task, hash)


def cache_hit(workspace: str, task: str, hash: str, source: str) -> PluginEvent:
    return PluginEvent(CACHE_HIT, workspace, task, hash, source=source)


def cache_miss(workspace: str, task: str, hash: str) -> PluginEvent:
    return PluginEvent(CACHE_MISS, workspace, task, hash)


def after_task(workspace: str, task: str, hash: str, success: bool) -> PluginEvent:
    return PluginEvent(AFTER_TASK, workspace, task, hash, success=success)


class EventEmitter:
    """Fire-and-forget sink for lifecycle events. The default does nothing."""

    def emit(self, event: PluginEvent) -> None:
        pass

    def close(self, wait: bool = True) -> None:
        pass


NullEmitter = EventEmitter


class PluginManager(EventEmitter):
    """
    Runs each enabled plugin command once per event, with the event as JSON on
    stdin. Dispatch happens on a background thread: `emit` returns at once, and
    a slow, crashing or missing plugin is only ever reported, never raised.
    """

    def __init__(self, plugins: Sequence[PluginSpec]):
        self.plugins: List[PluginSpec] = [p for p in plugins if p.enabled]
        self._pool: Optional[ThreadPoolExecutor] = None
        if self.plugins:
            self._pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="monorun-plugins")

    def is_enabled(self) -> bool:
        return bool(self.plugins)

    def emit(self, event: PluginEvent) -> None:
        if self._pool is None:
            return
        try:
            self._pool.submit(self._dispatch, event)
        except RuntimeError:
            # pool already shut down at the end of the run
            get_console().print_debug(f"plugin event dropped after shutdown: {event.kind}")

    def _dispatch(self, event: PluginEvent) -> None:
        payload = json.dumps(event.to_dict())
        for plugin in self.plugins:
            try:
                proc = subprocess.run(
                    [plugin.command, *plugin.args],
                    input=payload,
                    text=True,
                    capture_output=True,
                    timeout=PLUGIN_TIMEOUT_S,
                )
            except (OSError, subprocess.SubprocessError) as e:
                get_console().print_debug(f"plugin '{plugin.command}' failed on {event.kind}: {e}")
                continue
            if proc.returncode != 0:
                get_console().print_debug(
                    f"plugin '{plugin.command}' exited {proc.returncode} on {event.kind}: {proc.stderr.strip()}"
                )

    def close(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)


def create_emitter(plugins: Sequence[PluginSpec]) -> EventEmitter:
    manager = PluginManager(plugins)
    return manager if manager.is_enabled() else NullEmitter()
