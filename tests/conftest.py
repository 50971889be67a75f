from __future__ import annotations

import json
import threading
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from monorun.backend import TaskBackend
from monorun.config import RepoConfig, TaskSpec
from monorun.errors import RemoteCacheError
from monorun.model import Package
from monorun.plugins import EventEmitter, PluginEvent
from monorun.ui.console import Console


class FakeBackend(TaskBackend):
    """
    In-memory spy for every collaborator the scheduler talks to.

    Fingerprints are "<package>:<task>". A successful execution stores the
    fingerprint in the local tier unless caching is disabled.
    """

    def __init__(
        self,
        *,
        local: Iterable[str] = (),
        remote: Iterable[str] = (),
        failing: Iterable[Tuple[str, str]] = (),
        remote_lookup_error: bool = False,
        download_error: bool = False,
        upload_error: bool = False,
        delay: float = 0.0,
        delays: Optional[Dict[str, float]] = None,
    ):
        self.local: Set[str] = set(local)
        self.remote: Set[str] = set(remote)
        self.failing = set(failing)
        self.remote_lookup_error = remote_lookup_error
        self.download_error = download_error
        self.upload_error = upload_error
        self.delay = delay
        self.delays = dict(delays or {})

        self.calls: List[Tuple[str, ...]] = []
        self._lock = threading.Lock()
        self._running = 0
        self.max_running = 0
        # (package, started, finished) per execution, monotonic clock
        self.spans: List[Tuple[str, float, float]] = []

    def _record(self, *call: str) -> None:
        with self._lock:
            self.calls.append(call)

    def called(self, method: str) -> List[Tuple[str, ...]]:
        return [c[1:] for c in self.calls if c[0] == method]

    def compute_fingerprint(self, package: Package, task_name: str, spec: TaskSpec) -> str:
        self._record("compute_fingerprint", package.name, task_name)
        return f"{package.name}:{task_name}"

    def is_cached_locally(self, fingerprint: str) -> bool:
        self._record("is_cached_locally", fingerprint)
        with self._lock:
            return fingerprint in self.local

    def restore_outputs(self, package: Package, fingerprint: str) -> None:
        self._record("restore_outputs", package.name, fingerprint)

    def clean_outputs(self, package: Package, spec: TaskSpec) -> None:
        self._record("clean_outputs", package.name)

    def remote_cache_exists(self, fingerprint: str, endpoint: str) -> bool:
        self._record("remote_cache_exists", fingerprint, endpoint)
        if self.remote_lookup_error:
            raise RemoteCacheError("connection refused")
        return fingerprint in self.remote

    def download_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        self._record("download_remote_cache", fingerprint, endpoint)
        if self.download_error:
            raise RemoteCacheError("HTTP 500")
        with self._lock:
            self.local.add(fingerprint)

    def upload_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        self._record("upload_remote_cache", fingerprint, endpoint)
        if self.upload_error:
            raise RemoteCacheError("HTTP 503")
        with self._lock:
            self.remote.add(fingerprint)

    def execute_task(
        self,
        package: Package,
        task_name: str,
        spec: TaskSpec,
        fingerprint: str,
        strict: bool,
        cache_disabled: bool,
    ) -> None:
        self._record("execute_task", package.name, task_name)
        started = time.monotonic()
        with self._lock:
            self._running += 1
            self.max_running = max(self.max_running, self._running)
        try:
            delay = self.delays.get(package.name, self.delay)
            if delay:
                time.sleep(delay)
            if (package.name, task_name) in self.failing:
                raise RuntimeError(f"{task_name} exploded in {package.name}")
            if not cache_disabled:
                with self._lock:
                    self.local.add(fingerprint)
        finally:
            with self._lock:
                self._running -= 1
                self.spans.append((package.name, started, time.monotonic()))


class RecordingEmitter(EventEmitter):
    def __init__(self) -> None:
        self.events: List[PluginEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: PluginEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds_for(self, workspace: str) -> List[str]:
        return [e.kind for e in self.events if e.workspace == workspace]


class ExplodingEmitter(EventEmitter):
    def emit(self, event: PluginEvent) -> None:
        raise RuntimeError("plugin host is gone")


def pkg(name: str, *deps: str) -> Package:
    return Package(name=name, dependencies=frozenset(deps))


def make_config(pipeline: Optional[Dict[str, dict]] = None, **kwargs) -> RepoConfig:
    return RepoConfig(
        workspaces=["packages/*"],
        pipeline={k: TaskSpec(**v) for k, v in (pipeline or {}).items()},
        **kwargs,
    )


def write_package(root: Path, rel: str, name: str, deps: Optional[Dict[str, str]] = None, scripts: Optional[Dict[str, str]] = None) -> Path:
    directory = root / rel
    directory.mkdir(parents=True, exist_ok=True)
    manifest = {"name": name, "version": "1.0.0"}
    if deps:
        manifest["dependencies"] = deps
    if scripts:
        manifest["scripts"] = scripts
    (directory / "package.json").write_text(json.dumps(manifest), encoding="utf-8")
    return directory


@pytest.fixture
def console() -> Console:
    return Console()


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()
