# backend.py
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

from . import executor
from .cache import LocalCache, compute_fingerprint
from .config import TaskSpec, cache_dir
from .errors import RemoteCacheError
from .model import Package
from .remote import RemoteCacheClient


class TaskBackend:
    """
    Everything the scheduler needs from the outside world:
    fingerprinting, the two cache tiers and task execution.

    The scheduler only talks to this interface, so tests can hand it a spy.
    Remote operations raise RemoteCacheError on failure.
    """

    def compute_fingerprint(self, package: Package, task_name: str, spec: TaskSpec) -> str:
        raise NotImplementedError

    def is_cached_locally(self, fingerprint: str) -> bool:
        raise NotImplementedError

    def restore_outputs(self, package: Package, fingerprint: str) -> None:
        raise NotImplementedError

    def clean_outputs(self, package: Package, spec: TaskSpec) -> None:
        raise NotImplementedError

    def remote_cache_exists(self, fingerprint: str, endpoint: str) -> bool:
        raise NotImplementedError

    def download_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        raise NotImplementedError

    def upload_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        raise NotImplementedError

    def execute_task(
        self,
        package: Package,
        task_name: str,
        spec: TaskSpec,
        fingerprint: str,
        strict: bool,
        cache_disabled: bool,
    ) -> None:
        raise NotImplementedError


class WorkspaceBackend(TaskBackend):
    """Backend over the real filesystem cache, HTTP remote cache and shell scripts."""

    def __init__(self, repo_root: str | Path, cache: LocalCache):
        self.repo_root = Path(repo_root)
        self.cache = cache
        self._clients: Dict[str, RemoteCacheClient] = {}

    def _client(self, endpoint: str) -> RemoteCacheClient:
        client = self._clients.get(endpoint)
        if client is None:
            client = self._clients[endpoint] = RemoteCacheClient(endpoint)
        return client

    def compute_fingerprint(self, package: Package, task_name: str, spec: TaskSpec) -> str:
        return compute_fingerprint(package, task_name, spec, repo_root=self.repo_root)

    def is_cached_locally(self, fingerprint: str) -> bool:
        return self.cache.is_cached(fingerprint)

    def restore_outputs(self, package: Package, fingerprint: str) -> None:
        self.cache.restore_outputs(package, fingerprint)

    def clean_outputs(self, package: Package, spec: TaskSpec) -> None:
        self.cache.clean_outputs(package, spec)

    def remote_cache_exists(self, fingerprint: str, endpoint: str) -> bool:
        return self._client(endpoint).exists(fingerprint)

    def download_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        data = self._client(endpoint).download(fingerprint)
        try:
            self.cache.write_artifact(fingerprint, data)
        except OSError as e:
            raise RemoteCacheError(f"Could not store downloaded artifact {fingerprint[:12]}: {e}") from e

    def upload_remote_cache(self, fingerprint: str, endpoint: str) -> None:
        self._client(endpoint).upload(fingerprint, self.cache.artifact_path(fingerprint))

    def execute_task(
        self,
        package: Package,
        task_name: str,
        spec: TaskSpec,
        fingerprint: str,
        strict: bool,
        cache_disabled: bool,
    ) -> None:
        executor.execute_task(
            package,
            task_name,
            spec,
            fingerprint,
            cache=self.cache,
            strict=strict,
            cache_disabled=cache_disabled,
        )


def default_backend(repo_root: str | Path, cache_root: Optional[str | Path] = None) -> WorkspaceBackend:
    root = cache_root if cache_root is not None else cache_dir(repo_root)
    return WorkspaceBackend(repo_root, LocalCache(root))
