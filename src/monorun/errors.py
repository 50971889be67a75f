# errors.py
from __future__ import annotations

from dataclasses import dataclass


class MonorunError(Exception):
    """Base class for every error the runner reports to the CLI."""


class ConfigError(MonorunError):
    """Invalid or missing repository configuration."""


class ScopeNotFound(MonorunError):
    def __init__(self, scope: str):
        super().__init__(f"Scope '{scope}' not found in workspaces.")
        self.scope = scope


class InvalidTaskConfig(MonorunError):
    def __init__(self, task: str, message: str = "invalid depends_on entry: empty string"):
        super().__init__(f"Task '{task}' has {message}")
        self.task = task


class CircularDependency(MonorunError):
    def __init__(self, remaining: list[str]):
        super().__init__(f"Circular dependency between packages: {remaining}")
        self.remaining = remaining


class ConcurrencyPermitFailure(MonorunError):
    """The run-wide permit pool was closed while a unit was waiting for it."""


class RemoteCacheError(MonorunError):
    """A remote cache request failed. Never fatal for a run."""


@dataclass
class TaskExecutionFailure(MonorunError):
    """
    A package's task failed. Carries the package context so the CLI can name
    the failing package next to the underlying cause.
    """
    package: str
    task: str
    cause: BaseException

    def __str__(self) -> str:
        return f"[{self.package}] task '{self.task}' failed: {self.cause}"


@dataclass
class ScriptFailure(MonorunError):
    package: str
    task: str
    cmd: str
    exit_code: int
    output: str = ""

    def __str__(self) -> str:
        return f"[{self.package}] script '{self.task}' failed (exit={self.exit_code}): {self.cmd}"


@dataclass
class MissingScript(MonorunError):
    package: str
    task: str

    def __str__(self) -> str:
        return f"[{self.package}] has no script named '{self.task}' (strict mode)"
