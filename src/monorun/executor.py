# executor.py
from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Optional

from .cache import LocalCache
from .config import TaskSpec
from .errors import MissingScript, ScriptFailure
from .model import Package
from .ui.console import get_console

OUTPUT_TAIL = 4000


def _script_env(package: Package) -> dict:
    env = os.environ.copy()
    bin_dir = Path(package.path).resolve() / "node_modules" / ".bin"
    env["PATH"] = os.pathsep.join([str(bin_dir), env.get("PATH", "")])
    env["MONORUN_PACKAGE"] = package.name
    return env


def execute_task(
    package: Package,
    task_name: str,
    spec: TaskSpec,
    fingerprint: str,
    *,
    cache: Optional[LocalCache],
    strict: bool = False,
    cache_disabled: bool = False,
) -> None:
    """
    Run the package's script for `task_name` and archive its outputs.

    - no script: MissingScript in strict mode, otherwise nothing to do
    - non-zero exit: ScriptFailure
    - success: outputs archived under `fingerprint` unless caching is disabled
    """
    console = get_console()
    cmd = package.scripts.get(task_name)

    if cmd is None:
        if strict:
            raise MissingScript(package=package.name, task=task_name)
        console.print_debug(f"[{package.name}] no '{task_name}' script, nothing to run")
    else:
        cwd = Path(package.path)
        if not cwd.exists():
            raise FileNotFoundError(f"[{package.name}] package directory not found: {cwd}")

        console.print_task_start(package.name, task_name, cmd)
        proc = subprocess.run(
            cmd,
            shell=True,
            cwd=str(cwd),
            env=_script_env(package),
            text=True,
            capture_output=True,
        )
        if proc.stdout:
            console.print_task_output(package.name, proc.stdout)

        if proc.returncode != 0:
            raise ScriptFailure(
                package=package.name,
                task=task_name,
                cmd=cmd,
                exit_code=proc.returncode,
                output=(proc.stdout + proc.stderr)[-OUTPUT_TAIL:],
            )

    if cache is not None and not cache_disabled:
        cache.archive_outputs(package, spec, fingerprint)
