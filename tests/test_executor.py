from __future__ import annotations

import pytest

from monorun.cache import LocalCache
from monorun.config import TaskSpec
from monorun.errors import MissingScript, ScriptFailure
from monorun.executor import execute_task
from monorun.model import Package


def _package(tmp_path, scripts) -> Package:
    pkg_dir = tmp_path / "pkg"
    pkg_dir.mkdir(exist_ok=True)
    return Package(name="pkg", path=pkg_dir, scripts=scripts)


def test_runs_script_and_archives_outputs(tmp_path) -> None:
    package = _package(tmp_path, {"build": "mkdir -p dist && echo built > dist/out.txt"})
    cache = LocalCache(tmp_path / "cache")

    execute_task(package, "build", TaskSpec(outputs=["dist/**"]), "fp1", cache=cache)

    assert (package.path / "dist" / "out.txt").read_text().strip() == "built"
    assert cache.is_cached("fp1")


def test_script_sees_package_name(tmp_path) -> None:
    package = _package(tmp_path, {"build": 'echo "$MONORUN_PACKAGE" > who.txt'})
    execute_task(package, "build", TaskSpec(), "fp", cache=None)
    assert (package.path / "who.txt").read_text().strip() == "pkg"


def test_non_zero_exit_raises_script_failure(tmp_path) -> None:
    package = _package(tmp_path, {"build": "echo nope 1>&2; exit 3"})
    cache = LocalCache(tmp_path / "cache")

    with pytest.raises(ScriptFailure) as exc:
        execute_task(package, "build", TaskSpec(), "fp", cache=cache)

    assert exc.value.exit_code == 3
    assert "nope" in exc.value.output
    assert not cache.is_cached("fp")


def test_missing_script(tmp_path) -> None:
    package = _package(tmp_path, {})
    cache = LocalCache(tmp_path / "cache")

    with pytest.raises(MissingScript):
        execute_task(package, "build", TaskSpec(), "fp", cache=cache, strict=True)

    execute_task(package, "build", TaskSpec(), "fp", cache=cache)
    assert cache.is_cached("fp")


def test_cache_disabled_skips_archive(tmp_path) -> None:
    package = _package(tmp_path, {"build": "true"})
    cache = LocalCache(tmp_path / "cache")

    execute_task(package, "build", TaskSpec(), "fp", cache=cache, cache_disabled=True)

    assert not cache.is_cached("fp")
