from __future__ import annotations

import io
import os
import tarfile
from concurrent.futures import ThreadPoolExecutor

import pytest

from monorun.cache import LocalCache, compute_fingerprint
from monorun.config import TaskSpec
from monorun.model import Package


def _package(tmp_path) -> Package:
    pkg_dir = tmp_path / "packages" / "a"
    (pkg_dir / "src").mkdir(parents=True)
    (pkg_dir / "src" / "index.js").write_text("export const a = 1;\n")
    (pkg_dir / "package.json").write_text('{"name": "a"}')
    return Package(name="a", path=pkg_dir)


def test_fingerprint_is_stable_and_content_sensitive(tmp_path) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(outputs=["dist/**"])

    first = compute_fingerprint(package, "build", spec, repo_root=tmp_path)
    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) == first
    assert compute_fingerprint(package, "test", spec, repo_root=tmp_path) != first

    (package.path / "src" / "index.js").write_text("export const a = 2;\n")
    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) != first


def test_fingerprint_ignores_outputs_and_node_modules(tmp_path) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(outputs=["dist/**"])
    before = compute_fingerprint(package, "build", spec, repo_root=tmp_path)

    (package.path / "dist").mkdir()
    (package.path / "dist" / "index.js").write_text("built")
    (package.path / "node_modules" / "x").mkdir(parents=True)
    (package.path / "node_modules" / "x" / "index.js").write_text("dep")

    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) == before


def test_fingerprint_tracks_declared_env(tmp_path, monkeypatch) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(env=["NODE_ENV"])

    monkeypatch.setenv("NODE_ENV", "development")
    dev = compute_fingerprint(package, "build", spec, repo_root=tmp_path)
    monkeypatch.setenv("NODE_ENV", "production")
    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) != dev


def test_fingerprint_uses_only_inputs_when_declared(tmp_path) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(inputs=["src/**"])
    before = compute_fingerprint(package, "lint", spec, repo_root=tmp_path)

    (package.path / "README.md").write_text("docs")
    assert compute_fingerprint(package, "lint", spec, repo_root=tmp_path) == before


def test_fingerprint_skips_symlinks_leaving_the_package(tmp_path) -> None:
    package = _package(tmp_path)
    store = tmp_path / "store"
    (store / "typescript" / "bin").mkdir(parents=True)
    (store / "typescript" / "bin" / "tsc").write_text("#!/usr/bin/env node\n")
    (store / "shared.js").write_text("export const shared = 1;\n")
    (package.path / "node_modules" / ".bin").mkdir(parents=True)
    os.symlink(store / "typescript" / "bin" / "tsc", package.path / "node_modules" / ".bin" / "tsc")
    os.symlink(store / "typescript", package.path / "node_modules" / "typescript")
    os.symlink(store / "shared.js", package.path / "src" / "shared.js")
    os.symlink(package.path / "src" / "index.js", package.path / "src" / "alias.js")

    spec = TaskSpec(outputs=["dist/**"])
    before = compute_fingerprint(package, "build", spec, repo_root=tmp_path)
    narrowed = compute_fingerprint(package, "build", TaskSpec(inputs=["src/**"]), repo_root=tmp_path)

    (store / "shared.js").write_text("export const shared = 2;\n")
    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) == before
    assert compute_fingerprint(package, "build", TaskSpec(inputs=["src/**"]), repo_root=tmp_path) == narrowed

    # in-package files, and links into them, still count
    (package.path / "src" / "index.js").write_text("export const a = 3;\n")
    assert compute_fingerprint(package, "build", spec, repo_root=tmp_path) != before


def test_archive_and_restore_outputs(tmp_path) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(outputs=["dist/**"])
    (package.path / "dist" / "nested").mkdir(parents=True)
    (package.path / "dist" / "nested" / "index.js").write_text("built")

    cache = LocalCache(tmp_path / "cache")
    art = cache.archive_outputs(package, spec, "abc123")

    assert art == tmp_path / "cache" / "abc123.tar.gz"
    assert cache.is_cached("abc123")
    with tarfile.open(art) as tar:
        names = tar.getnames()
    assert "dist/nested/index.js" in names
    assert ".monorun/abc123.json" in names

    cache.clean_outputs(package, spec)
    assert not (package.path / "dist" / "nested" / "index.js").exists()

    cache.restore_outputs(package, "abc123")
    assert (package.path / "dist" / "nested" / "index.js").read_text() == "built"
    assert not (package.path / ".monorun").exists()


def test_concurrent_archives_of_one_fingerprint(tmp_path) -> None:
    package = _package(tmp_path)
    spec = TaskSpec(outputs=["dist/**"])
    (package.path / "dist").mkdir()
    (package.path / "dist" / "index.js").write_text("built")
    cache = LocalCache(tmp_path / "cache")

    with ThreadPoolExecutor(max_workers=8) as pool:
        archived = list(pool.map(lambda _: cache.archive_outputs(package, spec, "same"), range(16)))
        written = list(pool.map(lambda _: cache.write_artifact("blob", b"payload"), range(16)))

    assert set(archived) == {cache.artifact_path("same")}
    assert set(written) == {cache.artifact_path("blob")}
    assert sorted(os.listdir(cache.root)) == ["blob.tar.gz", "same.tar.gz"]
    with tarfile.open(cache.artifact_path("same")) as tar:
        assert "dist/index.js" in tar.getnames()


def test_restore_refuses_members_outside_the_package(tmp_path) -> None:
    package = _package(tmp_path)
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(name="../../escaped.txt")
        info.size = 4
        tar.addfile(info, fileobj=io.BytesIO(b"evil"))
    cache = LocalCache(tmp_path / "cache")
    cache.write_artifact("bad", buf.getvalue())

    with pytest.raises(tarfile.FilterError):
        cache.restore_outputs(package, "bad")
    assert not (tmp_path / "escaped.txt").exists()


def test_task_without_outputs_still_caches(tmp_path) -> None:
    package = _package(tmp_path)
    cache = LocalCache(tmp_path / "cache")
    cache.archive_outputs(package, TaskSpec(), "empty")
    assert cache.is_cached("empty")


def test_write_artifact_and_inspect(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    assert cache.inspect().entries == 0

    cache.write_artifact("f1", b"12345")
    cache.write_artifact("f2", b"123")

    stats = cache.inspect()
    assert stats.entries == 2
    assert stats.bytes == 8
    assert [e.file_name for e in cache.entries()] == ["f1.tar.gz", "f2.tar.gz"]


def test_gc_removes_oldest_first(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    for i, name in enumerate(["old", "mid", "new"]):
        path = cache.write_artifact(name, b"x" * 10)
        os.utime(path, (1_000_000 + i, 1_000_000 + i))

    preview = cache.gc(max_entries=1, dry_run=True)
    assert preview.removed_entries == 2
    assert cache.inspect().entries == 3

    result = cache.gc(max_entries=1)
    assert result.removed_entries == 2
    assert result.remaining_entries == 1
    assert [e.file_name for e in cache.entries()] == ["new.tar.gz"]


def test_gc_ttl_and_bytes(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    stale = cache.write_artifact("stale", b"x" * 10)
    os.utime(stale, (1_000_000, 1_000_000))
    cache.write_artifact("fresh", b"x" * 10)

    result = cache.gc(ttl_seconds=3600)
    assert result.removed_entries == 1
    assert [e.file_name for e in cache.entries()] == ["fresh.tar.gz"]

    assert cache.gc(max_bytes=5).remaining_bytes == 0


def test_clear(tmp_path) -> None:
    cache = LocalCache(tmp_path / "cache")
    cache.write_artifact("f", b"data")
    cache.clear()
    assert cache.entries() == []
