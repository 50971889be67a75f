# cache.py
from __future__ import annotations

import hashlib
import io
import json
import os
import shutil
import tarfile
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from .config import CONFIG_FILES, TaskSpec
from .model import Package

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Task-level caching:
#   fingerprint = sha256(
#       task name,
#       declared env var names + current values,
#       repo config file,
#       package lockfiles,
#       contents of the task's input files (inputs globs, or the whole
#       package minus outputs and default excludes)
#   )
#
# Cache artifact:
#   <cache root>/<fingerprint>.tar.gz holding the task's declared outputs,
#   paths relative to the package directory.
# ---------------------------------------------------------------------

DEFAULT_EXCLUDES = [
    ".git/**",
    ".monorun/**",
    "node_modules/**",
    "**/node_modules/**",
    "**/__pycache__/**",
    "**/*.pyc",
    "**/.DS_Store",
]

SKIP_DIRS = {".git", ".monorun", "node_modules", "__pycache__"}

LOCKFILES = (
    "bun.lock",
    "bun.lockb",
    "pnpm-lock.yaml",
    "yarn.lock",
    "package-lock.json",
)


def _sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _json_dumps_stable(obj) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _relpath(p: Path, root: Path) -> str:
    # lexical: symlinks (pnpm node_modules, shared sources) may point anywhere
    return p.relative_to(root).as_posix()


def _inside(p: Path, root: Path) -> bool:
    """False for symlinks that resolve outside `root`."""
    if not p.is_symlink():
        return True
    return p.resolve().is_relative_to(root.resolve())


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        while True:
            chunk = f.read(1024 * 1024)
            if not chunk:
                break
            h.update(chunk)
    return h.hexdigest()


def _matches_any_glob(rel: str, globs: Iterable[str]) -> bool:
    rel_path = Path(rel)
    for g in globs:
        g = g.rstrip("/")
        if rel_path.match(g):
            return True
        # "dist/**" should also exclude "dist/a/b.js"
        if g.endswith("/**") and (rel == g[:-3] or rel.startswith(g[:-3] + "/")):
            return True
    return False


def _expand(base: Path, patterns: Iterable[str]) -> List[Path]:
    """Files matched by glob patterns relative to `base`. Directories expand to their files."""
    out: List[Path] = []
    seen = set()
    for pat in patterns:
        pat = pat.strip()
        if not pat:
            continue
        for m in sorted(base.glob(pat)):
            if m.is_file():
                found = [m]
            elif m.is_dir():
                found = [f for f in sorted(m.rglob("*")) if f.is_file()]
            else:
                continue
            for f in found:
                if f not in seen and _inside(f, base):
                    seen.add(f)
                    out.append(f)
    return out


def _package_files(pkg_dir: Path, spec: TaskSpec) -> List[Path]:
    if spec.inputs:
        return _expand(pkg_dir, spec.inputs)

    excludes = list(DEFAULT_EXCLUDES) + list(spec.outputs)
    files: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(pkg_dir):
        dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
        for name in sorted(filenames):
            f = Path(dirpath) / name
            if not f.is_file() or not _inside(f, pkg_dir):
                continue
            if _matches_any_glob(_relpath(f, pkg_dir), excludes):
                continue
            files.append(f)
    return files


def compute_fingerprint(
    package: Package,
    task_name: str,
    spec: TaskSpec,
    *,
    repo_root: str | Path = ".",
) -> str:
    """
    Content fingerprint of (package, task). Identical fingerprints mean the
    task would produce identical outputs.
    """
    root = Path(repo_root)
    pkg_dir = Path(package.path)

    env = {key: os.environ.get(key, "") for key in spec.env}

    config_digest: Optional[str] = None
    for name in CONFIG_FILES:
        candidate = root / name
        if candidate.is_file():
            config_digest = _hash_file_contents(candidate)
            break

    lockfiles: Dict[str, str] = {}
    for name in LOCKFILES:
        candidate = pkg_dir / name
        if candidate.is_file():
            lockfiles[name] = _hash_file_contents(candidate)

    seen = set()
    files: List[Tuple[str, str]] = []
    for f in _package_files(pkg_dir, spec):
        rel = _relpath(f, pkg_dir)
        if rel in seen:
            continue
        seen.add(rel)
        files.append((rel, _hash_file_contents(f)))
    files.sort(key=lambda t: t[0])

    payload = {
        "v": 1,  # bump this if you change the fingerprint format
        "package": package.name,
        "task": task_name,
        "env": env,
        "config": config_digest,
        "lockfiles": lockfiles,
        "files": files,
    }
    return _sha256_str(_json_dumps_stable(payload))


# ---------------------------------------------------------------------
# Local cache tier
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class CacheStats:
    entries: int
    bytes: int


@dataclass(frozen=True)
class CacheEntry:
    file_name: str
    bytes: int
    modified: Optional[float]


@dataclass(frozen=True)
class GcResult:
    removed_entries: int
    removed_bytes: int
    remaining_entries: int
    remaining_bytes: int


class LocalCache:
    """
    File-based cache store:
      root/
        <fingerprint>.tar.gz
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def artifact_path(self, fingerprint: str) -> Path:
        return self.root / f"{fingerprint}.tar.gz"

    def is_cached(self, fingerprint: str) -> bool:
        return self.artifact_path(fingerprint).is_file()

    def archive_outputs(self, package: Package, spec: TaskSpec, fingerprint: str) -> Path:
        """
        Pack the task's outputs into the artifact for `fingerprint`.
        A task without outputs still gets an (empty) artifact so that the
        next run sees a cache hit.
        """
        self.root.mkdir(parents=True, exist_ok=True)
        pkg_dir = Path(package.path)
        art = self.artifact_path(fingerprint)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{fingerprint}.", suffix=".tmp", dir=self.root)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh, tarfile.open(fileobj=fh, mode="w:gz") as tar:
                for f in _expand(pkg_dir, spec.outputs):
                    try:
                        tar.add(str(f), arcname=_relpath(f, pkg_dir), recursive=False)
                    except FileNotFoundError:
                        # replaced by another run of the same task mid-archive
                        continue

                payload = _json_dumps_stable(
                    {"package": package.name, "fingerprint": fingerprint, "created_at_unix": int(time.time())}
                ).encode("utf-8")
                info = tarfile.TarInfo(name=f".monorun/{fingerprint}.json")
                info.size = len(payload)
                info.mtime = int(time.time())
                tar.addfile(info, fileobj=io.BytesIO(payload))
            os.replace(tmp, art)
        finally:
            tmp.unlink(missing_ok=True)
        return art

    def restore_outputs(self, package: Package, fingerprint: str) -> None:
        """Extract the artifact over the package directory."""
        pkg_dir = Path(package.path)
        with tarfile.open(str(self.artifact_path(fingerprint)), mode="r:gz") as tar:
            members = [m for m in tar.getmembers() if not m.name.startswith(".monorun/")]
            tar.extractall(path=str(pkg_dir), members=members, filter="data")

    def clean_outputs(self, package: Package, spec: TaskSpec) -> None:
        pkg_dir = Path(package.path)
        for pat in spec.outputs:
            for m in sorted(pkg_dir.glob(pat), reverse=True):
                if m.is_dir():
                    shutil.rmtree(m)
                elif m.is_file():
                    m.unlink()

    def write_artifact(self, fingerprint: str, data: bytes) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        art = self.artifact_path(fingerprint)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{fingerprint}.", suffix=".part", dir=self.root)
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, art)
        finally:
            tmp.unlink(missing_ok=True)
        return art

    # ---- maintenance ----

    def entries(self) -> List[CacheEntry]:
        if not self.root.exists():
            return []
        out = []
        for p in self.root.iterdir():
            if not p.is_file() or p.name.startswith("."):
                continue
            st = p.stat()
            out.append(CacheEntry(file_name=p.name, bytes=st.st_size, modified=st.st_mtime))
        out.sort(key=lambda e: e.file_name)
        return out

    def inspect(self) -> CacheStats:
        entries = self.entries()
        return CacheStats(entries=len(entries), bytes=sum(e.bytes for e in entries))

    def clear(self) -> None:
        if self.root.exists():
            shutil.rmtree(self.root)

    def gc(
        self,
        *,
        max_bytes: Optional[int] = None,
        max_entries: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
        dry_run: bool = False,
    ) -> GcResult:
        """
        Remove entries oldest-first until every limit holds.
        TTL-expired entries are always removed.
        """
        entries = self.entries()
        entries.sort(key=lambda e: (e.modified is None, e.modified or 0.0, e.file_name))

        total_entries = len(entries)
        total_bytes = sum(e.bytes for e in entries)
        cutoff = time.time() - ttl_seconds if ttl_seconds is not None else None

        removed_entries = 0
        removed_bytes = 0
        for e in entries:
            expired = cutoff is not None and e.modified is not None and e.modified < cutoff
            over_entries = max_entries is not None and total_entries > max_entries
            over_bytes = max_bytes is not None and total_bytes > max_bytes
            if not (expired or over_entries or over_bytes):
                continue

            if not dry_run:
                (self.root / e.file_name).unlink(missing_ok=True)
            removed_entries += 1
            removed_bytes += e.bytes
            total_entries -= 1
            total_bytes -= e.bytes

        return GcResult(
            removed_entries=removed_entries,
            removed_bytes=removed_bytes,
            remaining_entries=total_entries,
            remaining_bytes=total_bytes,
        )
