# workspace.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List

from .errors import ConfigError
from .model import Package

MANIFEST = "package.json"
DEPENDENCY_FIELDS = ("dependencies", "devDependencies", "peerDependencies")


def load_package(directory: str | Path) -> Package:
    """
    Read one package.json into a Package.

    The manifest must have a "name". Dependency names are collected from
    dependencies, devDependencies and peerDependencies.
    """
    directory = Path(directory)
    manifest = directory / MANIFEST
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Package manifest not found: {manifest}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {manifest}: {e}") from e

    name = data.get("name") if isinstance(data, dict) else None
    if not isinstance(name, str) or not name:
        raise ConfigError(f"Package manifest has no name: {manifest}")

    deps: set[str] = set()
    for key in DEPENDENCY_FIELDS:
        section = data.get(key) or {}
        if isinstance(section, dict):
            deps.update(section.keys())

    scripts = data.get("scripts") or {}
    if not isinstance(scripts, dict):
        scripts = {}

    return Package(
        name=name,
        path=directory,
        dependencies=frozenset(deps),
        scripts={k: str(v) for k, v in scripts.items()},
    )


def discover_packages(root: str | Path, globs: Iterable[str]) -> List[Package]:
    """
    Expand workspace globs (relative to root) into packages.

    Every matching directory holding a package.json becomes a Package.
    Order is glob order, then path order within a glob.
    """
    root = Path(root)
    seen_dirs: set[Path] = set()
    by_name: Dict[str, Package] = {}
    packages: List[Package] = []

    for pattern in globs:
        pattern = pattern.strip().rstrip("/")
        if not pattern or pattern.startswith("!"):
            continue
        for candidate in sorted(root.glob(pattern)):
            if not candidate.is_dir() or not (candidate / MANIFEST).is_file():
                continue
            resolved = candidate.resolve()
            if resolved in seen_dirs:
                continue
            seen_dirs.add(resolved)

            pkg = load_package(candidate)
            if pkg.name in by_name:
                raise ConfigError(
                    f"Duplicate package name '{pkg.name}': {by_name[pkg.name].path} and {pkg.path}"
                )
            by_name[pkg.name] = pkg
            packages.append(pkg)

    return packages


def packages_for_files(packages: Iterable[Package], files: Iterable[str], root: str | Path = ".") -> List[str]:
    """Names of packages containing any of the given repo-relative files."""
    root = Path(root).resolve()
    affected: set[str] = set()
    paths = [root / f for f in files]
    for pkg in packages:
        pkg_dir = Path(pkg.path).resolve()
        if any(p == pkg_dir or pkg_dir in p.parents for p in paths):
            affected.add(pkg.name)
    return sorted(affected)
