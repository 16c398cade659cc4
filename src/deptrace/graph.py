from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

logger = logging.getLogger(__name__)

LATEST = "latest"

DEFAULT_PACKAGES_DIR = "packages"

MajorVersion = int | Literal["latest"]

_VERSION_DIR_RE = re.compile(r"^v(\d+)$")
_LEADING_MAJOR_RE = re.compile(r"^\D*(\d+)")


def parse_major_version(token: str) -> int | None:
    """Return N for a ``vN`` directory name, None for anything else."""
    match = _VERSION_DIR_RE.match(token)
    if match is None:
        return None
    return int(match.group(1))


@dataclass(frozen=True)
class PackageId:
    name: str
    major_version: MajorVersion

    def __str__(self) -> str:
        if self.major_version == LATEST:
            return self.name
        return f"{self.name} v{self.major_version}"


@dataclass(frozen=True, order=True)
class PackageRecord:
    name: str
    major_version: int
    dependencies: tuple[PackageId, ...] = field(default=(), compare=False)
    path: str = field(default="", compare=False)

    @property
    def id(self) -> PackageId:
        return PackageId(self.name, self.major_version)

    @property
    def desc(self) -> str:
        return f"{self.name} v{self.major_version}"


class PackageUniverse:
    """Read-only set of package records addressable by name and major version."""

    def __init__(self, records: Iterable[PackageRecord]):
        self._versions: dict[str, dict[int, PackageRecord]] = {}
        for record in records:
            versions = self._versions.setdefault(record.name, {})
            if record.major_version in versions:
                raise ValueError(
                    f"Duplicate package {record.desc!r} "
                    f"({versions[record.major_version].path} and {record.path})"
                )
            versions[record.major_version] = record

    def __len__(self) -> int:
        return sum(len(versions) for versions in self._versions.values())

    def all_packages(self) -> Iterator[PackageRecord]:
        for name in sorted(self._versions):
            versions = self._versions[name]
            for major in sorted(versions):
                yield versions[major]

    def try_get(self, package_id: PackageId) -> PackageRecord | None:
        if package_id.major_version == LATEST:
            return self.try_get_latest(package_id.name)
        return self._versions.get(package_id.name, {}).get(package_id.major_version)

    def try_get_latest(self, name: str) -> PackageRecord | None:
        versions = self._versions.get(name)
        if not versions:
            return None
        return versions[max(versions)]

    def dependencies_of(self, record: PackageRecord) -> Iterator[PackageRecord]:
        """Yield the live records of ``record``'s direct dependencies."""
        for dep_id in record.dependencies:
            dep = self.try_get(dep_id)
            if dep is None:
                logger.debug(
                    "%s: dependency %s is not in the universe", record.desc, dep_id
                )
                continue
            yield dep


def build_reverse_index(
    universe: PackageUniverse,
) -> dict[PackageRecord, set[PackageRecord]]:
    """Map every package to the set of packages that directly depend on it.

    Every package in the universe is a key, even when nothing depends on it.
    """
    reverse: dict[PackageRecord, set[PackageRecord]] = {
        record: set() for record in universe.all_packages()
    }
    for record in universe.all_packages():
        for dep in universe.dependencies_of(record):
            reverse[dep].add(record)
    return reverse


def _parse_dependency_version(value: object) -> MajorVersion:
    """Interpret a dependency spec from package.json as a major version."""
    if isinstance(value, bool):
        return LATEST
    if isinstance(value, int):
        return value
    if not isinstance(value, str):
        return LATEST
    value = value.strip()
    if value in ("", "*", LATEST):
        return LATEST
    major = parse_major_version(value)
    if major is not None:
        return major
    match = _LEADING_MAJOR_RE.match(value)
    if match is None:
        return LATEST
    return int(match.group(1))


def _read_package_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path} is not valid JSON: {exc}") from exc
    except (PermissionError, OSError) as exc:
        raise RuntimeError(f"Cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def _make_record(
    data: dict,
    *,
    name: str,
    major_version: int,
    rel_path: str,
) -> PackageRecord:
    raw_deps = data.get("dependencies", {})
    if not isinstance(raw_deps, dict):
        raise ValueError(f"{rel_path}/package.json: dependencies must be an object")
    deps = tuple(
        PackageId(dep_name, _parse_dependency_version(spec))
        for dep_name, spec in sorted(raw_deps.items())
    )
    return PackageRecord(
        name=name,
        major_version=major_version,
        dependencies=deps,
        path=rel_path,
    )


def load_universe(
    root: Path, packages_dir: str = DEFAULT_PACKAGES_DIR
) -> PackageUniverse:
    """Load every package under ``<root>/<packages_dir>``.

    Args:
        root: Repository root directory.
        packages_dir: Name of the top-level directory holding the packages.

    Returns:
        A PackageUniverse with one record per package major line. The
        package's own directory is its latest line; ``vN`` subdirectories
        hold older major lines.

    Raises:
        FileNotFoundError: If the packages directory doesn't exist.
        ValueError: If a package.json is malformed, a major line is
            declared twice, or a ``vN`` directory is not older than the
            package's own directory.
        RuntimeError: If a package.json cannot be read.
    """
    base = Path(root) / packages_dir
    if not base.is_dir():
        raise FileNotFoundError(f"Packages directory not found: {base}")

    records: list[PackageRecord] = []
    for pkg_dir in sorted(p for p in base.iterdir() if p.is_dir()):
        name = pkg_dir.name
        manifest = pkg_dir / "package.json"
        if not manifest.is_file():
            logger.warning(
                "Package directory %s has no package.json, skipping", pkg_dir
            )
            continue

        rel_path = f"{packages_dir}/{name}"
        data = _read_package_json(manifest)
        version = data.get("version")
        match = (
            _LEADING_MAJOR_RE.match(version) if isinstance(version, str) else None
        )
        if match is None:
            raise ValueError(
                f"{manifest} has no usable \"version\" field: {version!r}"
            )
        latest_major = int(match.group(1))
        records.append(
            _make_record(
                data, name=name, major_version=latest_major, rel_path=rel_path
            )
        )

        for sub_dir in sorted(p for p in pkg_dir.iterdir() if p.is_dir()):
            major = parse_major_version(sub_dir.name)
            if major is None:
                continue
            sub_manifest = sub_dir / "package.json"
            if not sub_manifest.is_file():
                logger.warning(
                    "Version directory %s has no package.json, skipping", sub_dir
                )
                continue
            # The package's own directory is always its latest major line
            if major >= latest_major:
                raise ValueError(
                    f"Version directory {rel_path}/{sub_dir.name} is not older "
                    f"than the latest line {rel_path} (v{latest_major})"
                )
            records.append(
                _make_record(
                    _read_package_json(sub_manifest),
                    name=name,
                    major_version=major,
                    rel_path=f"{rel_path}/{sub_dir.name}",
                )
            )

    universe = PackageUniverse(records)
    logger.debug("Loaded %d package versions from %s", len(universe), base)
    return universe
