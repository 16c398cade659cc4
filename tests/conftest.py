import json

import pytest

from deptrace.graph import LATEST, PackageId, PackageRecord, PackageUniverse


def make_record(name, major=1, deps=()):
    """Build a record; ``deps`` holds names (latest) or (name, major) pairs."""
    dep_ids = []
    for dep in deps:
        if isinstance(dep, tuple):
            dep_ids.append(PackageId(*dep))
        else:
            dep_ids.append(PackageId(dep, LATEST))
    return PackageRecord(
        name=name,
        major_version=major,
        dependencies=tuple(dep_ids),
        path=f"packages/{name}",
    )


def write_package(root, rel_dir, version, dependencies=None):
    pkg_dir = root / rel_dir
    pkg_dir.mkdir(parents=True, exist_ok=True)
    data = {"name": pkg_dir.name, "version": version}
    if dependencies is not None:
        data["dependencies"] = dependencies
    (pkg_dir / "package.json").write_text(json.dumps(data))
    return pkg_dir


@pytest.fixture
def chain_universe():
    """A ← B ← C: B depends on A, C depends on B."""
    return PackageUniverse(
        [
            make_record("A"),
            make_record("B", deps=["A"]),
            make_record("C", deps=["B"]),
        ]
    )


@pytest.fixture
def diamond_universe():
    """app → api → shared, app → worker → shared."""
    return PackageUniverse(
        [
            make_record("app", deps=["api", "worker"]),
            make_record("api", deps=["shared"]),
            make_record("shared"),
            make_record("worker", deps=["shared"]),
        ]
    )


@pytest.fixture
def versioned_universe():
    """lodash has major lines 3 and 4; legacy pins lodash v3, modern uses latest."""
    return PackageUniverse(
        [
            make_record("lodash", major=3),
            make_record("lodash", major=4),
            make_record("legacy", deps=[("lodash", 3)]),
            make_record("modern", major=2, deps=["lodash"]),
            make_record("tool", deps=["legacy"]),
        ]
    )


@pytest.fixture
def versioned_repo(tmp_path):
    """On-disk layout equivalent to ``versioned_universe``."""
    write_package(tmp_path, "packages/lodash", "4.17.21")
    write_package(tmp_path, "packages/lodash/v3", "3.10.1")
    write_package(tmp_path, "packages/legacy", "1.0.0", {"lodash": "3"})
    write_package(tmp_path, "packages/modern", "2.3.0", {"lodash": "*", "react": "^18.2.0"})
    write_package(tmp_path, "packages/tool", "1.2.0", {"legacy": "latest"})
    return tmp_path
