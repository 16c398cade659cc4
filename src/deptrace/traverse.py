from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

from deptrace.diff import extract_changed
from deptrace.graph import (
    DEFAULT_PACKAGES_DIR,
    PackageRecord,
    PackageUniverse,
    build_reverse_index,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=Hashable)


@dataclass
class AffectedResult:
    changed_packages: list[PackageRecord] = field(default_factory=list)
    dependent_packages: list[PackageRecord] = field(default_factory=list)

    @property
    def affected(self) -> list[PackageRecord]:
        return sort_packages([*self.changed_packages, *self.dependent_packages])

    def to_dict(self) -> dict[str, list[str]]:
        return {
            "changed_packages": [p.desc for p in self.changed_packages],
            "dependent_packages": [p.desc for p in self.dependent_packages],
        }


def transitive_closure(
    initial: Iterable[T],
    get_related: Callable[[T], Iterable[T]],
) -> set[T]:
    """Worklist traversal returning everything reachable from ``initial``.

    Args:
        initial: Seed items; always part of the result.
        get_related: Returns the items directly related to a given item.

    Returns:
        The seeds plus every item reachable by repeatedly applying
        ``get_related``. Items are enqueued at most once, so cycles terminate.
    """
    seen: set[T] = set()
    queue: deque[T] = deque()

    for item in initial:
        if item not in seen:
            seen.add(item)
            queue.append(item)

    while queue:
        current = queue.popleft()
        for related in get_related(current):
            if related not in seen:
                seen.add(related)
                queue.append(related)

    return seen


def sort_packages(packages: Iterable[PackageRecord]) -> list[PackageRecord]:
    """Deduplicate and order packages by name, then major version."""
    return sorted(set(packages))


def collect_dependers(
    changed: Iterable[PackageRecord],
    reverse_deps: dict[PackageRecord, set[PackageRecord]],
) -> list[PackageRecord]:
    """All packages depending on ``changed``, directly or not.

    The ``changed`` packages themselves are left out.
    """
    changed = list(changed)
    dependers = transitive_closure(changed, lambda pkg: reverse_deps.get(pkg, set()))
    dependers.difference_update(changed)
    return sort_packages(dependers)


def all_dependencies(
    universe: PackageUniverse,
    packages: Iterable[PackageRecord],
) -> list[PackageRecord]:
    """``packages`` plus everything they depend on, transitively."""
    return sort_packages(transitive_closure(packages, universe.dependencies_of))


def get_affected_packages(
    universe: PackageUniverse,
    changed_files: Iterable[str],
    packages_dir: str = DEFAULT_PACKAGES_DIR,
) -> AffectedResult:
    """Find the packages changed by ``changed_files`` and everything depending on them.

    Changed ids with no live package are treated as deleted and ignored.
    """
    changed: set[PackageRecord] = set()
    for package_id in extract_changed(changed_files, packages_dir):
        record = universe.try_get(package_id)
        if record is None:
            logger.debug("%s no longer exists, assuming it was deleted", package_id)
            continue
        changed.add(record)

    reverse_deps = build_reverse_index(universe)
    dependers = collect_dependers(changed, reverse_deps)
    logger.debug("%d changed packages, %d dependers", len(changed), len(dependers))
    return AffectedResult(
        changed_packages=sort_packages(changed),
        dependent_packages=dependers,
    )
