from __future__ import annotations

import logging
import subprocess
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

from deptrace.graph import (
    DEFAULT_PACKAGES_DIR,
    LATEST,
    MajorVersion,
    PackageId,
    parse_major_version,
)

logger = logging.getLogger(__name__)
GIT_TIMEOUT = 30


def _git(args: list[str], cwd: Path | None = None) -> subprocess.CompletedProcess:
    logger.debug("Running: git %s", " ".join(args))
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True,
            text=True,
            cwd=cwd,
            timeout=GIT_TIMEOUT,
        )
    except subprocess.TimeoutExpired:
        raise RuntimeError(f"git command timed out after {GIT_TIMEOUT} seconds")
    if result.stdout:
        logger.debug("%s", result.stdout.rstrip())
    return result


def get_git_root(cwd: Path | None = None) -> Path:
    """Get the git repository root directory."""
    result = _git(["rev-parse", "--show-toplevel"], cwd=cwd)
    if result.returncode != 0:
        raise ValueError("Not a git repository. Run deptrace from within a git repo.")
    return Path(result.stdout.strip())


def ensure_base_ref(base_ref: str, repo_root: Path | None = None) -> None:
    """Make ``base_ref`` resolvable, fetching it first in a shallow clone."""
    if _git(["rev-parse", "--verify", base_ref], cwd=repo_root).returncode == 0:
        return

    logger.debug("%s is not available locally, fetching it (shallow clone?)", base_ref)
    fetch = _git(["fetch", "origin", base_ref], cwd=repo_root)
    if fetch.returncode != 0:
        raise RuntimeError(
            f"git fetch origin {base_ref} failed: {fetch.stderr.strip()}"
        )
    branch = _git(["branch", base_ref, "FETCH_HEAD"], cwd=repo_root)
    if branch.returncode != 0:
        raise RuntimeError(f"git branch {base_ref} failed: {branch.stderr.strip()}")


def _diff_names(ref: str, repo_root: Path | None) -> list[str]:
    result = _git(["diff", "--name-only", ref], cwd=repo_root)
    if result.returncode != 0:
        stderr = result.stderr.strip()
        if "unknown revision" in stderr or "bad revision" in stderr:
            raise ValueError(
                f"Could not resolve ref '{ref}'. "
                "Does the branch/ref exist? "
                "If running in CI, make sure the full history is fetched."
            )
        raise RuntimeError(f"git diff failed: {stderr}")
    return [f for f in result.stdout.strip().splitlines() if f]


def get_changed_files(base_ref: str, repo_root: Path | None = None) -> list[str]:
    """Get the files that differ between ``base_ref`` and the working tree.

    Returns paths relative to the git root. When the diff is empty we are
    most likely on the base branch itself, so the last commit is used instead.
    """
    if not base_ref or not base_ref.strip():
        raise ValueError("base_ref must not be empty")
    if "\x00" in base_ref:
        raise ValueError("base_ref must not contain null bytes")

    ensure_base_ref(base_ref, repo_root=repo_root)
    files = _diff_names(base_ref, repo_root)
    if not files:
        files = _diff_names(f"{base_ref}~1", repo_root)
    logger.debug("Changed files (%d): %s", len(files), files)
    return files


def relativize_to_workspace(
    changed_files: list[str],
    git_root: Path,
    workspace_root: Path,
) -> list[str]:
    """Re-express git-root-relative paths relative to a nested workspace.

    Files outside the workspace are dropped.
    """
    git_root = git_root.resolve()
    workspace_root = workspace_root.resolve()
    if workspace_root == git_root:
        return list(changed_files)

    try:
        prefix = workspace_root.relative_to(git_root).as_posix() + "/"
    except ValueError:
        logger.warning(
            "%s is not inside the git repository %s", workspace_root, git_root
        )
        return []
    return [f[len(prefix):] for f in changed_files if f.startswith(prefix)]


def classify_path(
    path: str, packages_dir: str = DEFAULT_PACKAGES_DIR
) -> PackageId | None:
    """Map one changed file to the package major line it belongs to.

    For "packages/a/b/c", returns PackageId("a", "latest").
    For "packages/a/v3/c", returns PackageId("a", 3).
    For "x" or "docs/a/b", returns None.
    """
    parts = path.split("/")
    if len(parts) < 3:
        # Not inside a package directory at all
        return None

    root_name, name, sub_dir = parts[:3]
    if root_name != packages_dir or not name:
        return None

    major = parse_major_version(sub_dir)
    if major is not None:
        return PackageId(name, major)
    return PackageId(name, LATEST)


def extract_changed(
    changed_files: Iterable[str],
    packages_dir: str = DEFAULT_PACKAGES_DIR,
) -> set[PackageId]:
    """Collect the distinct package ids touched by ``changed_files``."""
    versions_by_name: dict[str, set[MajorVersion]] = defaultdict(set)
    for filepath in changed_files:
        package_id = classify_path(filepath, packages_dir)
        if package_id is not None:
            versions_by_name[package_id.name].add(package_id.major_version)

    return {
        PackageId(name, major)
        for name, versions in versions_by_name.items()
        for major in versions
    }
