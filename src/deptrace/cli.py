from __future__ import annotations

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from deptrace import __version__
from deptrace.config import load_settings
from deptrace.diff import get_changed_files, get_git_root, relativize_to_workspace
from deptrace.graph import load_universe
from deptrace.traverse import AffectedResult, all_dependencies, get_affected_packages

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deptrace",
        description="Find changed packages and their dependers in a versioned monorepo",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--base",
        default=None,
        help="Base ref to diff against (default: [tool.deptrace] base, or main)",
    )
    parser.add_argument(
        "--root",
        default=None,
        help="Monorepo root containing the packages directory (default: git root)",
    )
    parser.add_argument(
        "--packages-dir",
        default=None,
        help="Top-level directory holding the packages (default: packages)",
    )
    output_group = parser.add_mutually_exclusive_group()
    output_group.add_argument(
        "--json",
        dest="json_output",
        action="store_true",
        help="Output results as JSON",
    )
    output_group.add_argument(
        "--names",
        action="store_true",
        help="Output affected packages, one per line",
    )
    parser.add_argument(
        "--with-dependencies",
        action="store_true",
        help="Also list every package the affected packages depend on",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose/debug logging to stderr",
    )
    return parser


def run(args: argparse.Namespace) -> dict:
    """Orchestrate the full pipeline: settings -> universe -> diff -> closure."""
    git_root = None
    if args.root is None:
        git_root = get_git_root(cwd=Path.cwd())
        root = git_root.resolve()
    else:
        root = Path(args.root).resolve()

    settings = load_settings(root / "pyproject.toml")
    packages_dir = args.packages_dir or settings.packages_dir
    base = args.base or settings.base

    universe = load_universe(root, packages_dir)

    if git_root is None:
        git_root = get_git_root(cwd=root)
    changed_files = get_changed_files(base, repo_root=git_root)
    workspace_files = relativize_to_workspace(changed_files, git_root, root)

    result = get_affected_packages(universe, workspace_files, packages_dir)

    dependencies = []
    if args.with_dependencies:
        dependencies = all_dependencies(universe, result.affected)

    return {
        "result": result,
        "all_dependencies": dependencies,
        "changed_files": workspace_files,
    }


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(name)s: %(message)s",
    )

    try:
        output = run(args)
    except (
        FileNotFoundError,
        ValueError,
        RuntimeError,
        subprocess.CalledProcessError,
        subprocess.TimeoutExpired,
        OSError,
    ) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    result: AffectedResult = output["result"]

    if args.json_output:
        out = result.to_dict()
        if args.with_dependencies:
            out["all_dependencies"] = [p.desc for p in output["all_dependencies"]]
        print(json.dumps(out))
    elif args.names:
        for pkg in result.affected:
            print(pkg.desc)
    else:
        _print_human(output, with_dependencies=args.with_dependencies)


def _print_human(output: dict, *, with_dependencies: bool = False) -> None:
    result: AffectedResult = output["result"]

    if not result.changed_packages:
        print("No changed packages.")
        return

    print(f"Changed packages ({len(result.changed_packages)}):")
    for pkg in result.changed_packages:
        print(f"  - {pkg.desc}")

    if result.dependent_packages:
        print()
        print(f"Dependent packages ({len(result.dependent_packages)}):")
        for pkg in result.dependent_packages:
            print(f"  - {pkg.desc}")

    if with_dependencies:
        dependencies = output["all_dependencies"]
        print()
        print(f"All dependencies ({len(dependencies)}):")
        for pkg in dependencies:
            print(f"  - {pkg.desc}")
