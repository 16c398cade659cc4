from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from deptrace.graph import DEFAULT_PACKAGES_DIR

logger = logging.getLogger(__name__)

DEFAULT_BASE = "main"
KNOWN_KEYS = {"packages-dir", "base"}


@dataclass
class Settings:
    packages_dir: str = DEFAULT_PACKAGES_DIR
    base: str = DEFAULT_BASE


def load_settings(pyproject_path: Path) -> Settings:
    """Read the ``[tool.deptrace]`` table of a pyproject.toml.

    A missing file or table yields the defaults.

    Raises:
        ValueError: If the file is not valid TOML or a value has the wrong type.
        RuntimeError: If the file exists but cannot be read.
    """
    settings = Settings()
    if not pyproject_path.is_file():
        return settings

    try:
        data = tomllib.loads(pyproject_path.read_text())
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{pyproject_path} is not valid TOML: {exc}") from exc
    except (PermissionError, OSError) as exc:
        raise RuntimeError(f"Cannot read {pyproject_path}: {exc}") from exc

    table = data.get("tool", {}).get("deptrace", {})
    if not isinstance(table, dict):
        raise ValueError(f"{pyproject_path} [tool.deptrace] must be a table")

    unknown = sorted(set(table) - KNOWN_KEYS)
    if unknown:
        logger.warning(
            "Ignoring unknown [tool.deptrace] keys in %s: %s",
            pyproject_path,
            unknown,
        )

    for key, attr in (("packages-dir", "packages_dir"), ("base", "base")):
        if key not in table:
            continue
        value = table[key]
        if not isinstance(value, str) or not value.strip():
            raise ValueError(
                f"{pyproject_path} [tool.deptrace] {key} must be a non-empty string"
            )
        setattr(settings, attr, value)

    logger.debug("Settings from %s: %s", pyproject_path, settings)
    return settings
