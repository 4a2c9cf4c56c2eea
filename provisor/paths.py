"""Path utilities for finding the provisor project root and its files."""
from __future__ import annotations

from pathlib import Path
from typing import Optional


PROVISOR_DIRNAME = ".provisor"
SPECS_SUBDIR = "specs"
CONFIG_FILENAME = "config"
DB_FILENAME = "provisor.db"


def find_project_root(start_path: Optional[Path] = None) -> Optional[Path]:
    """Find the project root by walking up the directory tree.

    The root is the nearest directory containing a .provisor folder.

    Args:
        start_path: Starting directory (defaults to current working directory)

    Returns:
        Path to project root, or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = start_path.resolve()
    for parent in [current] + list(current.parents):
        if (parent / PROVISOR_DIRNAME).is_dir():
            return parent
    return None


def get_project_dir(start_path: Optional[Path] = None) -> Optional[Path]:
    """Get the .provisor directory for the current project, or None."""
    root = find_project_root(start_path)
    if root:
        return root / PROVISOR_DIRNAME
    return None


def get_project_config_path(start_path: Optional[Path] = None) -> Optional[Path]:
    project_dir = get_project_dir(start_path)
    if project_dir:
        return project_dir / CONFIG_FILENAME
    return None


def get_project_db_path(start_path: Optional[Path] = None) -> Optional[Path]:
    project_dir = get_project_dir(start_path)
    if project_dir:
        return project_dir / DB_FILENAME
    return None


def get_project_specs_dir(start_path: Optional[Path] = None) -> Optional[Path]:
    project_dir = get_project_dir(start_path)
    if project_dir:
        return project_dir / SPECS_SUBDIR
    return None


def resolve_spec_path(arg: str, base: Optional[Path] = None) -> Path:
    """Resolve a spec argument to a file path.

    Tries, in order: the argument as a path, then .provisor/specs/<arg>
    with .yaml/.yml suffixes, then the argument relative to base.
    """
    base = base or Path.cwd()
    p = Path(arg)
    if p.exists():
        return p.resolve()
    specs_dir = get_project_specs_dir(base)
    if specs_dir:
        for name in (arg, f"{arg}.yaml", f"{arg}.yml"):
            cand = specs_dir / name
            if cand.exists():
                return cand.resolve()
    return (base / arg).resolve()


def ensure_in_project() -> Path:
    """Ensure we're in a provisor project and return the root.

    Raises:
        RuntimeError: If not in a provisor project
    """
    root = find_project_root()
    if not root:
        raise RuntimeError(
            "Not in a provisor project. Run 'provisor init' to initialize, "
            "or navigate to a directory within a provisor project."
        )
    return root
