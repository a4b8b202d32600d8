"""
Project name discovery for loggers created without a name.
"""

import inspect
import tomllib
from pathlib import Path

from timberline.constants import PROJECT_FILE

_PACKAGE_DIR = Path(__file__).resolve().parent


def _find_caller() -> Path | None:
    """First stack frame whose file lives outside this package."""
    for frame_info in inspect.stack()[1:]:
        filename = frame_info.filename
        if filename.startswith("<"):
            continue
        path = Path(filename).resolve()
        if _PACKAGE_DIR not in path.parents:
            return path
    return None


def get_project_name(start: Path | None = None) -> str | None:
    """
    Name of the nearest project above ``start`` (default: the caller's file).

    Walks parent directories until a pyproject.toml with a ``[project].name``
    is found. Returns None when there is none.
    """
    path = start or _find_caller()
    if path is None:
        return None

    for directory in [path, *path.parents] if path.is_dir() else path.parents:
        project_file = directory / PROJECT_FILE
        if not project_file.is_file():
            continue
        with project_file.open("rb") as fh:
            data = tomllib.load(fh)
        name = data.get("project", {}).get("name")
        if name:
            return name
    return None
