from __future__ import annotations

import os
from pathlib import Path


def resolve_local_path(raw_path: str | None) -> str:
    """Normalize a configured path.

    - Expands ~ and environment variables
    - Relative paths stay relative to the working directory
    """
    if not raw_path:
        return ""

    return os.path.expandvars(os.path.expanduser(raw_path.strip()))


def ensure_parent_dir(path: str | Path) -> Path:
    """Create the parent directory of ``path`` if needed and return it as a Path."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    return target
