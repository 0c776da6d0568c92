from __future__ import annotations

from pathlib import Path
import shutil

from .exceptions import OverlayError


def apply_overlay(source: Path, destination: Path) -> bool:
    """Copy ``source`` over ``destination`` recursively. Returns False if there is nothing to copy."""
    if not source.is_dir():
        return False
    destination.mkdir(parents=True, exist_ok=True)
    try:
        shutil.copytree(source, destination, dirs_exist_ok=True)
    except (shutil.Error, OSError) as exc:
        raise OverlayError(f"Failed to copy overrides from {source} to {destination}: {exc}") from exc
    return True
