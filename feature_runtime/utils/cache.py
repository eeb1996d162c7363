"""Model cache directory helpers.

Copyright 2024 Delanoe Pirard / Aedelon. Apache 2.0.
"""

from __future__ import annotations

import shutil
from pathlib import Path


def directory_size(path: Path) -> int:
    """Total size in bytes of all files below ``path``.

    Missing directories count as empty. Files that vanish or cannot be
    stat'ed while walking are skipped.
    """
    if not path.is_dir():
        return 0

    total = 0
    for entry in path.rglob("*"):
        try:
            if entry.is_file():
                total += entry.stat().st_size
        except OSError:
            continue
    return total


def clear_directory(path: Path) -> None:
    """Remove ``path`` with its contents and recreate it empty.

    Raises:
        OSError: If removal or creation fails.
    """
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True, exist_ok=True)


def format_size(size_bytes: float) -> str:
    """Format size in human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size_bytes < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"
