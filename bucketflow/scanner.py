from __future__ import annotations

import asyncio
from pathlib import Path
from typing import AsyncIterator

from bucketflow.config import CACHE_DB_FILENAME, CONFIG_FILENAME
from bucketflow.filters import PathFilter
from bucketflow.models import LocalFile


EXCLUDED_FILENAMES = {CONFIG_FILENAME, CACHE_DB_FILENAME, f"{CACHE_DB_FILENAME}-journal"}


def discover_local_files(root: Path, path_filter: PathFilter | None = None) -> list[Path]:
    """Regular files under ``root`` in sorted order, minus workspace files and filtered paths."""
    root = root.resolve()
    path_filter = path_filter or PathFilter()
    found: list[Path] = []

    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        if file_path.name in EXCLUDED_FILENAMES:
            continue
        relative_path = file_path.relative_to(root).as_posix()
        if not path_filter.matches(relative_path):
            continue
        found.append(file_path)

    return found


async def iter_local_files(
    root: Path,
    *,
    path_filter: PathFilter | None = None,
) -> AsyncIterator[LocalFile]:
    root = root.resolve()
    base = root.as_posix()
    for file_path in discover_local_files(root, path_filter):
        contents = await asyncio.to_thread(file_path.read_bytes)
        yield LocalFile(path=file_path.as_posix(), base=base, contents=contents)
