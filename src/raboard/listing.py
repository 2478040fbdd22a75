"""Directory listing: the single read path for polling and presence scans.

Every call re-reads the directory; nothing is cached between calls.
"""
from __future__ import annotations

import errno
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .errors import DirectoryUnavailableError
from .naming import RECORD_SUFFIX

PathLike = Union[str, Path]


@dataclass(frozen=True)
class SinceResult:
    files: List[str]
    examined: int


def list_files(directory: PathLike, suffix: Optional[str] = RECORD_SUFFIX) -> List[str]:
    """Sorted names of the regular files in ``directory``.

    Only names ending in ``suffix`` are kept (pass ``None`` for all), and
    dot-files are ignored, so in-flight ``*.tmp`` files and the ``.lock``
    file never show up. A missing directory raises
    ``DirectoryUnavailableError``; other failures propagate as ``OSError``.
    """
    directory = Path(directory)
    names: List[str] = []
    try:
        with os.scandir(directory) as it:
            for entry in it:
                if entry.name.startswith("."):
                    continue
                if suffix is not None and not entry.name.endswith(suffix):
                    continue
                try:
                    if not entry.is_file():
                        continue
                except FileNotFoundError:
                    # vanished between readdir and stat
                    continue
                names.append(entry.name)
    except (FileNotFoundError, NotADirectoryError) as e:
        raise DirectoryUnavailableError(
            errno.ENOENT, f"Directory unavailable: {directory}", str(directory)
        ) from e
    # plain code-point order, never locale-aware
    names.sort()
    return names


def tail(directory: PathLike, n: int, suffix: Optional[str] = RECORD_SUFFIX) -> List[str]:
    """The ``n`` largest names in ascending order; ``n <= 0`` gives ``[]``."""
    files = list_files(directory, suffix)
    if n <= 0:
        return []
    return files[-n:]


def since(
    directory: PathLike,
    cursor: Optional[str],
    suffix: Optional[str] = RECORD_SUFFIX,
) -> SinceResult:
    """Names strictly greater than ``cursor`` (all names when it is None)."""
    files = list_files(directory, suffix)
    if not cursor:
        return SinceResult(files=files, examined=len(files))
    return SinceResult(files=[name for name in files if name > cursor], examined=len(files))
