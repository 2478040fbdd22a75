from __future__ import annotations

import errno
import json
import logging
import os
import secrets
from pathlib import Path
from typing import Any, Union

from .errors import DirectoryUnavailableError, RecordNameCollisionError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

TMP_SUFFIX = ".tmp"

# errnos meaning "this file system cannot hard-link"
_NO_LINK_ERRNOS = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS, errno.EMLINK}


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def dumps_line(payload: Any) -> str:
    """Serialize ``payload`` as compact single-line JSON plus one newline."""
    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize payload to JSON: {e}") from e
    # json.dumps escapes control characters, so no raw newline can survive
    return line + "\n"


def temp_name_for(final_name: str) -> str:
    return f"{final_name}.{secrets.token_hex(6)}{TMP_SUFFIX}"


def write_json_atomic(
    directory: PathLike,
    final_name: str,
    payload: Any,
    *,
    exclusive: bool = False,
) -> Path:
    """Write ``payload`` to ``directory/final_name`` via a same-directory temp file.

    With ``exclusive=False`` the temp file replaces any existing file. With
    ``exclusive=True`` an existing final name is never overwritten and
    ``RecordNameCollisionError`` is raised instead.

    A missing ``directory`` raises ``DirectoryUnavailableError``; it is never
    created here.
    """
    directory = Path(directory)
    final_path = directory / final_name
    tmp_path = directory / temp_name_for(final_name)
    data = dumps_line(payload).encode("utf-8")

    try:
        with open(tmp_path, "xb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except FileNotFoundError as e:
        raise DirectoryUnavailableError(
            errno.ENOENT, f"Directory unavailable: {directory}", str(directory)
        ) from e

    try:
        if exclusive:
            _publish_exclusive(tmp_path, final_path)
        else:
            os.replace(tmp_path, final_path)
    except BaseException:
        _discard(tmp_path)
        raise
    return final_path


def _publish_exclusive(tmp_path: Path, final_path: Path) -> None:
    # link() fails with EEXIST instead of overwriting, unlike rename()
    try:
        os.link(tmp_path, final_path)
    except FileExistsError as e:
        raise RecordNameCollisionError(
            errno.EEXIST, f"Record name already taken: {final_path.name}", str(final_path)
        ) from e
    except OSError as e:
        if e.errno not in _NO_LINK_ERRNOS:
            raise
        logger.debug("hard links unsupported under %s, using rename: %s", final_path.parent, e)
        if final_path.exists():
            raise RecordNameCollisionError(
                errno.EEXIST, f"Record name already taken: {final_path.name}", str(final_path)
            ) from e
        os.replace(tmp_path, final_path)
        return
    _discard(tmp_path)


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove temp file %s: %s", path, e)


def append_line(path: PathLike, line: str) -> None:
    """Append one newline-terminated line to ``path`` (created if absent)."""
    if not line.endswith("\n"):
        line += "\n"
    with open(path, "a", encoding="utf-8", newline="") as f:
        f.write(line)
        f.flush()
        os.fsync(f.fileno())


def read_text(path: PathLike) -> str:
    """Decode ``path`` as UTF-8 with line endings left untouched."""
    with open(path, "r", encoding="utf-8", newline="") as f:
        return f.read()


def read_json(path: PathLike) -> Any:
    """Read and decode a JSON file; ``json.JSONDecodeError`` propagates."""
    return json.loads(read_text(path))
