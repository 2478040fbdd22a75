"""Host layer for the file-share board: config, polling sessions, HTTP API, CLI.

Typical usage
-------------
from board_server import create_app
app = create_app()

or, from the provided launcher:

python scripts/run_server.py --host 127.0.0.1 --port 8000
"""

from __future__ import annotations

from raboard import __version__

from .config import BoardSettings, load_config, load_settings
from .server import create_app

__all__ = ["BoardSettings", "create_app", "load_config", "load_settings", "__version__", "get_version"]


def get_version() -> str:
    """Return the package version."""
    return __version__
