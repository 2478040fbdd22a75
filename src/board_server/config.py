"""Configuration loading utilities for the board server and CLI.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable BOARD_SERVER_CONFIG
3. Fallback to "config/default.yaml"

It also supports optional overrides from environment variables with prefix
``BOARD_SERVER__`` (e.g., BOARD_SERVER__PRESENCE__TTL_SEC=90).
"""

from __future__ import annotations

import copy
import getpass
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "BOARD_SERVER__"

DEFAULT_CONFIG: Dict[str, Any] = {
    "share_root": "./board",
    "default_room": "general",
    "user_name": "",
    "poll_interval_ms": 5000,
    "initial_load_limit": 200,
    "presence": {
        "ttl_sec": 60,
        "heartbeat_interval_sec": 30,
        "scan_interval_sec": 5,
        "freshness": "mtime",
    },
    "compaction": {
        "lock_ttl_sec": 900,
        "utc_offset_hours": 9,
    },
    "notifications": {
        "enabled": True,
        "rooms": [],
        "throttle_ms": 10000,
        "include_active_room": False,
    },
    "server": {
        "cors_origins": ["*"],
    },
}


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix BOARD_SERVER__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., BOARD_SERVER__PRESENCE__TTL_SEC -> cfg["presence"]["ttl_sec"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        leaf = parts[-1]
        # Attempt to parse simple types (bool, int, float)
        if value.lower() in {"true", "false"}:
            sub[leaf] = value.lower() == "true"
        else:
            try:
                if "." in value:
                    sub[leaf] = float(value)
                else:
                    sub[leaf] = int(value)
            except ValueError:
                sub[leaf] = value
    return cfg


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``BOARD_SERVER_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Parsed configuration dictionary with environment overrides applied.
    """
    if path is None:
        path = os.environ.get("BOARD_SERVER_CONFIG", "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULT_CONFIG))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            cfg = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RuntimeError(f"Failed to parse config file {path_obj}: {e}")

    if not isinstance(cfg, dict):
        raise RuntimeError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(cfg)


# -----------------------------
# Typed view
# -----------------------------
def _section(cfg: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = cfg.get(name)
    return value if isinstance(value, dict) else {}


def _read_str(src: Dict[str, Any], key: str, fallback: str, allow_empty: bool = False) -> str:
    value = src.get(key)
    if not isinstance(value, str):
        return fallback
    value = value.strip()
    return value if (value or allow_empty) else fallback


def _read_number(src: Dict[str, Any], key: str, fallback: float, minimum: float) -> float:
    value = src.get(key)
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    return value if value >= minimum else fallback


def _read_bool(src: Dict[str, Any], key: str, fallback: bool) -> bool:
    value = src.get(key)
    return value if isinstance(value, bool) else fallback


def _read_rooms(src: Dict[str, Any], key: str) -> List[str]:
    value = src.get(key)
    if not isinstance(value, list):
        return []
    return [r.strip() for r in value if isinstance(r, str) and r.strip()]


@dataclass
class BoardSettings:
    """Validated settings; bad or out-of-range values fall back to defaults."""

    share_root: Path = Path("./board")
    default_room: str = "general"
    user_name: str = ""
    poll_interval_ms: int = 5000
    initial_load_limit: int = 200
    presence_ttl_sec: float = 60
    heartbeat_interval_sec: float = 30
    scan_interval_sec: float = 5
    presence_freshness: str = "mtime"
    lock_ttl_sec: float = 900
    utc_offset_hours: float = 9
    notifications_enabled: bool = True
    notification_rooms: List[str] = field(default_factory=list)
    notification_throttle_ms: int = 10000
    include_active_room: bool = False
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    @property
    def effective_user(self) -> str:
        return self.user_name or getpass.getuser()

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "BoardSettings":
        d = cls()
        presence = _section(cfg, "presence")
        compaction = _section(cfg, "compaction")
        notes = _section(cfg, "notifications")
        server = _section(cfg, "server")

        freshness = _read_str(presence, "freshness", d.presence_freshness).lower()
        if freshness not in {"mtime", "ts"}:
            freshness = d.presence_freshness

        offset = _read_number(compaction, "utc_offset_hours", d.utc_offset_hours, -12)
        if offset > 14:
            offset = d.utc_offset_hours

        cors = server.get("cors_origins")
        if not isinstance(cors, list) or not cors:
            cors = list(d.cors_origins)

        return cls(
            share_root=Path(_read_str(cfg, "share_root", str(d.share_root))),
            default_room=_read_str(cfg, "default_room", d.default_room),
            user_name=_read_str(cfg, "user_name", d.user_name, allow_empty=True),
            poll_interval_ms=int(_read_number(cfg, "poll_interval_ms", d.poll_interval_ms, 1000)),
            initial_load_limit=int(_read_number(cfg, "initial_load_limit", d.initial_load_limit, 1)),
            presence_ttl_sec=_read_number(presence, "ttl_sec", d.presence_ttl_sec, 15),
            heartbeat_interval_sec=_read_number(
                presence, "heartbeat_interval_sec", d.heartbeat_interval_sec, 1
            ),
            scan_interval_sec=_read_number(presence, "scan_interval_sec", d.scan_interval_sec, 1),
            presence_freshness=freshness,
            lock_ttl_sec=_read_number(compaction, "lock_ttl_sec", d.lock_ttl_sec, 1),
            utc_offset_hours=offset,
            notifications_enabled=_read_bool(notes, "enabled", d.notifications_enabled),
            notification_rooms=_read_rooms(notes, "rooms"),
            notification_throttle_ms=int(
                max(1000, _read_number(notes, "throttle_ms", d.notification_throttle_ms, 0))
            ),
            include_active_room=_read_bool(notes, "include_active_room", d.include_active_room),
            cors_origins=[str(o) for o in cors],
        )


def load_settings(path: str | None = None) -> BoardSettings:
    return BoardSettings.from_config(load_config(path))
