from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional


POLLCHAT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = POLLCHAT_ROOT / "config.json"
CONFIG_PATH_ENV = "POLLCHAT_CONFIG"

DEFAULT_PORT = 5142
DEFAULT_ROOM = "default"
DEFAULT_PLAYER_NAME = "ludanto"
KEEP_ALIVE_SECONDS = 2.5 * 60
CHECK_DATA_SECONDS = 3.0

VARIANTS = ("chat", "game")
_ROOM_RE = re.compile(r"[a-z]+")


def config_path() -> Path:
    p = (os.environ.get(CONFIG_PATH_ENV) or "").strip()
    if p:
        return Path(p)
    return DEFAULT_CONFIG_PATH


@lru_cache(maxsize=1)
def load_config() -> dict[str, Any]:
    path = config_path()
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def section(name: str) -> dict[str, Any]:
    cfg = load_config()
    sec = cfg.get(name)
    return sec if isinstance(sec, dict) else {}


def get_str(sec: dict[str, Any], key: str) -> Optional[str]:
    v = sec.get(key)
    if v is None:
        return None
    if isinstance(v, str):
        s = v.strip()
        return s if s else None
    return None


def get_int(sec: dict[str, Any], key: str) -> Optional[int]:
    v = sec.get(key)
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def get_float(sec: dict[str, Any], key: str) -> Optional[float]:
    v = sec.get(key)
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def get_bool(sec: dict[str, Any], key: str) -> Optional[bool]:
    v = sec.get(key)
    if isinstance(v, bool):
        return v
    if isinstance(v, str):
        return _parse_bool(v)
    return None


def _parse_bool(s: str) -> Optional[bool]:
    s = s.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return None


def normalize_room_name(name: Optional[str]) -> str:
    """Room names are lowercase ascii letters only; anything else joins the default room."""
    if name and _ROOM_RE.fullmatch(name):
        return name
    return DEFAULT_ROOM


@dataclass(frozen=True)
class ClientSettings:
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    room_name: str = DEFAULT_ROOM
    player_name: str = DEFAULT_PLAYER_NAME
    variant: str = "game"
    keep_alive_seconds: float = KEEP_ALIVE_SECONDS
    check_data_seconds: float = CHECK_DATA_SECONDS
    progressive: bool = True
    watch_timeout_seconds: float = 300.0
    send_timeout_seconds: float = 30.0

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}/"


def client_settings(**overrides: Any) -> ClientSettings:
    """
    Resolve settings from (highest priority first):
      - explicit keyword overrides (None values are skipped)
      - POLLCHAT_* environment variables
      - the "server" / "client" sections of config.json
      - built-in defaults
    """
    srv = section("server")
    cli = section("client")
    env = os.environ

    host = (env.get("POLLCHAT_HOST") or get_str(srv, "host") or "127.0.0.1")
    port = int(env.get("POLLCHAT_PORT") or get_int(srv, "port") or DEFAULT_PORT)
    room = env.get("POLLCHAT_ROOM") or get_str(cli, "roomName")
    name = (env.get("POLLCHAT_NAME") or get_str(cli, "playerName") or DEFAULT_PLAYER_NAME)
    variant = (env.get("POLLCHAT_VARIANT") or get_str(cli, "variant") or "game").lower()
    keep_alive = float(env.get("POLLCHAT_KEEP_ALIVE_SECONDS") or get_float(cli, "keepAliveSeconds") or KEEP_ALIVE_SECONDS)
    check_data = float(env.get("POLLCHAT_CHECK_DATA_SECONDS") or get_float(cli, "checkDataSeconds") or CHECK_DATA_SECONDS)

    progressive = _parse_bool(env.get("POLLCHAT_PROGRESSIVE") or "")
    if progressive is None:
        progressive = get_bool(cli, "progressive")
    if progressive is None:
        progressive = True

    values: dict[str, Any] = {
        "host": host,
        "port": port,
        "room_name": room,
        "player_name": name,
        "variant": variant,
        "keep_alive_seconds": keep_alive,
        "check_data_seconds": check_data,
        "progressive": progressive,
    }
    watch_timeout = get_float(cli, "watchTimeoutSeconds")
    if watch_timeout:
        values["watch_timeout_seconds"] = watch_timeout
    send_timeout = get_float(cli, "sendTimeoutSeconds")
    if send_timeout:
        values["send_timeout_seconds"] = send_timeout

    values.update({k: v for k, v in overrides.items() if v is not None})

    values["room_name"] = normalize_room_name(values.get("room_name"))
    if values["variant"] not in VARIANTS:
        raise ValueError(f"bad_variant:{values['variant']}")
    return ClientSettings(**values)
