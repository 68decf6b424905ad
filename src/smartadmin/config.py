"""
Settings — defaults, then ~/.smartadmin/config.json, then environment.
"""

import json
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from smartadmin.models.channels import DEFAULT_PREFIX
from smartadmin.transport.http import DEFAULT_REST_URL
from smartadmin.transport.realtime import DEFAULT_REALTIME_URL

CONFIG_DIR = Path.home() / ".smartadmin"
CONFIG_FILE = CONFIG_DIR / "config.json"

ENV_VARS = {
    "ABLY_API_KEY": "ably_key",
    "SMARTADMIN_ABLY_KEY": "ably_key",
    "SMARTADMIN_DB_PATH": "database_path",
    "SMARTADMIN_REST_URL": "rest_url",
    "SMARTADMIN_REALTIME_URL": "realtime_url",
    "SMARTADMIN_CHANNEL_PREFIX": "channel_prefix",
}


class Settings(BaseModel):
    ably_key: Optional[str] = None
    rest_url: str = DEFAULT_REST_URL
    realtime_url: str = DEFAULT_REALTIME_URL
    database_path: str = str(CONFIG_DIR / "mirror.db")
    channel_prefix: str = DEFAULT_PREFIX
    history_timeout_s: float = 5.0
    mirror_limit: int = 100
    status_history_limit: int = 100
    control_history_limit: int = 50
    broadcast_history_limit: int = 50
    ready_timeout_s: float = 15.0


def config_path(env: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if env is None else env
    return Path(env["SMARTADMIN_CONFIG"]) if env.get("SMARTADMIN_CONFIG") else CONFIG_FILE


def load_config(path: Optional[Path] = None) -> dict[str, Any]:
    path = path or config_path()
    try:
        return json.loads(path.read_text())
    except (FileNotFoundError, json.JSONDecodeError):
        return {}


def save_config(cfg: dict[str, Any], path: Optional[Path] = None) -> None:
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(cfg, indent=2))


def load_settings(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if env is None else env
    values = load_config(path or config_path(env))
    for var, field in ENV_VARS.items():
        if env.get(var):
            values[field] = env[var]
    return Settings.model_validate(values)
