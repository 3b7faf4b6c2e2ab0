"""YAML config loader and dotted-key lookup."""

import hashlib
import os
from pathlib import Path
from typing import Any

import yaml

from launch_agent.config.schema import AgentConfig


def load_config(path: str | Path | None) -> AgentConfig:
    """Load and validate config from a YAML file.

    A missing file yields the defaults. Telegram credentials fall back to
    TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID when the file leaves them empty.
    """
    raw: dict[str, Any] = {}
    if path is not None and Path(path).exists():
        with open(path) as f:
            raw = yaml.safe_load(f) or {}

    alerts = raw.setdefault("alerts", {}) or {}
    raw["alerts"] = alerts
    if not alerts.get("bot_token"):
        alerts["bot_token"] = os.environ.get("TELEGRAM_BOT_TOKEN", "")
    if not alerts.get("chat_id"):
        alerts["chat_id"] = os.environ.get("TELEGRAM_CHAT_ID", "")

    return AgentConfig(**raw)


def config_hash(config: AgentConfig) -> str:
    """Compute a deterministic SHA256 hash of the config."""
    data = config.model_dump_json(indent=None)
    return hashlib.sha256(data.encode()).hexdigest()[:16]


def get_config_value(config: AgentConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'bid.max_attempts'."""
    parts = dotted_key.split(".")
    obj: Any = config
    for part in parts:
        if isinstance(obj, list):
            obj = obj[int(part)]
        elif hasattr(obj, part):
            obj = getattr(obj, part)
        elif isinstance(obj, dict):
            obj = obj[part]
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj
