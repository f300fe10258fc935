"""Configuration loading and saving for daybook.

The config lives at ~/.daybook/config.json (or $DAYBOOK_CONFIG). User values
are deep-merged over DEFAULT_CONFIG, so a partial file is always valid.
"""

import copy
import json
import os
from pathlib import Path

from .errors import ConfigError

CONFIG_ENV_VAR = "DAYBOOK_CONFIG"
CONFIG_PATH = Path.home() / ".daybook" / "config.json"

DEFAULT_CONFIG = {
    "sources": {
        "git": {
            "watch_paths": ["~/src"],
            "scan_depth": 3,
            "enabled": True,
        },
    },
    "summarizer": {
        "provider": "openai-compatible",
        "model": "gpt-4o-mini",
        "api_base": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
    },
    "schedule": {
        "ingest_minutes": 15,
        "daily_hour": 22,
    },
    "storage": {
        "base_dir": "~/.daybook",
    },
}


def config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if override:
        return Path(override).expanduser()
    return CONFIG_PATH


def atomic_write(path: Path, content: str, encoding: str = "utf-8"):
    """Write content atomically by writing to a temp file then renaming."""
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(content, encoding=encoding)
    tmp_path.replace(path)


def _deep_merge(defaults: dict, overrides: dict) -> dict:
    """Recursively merge *overrides* into *defaults*."""
    merged = dict(defaults)
    for key, value in overrides.items():
        if (
            key in merged
            and isinstance(merged[key], dict)
            and isinstance(value, dict)
        ):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def default_config() -> dict:
    return copy.deepcopy(DEFAULT_CONFIG)


def load_config(path: Path | None = None) -> dict:
    """Load the config file merged over defaults.

    A missing file is created with the defaults. A file that exists but
    cannot be read or is not a JSON object raises ConfigError.
    """
    path = path or config_path()
    if not path.exists():
        cfg = default_config()
        try:
            save_config(cfg, path)
        except OSError as e:
            raise ConfigError(f"Cannot write default config to {path}: {e}") from e
        return cfg

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a JSON object")
    return _deep_merge(default_config(), data)


def save_config(config: dict, path: Path | None = None):
    """Write config atomically."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_write(path, json.dumps(config, indent=2, ensure_ascii=False) + "\n")


def git_source_config(config: dict) -> dict:
    return config.get("sources", {}).get("git", {})


def ingest_interval_seconds(config: dict) -> int:
    """Ingest tick period; never shorter than one minute."""
    try:
        minutes = int(config.get("schedule", {}).get("ingest_minutes", 15))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"schedule.ingest_minutes must be an integer: {e}") from e
    return max(1, minutes) * 60


def daily_hour(config: dict) -> int:
    try:
        hour = int(config.get("schedule", {}).get("daily_hour", 22))
    except (TypeError, ValueError) as e:
        raise ConfigError(f"schedule.daily_hour must be an integer: {e}") from e
    if not 0 <= hour <= 23:
        raise ConfigError(f"schedule.daily_hour must be between 0 and 23, got {hour}")
    return hour
