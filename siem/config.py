# siem/config.py
import os
from dataclasses import dataclass, fields, replace
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

import yaml

ENV_PREFIX = "WATCHTOWER_"


@dataclass(frozen=True)
class Settings:
    # DB lives in ./data next to where watchtower runs
    db_path: str = os.path.join("data", "siem.db")
    rule_dir: str = str(Path(os.path.dirname(__file__)) / "rules")
    insert_delay_seconds: float = 0.1
    dedup_window_hours: float = 24.0
    correlation_window_hours: float = 1.0
    store_timeout_seconds: float = 5.0
    max_log_file_bytes: int = 500 * 1024 * 1024
    log_level: str = "INFO"


def _coerce(value: Any, target: type) -> Any:
    if target is float:
        return float(value)
    if target is int:
        return int(value)
    return str(value)


def _merge(base: Settings, data: Dict[str, Any]) -> Settings:
    known = {f.name: f for f in fields(Settings)}
    updates: Dict[str, Any] = {}
    for key, value in data.items():
        f = known.get(key)
        if f is None or value is None:
            continue
        default = getattr(base, key)
        try:
            updates[key] = _coerce(value, type(default))
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for setting {key}: {value!r}")
    return replace(base, **updates)


def settings_from_env(environ=None) -> Dict[str, str]:
    environ = os.environ if environ is None else environ
    out: Dict[str, str] = {}
    for f in fields(Settings):
        value = environ.get(ENV_PREFIX + f.name.upper())
        if value is not None:
            out[f.name] = value
    return out


@lru_cache
def load_settings() -> Settings:
    """
    Defaults, then the YAML config file, then WATCHTOWER_* environment variables.
    """
    settings = Settings()

    path = Path(os.getenv(ENV_PREFIX + "CONFIG", "watchtower.yaml"))
    if path.exists():
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
        settings = _merge(settings, data)

    return _merge(settings, settings_from_env())
