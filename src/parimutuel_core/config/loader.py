"""Config loader — reads YAML, applies PARIMUTUEL_* env var overrides."""

from __future__ import annotations

import os
from pathlib import Path

import yaml

from parimutuel_core.config.schema import AppConfig

# env var -> (section, key)
_ENV_OVERRIDES = {
    "PARIMUTUEL_DATABASE_URL": ("database", "url"),
    "PARIMUTUEL_LOG_LEVEL": ("logging", "level"),
    "PARIMUTUEL_LOG_FORMAT": ("logging", "format"),
    "PARIMUTUEL_PAYMENTS_URL": ("payments", "base_url"),
    "PARIMUTUEL_PAYMENTS_API_KEY": ("payments", "api_key"),
    "PARIMUTUEL_API_HOST": ("api", "host"),
    "PARIMUTUEL_API_PORT": ("api", "port"),
}


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load config from a YAML file, then apply env var overrides.

    If *path* is None or the file doesn't exist, returns defaults.

    Environment variable overrides:
        PARIMUTUEL_DATABASE_URL      -> database.url
        PARIMUTUEL_LOG_LEVEL         -> logging.level
        PARIMUTUEL_LOG_FORMAT        -> logging.format
        PARIMUTUEL_PAYMENTS_URL      -> payments.base_url
        PARIMUTUEL_PAYMENTS_API_KEY  -> payments.api_key
        PARIMUTUEL_API_HOST          -> api.host
        PARIMUTUEL_API_PORT          -> api.port
    """
    data: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})[key] = value

    return AppConfig.model_validate(data)
