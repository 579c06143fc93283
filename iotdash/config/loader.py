"""Configuration loading utilities."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from iotdash.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".iotdash" / "config.json"


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from file, falling back to defaults.

    Environment variables (``IOTDASH_...``) apply when no file exists.
    """
    path = Path(config_path) if config_path else get_config_path()

    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return Config.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as exc:
            logger.warning(f"[Config] failed to load {path}: {exc}")
            logger.warning("[Config] using default configuration")

    return Config()


def save_config(config: Config, config_path: str | Path | None = None) -> None:
    """Save configuration to file using camelCase keys."""
    path = Path(config_path) if config_path else get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(by_alias=True)
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
