"""
Settings

Defaults, overridden by an optional YAML file, overridden in turn by
environment variables:

    TASKHIVE_CONFIG            path of the YAML file
    TASKHIVE_DATA_DIR          directory holding changelogs.jsonl and entities.json
    TASKHIVE_LOG_LEVEL         logging level name
    TASKHIVE_REVIEW_CACHE_TTL  seconds; 0 disables the review cache
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ValidationError

logger = logging.getLogger("config")

DEFAULT_DATA_DIR = "data/taskhive"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_REVIEW_CACHE_TTL = 0.0

CHANGELOG_FILENAME = "changelogs.jsonl"
ENTITIES_FILENAME = "entities.json"


@dataclass
class Settings:
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    log_level: str = DEFAULT_LOG_LEVEL
    review_cache_ttl: float = DEFAULT_REVIEW_CACHE_TTL

    @property
    def changelog_file(self) -> Path:
        return self.data_dir / CHANGELOG_FILENAME

    @property
    def entities_file(self) -> Path:
        return self.data_dir / ENTITIES_FILENAME

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data_dir": str(self.data_dir),
            "log_level": self.log_level,
            "review_cache_ttl": self.review_cache_ttl,
        }


def _read_yaml(path: Path) -> Dict[str, Any]:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValidationError("config", f"Config file {path} must contain a mapping")
    return data


def _parse_ttl(value: Any) -> float:
    try:
        ttl = float(value)
    except (TypeError, ValueError):
        raise ValidationError("review_cache_ttl", f"Invalid review cache TTL: {value!r}")
    return max(ttl, 0.0)


def load_settings(path: Optional[Union[str, Path]] = None) -> Settings:
    """Build settings from defaults, the YAML file (if any) and the environment."""
    values: Dict[str, Any] = {}

    config_path = path or os.getenv("TASKHIVE_CONFIG")
    if config_path:
        config_path = Path(config_path)
        if config_path.exists():
            values.update(_read_yaml(config_path))
            logger.info(f"Loaded settings from {config_path}")
        else:
            logger.warning(f"Config file {config_path} not found, using defaults")

    env_overrides = {
        "data_dir": os.getenv("TASKHIVE_DATA_DIR"),
        "log_level": os.getenv("TASKHIVE_LOG_LEVEL"),
        "review_cache_ttl": os.getenv("TASKHIVE_REVIEW_CACHE_TTL"),
    }
    values.update({k: v for k, v in env_overrides.items() if v not in (None, "")})

    return Settings(
        data_dir=Path(values.get("data_dir", DEFAULT_DATA_DIR)),
        log_level=str(values.get("log_level", DEFAULT_LOG_LEVEL)).upper(),
        review_cache_ttl=_parse_ttl(values.get("review_cache_ttl", DEFAULT_REVIEW_CACHE_TTL)),
    )
