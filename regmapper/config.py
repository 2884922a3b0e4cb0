# config.py
"""Runtime configuration for regmapper.

Settings are read from an optional YAML file and then overridden by
environment variables, so a deployment can ship one ``regmapper.yaml``
and still tweak individual values per process.  Example file::

    database_url: sqlite:///regmapper.db
    embedding:
      provider: openai          # or "hashing" for offline use
      model: text-embedding-3-small
      api_base: https://api.openai.com/v1
      timeout: 30
      max_attempts: 3
    min_similarity: 0.2
    stage_timeout: 120
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_DB_URL = "sqlite:///regmapper.db"


@dataclass
class Settings:
    database_url: str = DEFAULT_DB_URL
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_api_base: str = "https://api.openai.com/v1"
    embedding_api_key: Optional[str] = None
    embedding_timeout: float = 30.0
    embedding_max_attempts: int = 3
    embedding_backoff_initial: float = 1.0
    hashing_dimensions: int = 1024
    min_similarity: float = 0.2
    discover_threshold: float = 0.6
    stage_timeout: Optional[float] = None
    seed_path: Optional[str] = None


# env var → (settings field, converter)
_ENV_OVERRIDES = {
    "REGMAPPER_DB_URL": ("database_url", str),
    "REGMAPPER_EMBEDDING_PROVIDER": ("embedding_provider", str),
    "REGMAPPER_EMBEDDING_MODEL": ("embedding_model", str),
    "REGMAPPER_EMBEDDING_API_BASE": ("embedding_api_base", str),
    "OPENAI_API_KEY": ("embedding_api_key", str),
    "REGMAPPER_MIN_SIMILARITY": ("min_similarity", float),
    "REGMAPPER_STAGE_TIMEOUT": ("stage_timeout", float),
    "REGMAPPER_SEED": ("seed_path", str),
}


def _flatten(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map the nested ``embedding:`` block onto ``embedding_*`` fields."""
    flat = {k: v for k, v in data.items() if k != "embedding"}
    for key, value in (data.get("embedding") or {}).items():
        flat[f"embedding_{key}"] = value
    return flat


def load_settings(config_path: Optional[Path | str] = None) -> Settings:
    """Build :class:`Settings` from YAML (if any) and the environment.

    Parameters
    ----------
    config_path : Path or str, optional
        YAML file to read.  Defaults to ``$REGMAPPER_CONFIG``; when
        neither is set only defaults and environment values apply.

    Raises
    ------
    FileNotFoundError
        If an explicit config path does not exist.
    """
    path = config_path or os.getenv("REGMAPPER_CONFIG")
    values: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        known = Settings.__dataclass_fields__
        for key, value in _flatten(data).items():
            if key in known:
                values[key] = value
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

    for env_name, (field_name, convert) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw:
            values[field_name] = convert(raw)

    return Settings(**values)
