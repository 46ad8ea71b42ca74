from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from schema_lens.core.errors import ConfigError

from .config_schema import ToolkitConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "schema-lens.yml"


def load_config(path: Optional[str]) -> ToolkitConfig:
    """Read a schema-lens.yml file; a missing path or file yields the defaults."""
    if not path:
        return ToolkitConfig()
    p = Path(path)
    if not p.exists():
        logger.debug("No config at %s, using defaults", p)
        return ToolkitConfig()
    try:
        cfg_raw = yaml.safe_load(p.read_text()) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Config at {p} is not valid YAML: {exc}") from exc
    if not isinstance(cfg_raw, dict):
        raise ConfigError(f"Config at {p} must be a mapping, got {type(cfg_raw).__name__}")
    try:
        return ToolkitConfig(**cfg_raw)
    except ValidationError as exc:
        raise ConfigError(f"Config at {p} is invalid: {exc}") from exc
