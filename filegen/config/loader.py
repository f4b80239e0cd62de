from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml
from pydantic import ValidationError as PydanticValidationError

from filegen.config.env_substitution import apply_env_substitution, find_env_references
from filegen.config.models import AppConfig
from filegen.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)


def _read_yaml(path: str) -> Dict[str, Any]:
    logger.info(f"Loading config from {path}")

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as handle:
            cfg = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in config file: {exc}", config_path=path)

    if not isinstance(cfg, dict):
        raise ConfigValidationError("Config must be a YAML dictionary/object", config_path=path)

    return cfg


def parse_config(cfg: Dict[str, Any], *, source: str | None = None) -> AppConfig:
    """Validate a raw config dictionary into an ``AppConfig``."""
    try:
        return AppConfig.model_validate(cfg)
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        key = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigValidationError(
            f"Invalid configuration: {first.get('msg', exc)}",
            config_path=source,
            key=key or None,
        ) from exc


def load_config(path: str, *, enable_env_substitution: bool = True) -> AppConfig:
    """Load a YAML config file into a validated ``AppConfig``.

    Args:
        path: Path to config YAML file
        enable_env_substitution: Substitute ${VAR} and ${VAR:default} with environment variables
    """
    cfg = _read_yaml(path)
    if enable_env_substitution:
        try:
            cfg = apply_env_substitution(cfg)
        except ValueError as exc:
            missing = [name for name in find_env_references(cfg) if name not in os.environ]
            raise ConfigValidationError(
                f"{exc} (unset: {', '.join(missing)})", config_path=path
            ) from exc
    cfg.setdefault("config_dir", str(Path(path).resolve().parent))
    config = parse_config(cfg, source=path)
    logger.debug(
        "Loaded %d interface(s) from %s", len(config.interfaces), path
    )
    return config
