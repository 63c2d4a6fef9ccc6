"""YAML configuration loader with environment variable overrides.

Configuration is layered (later layers override earlier):

  1. ``config/config.yaml``: defaults checked into the repo, grouped in
     sections (``matching:``, ``circuit_breaker:`` ...) whose keys are
     :class:`Settings` field names.
  2. ``.env`` file: local developer overrides.
  3. Environment variables: set at deploy time.

``load_config`` returns the merged nested dict; ``load_settings`` flattens
it into a validated :class:`Settings`.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from artist_resolver.config.settings import Settings
from artist_resolver.utils.errors import ConfigurationError

_ENV_SECTION = "environment"


def load_config(path: str = "config/config.yaml") -> dict:
    """Load YAML config and merge explicitly-set environment values on top.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Nested configuration dictionary.  Environment-provided values are
        placed under an ``environment`` section so they win on flattening.
    """
    config_path = Path(path)
    if config_path.exists():
        with open(config_path) as f:
            yaml_config = yaml.safe_load(f) or {}
    else:
        yaml_config = {}

    if not isinstance(yaml_config, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")

    try:
        env_settings = Settings()
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid environment configuration: {exc}") from exc

    # Only fields actually supplied by env / .env override the YAML layer.
    env_overrides = {
        _ENV_SECTION: {
            name: getattr(env_settings, name) for name in env_settings.model_fields_set
        }
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def load_settings(path: str = "config/config.yaml") -> Settings:
    """Build validated :class:`Settings` from YAML plus environment.

    Raises:
        ConfigurationError: If any value fails validation.
    """
    config = load_config(path)
    flat = _flatten(config)
    try:
        return Settings(**flat)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration in {path}: {exc}") from exc


def _flatten(config: dict[str, Any]) -> dict[str, Any]:
    """Collapse section mappings into field-name keys; environment last."""
    known = set(Settings.model_fields)
    flat: dict[str, Any] = {}
    sections = [k for k in config if k != _ENV_SECTION] + [_ENV_SECTION]
    for section in sections:
        value = config.get(section)
        if isinstance(value, dict):
            flat.update({k: v for k, v in value.items() if k in known})
        elif section in known:
            flat[section] = value
    return flat


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
