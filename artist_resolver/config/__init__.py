"""Configuration module: exports Settings and the YAML-aware loaders."""

from artist_resolver.config.loader import load_config, load_settings
from artist_resolver.config.settings import Settings

__all__ = ["Settings", "load_config", "load_settings"]
