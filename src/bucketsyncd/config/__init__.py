"""
Configuration loading and environment substitution.
"""

from bucketsyncd.config.loader import DEFAULT_CONFIG_PATH, load_config, parse_config
from bucketsyncd.config.resolver import resolve_config

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "load_config",
    "parse_config",
    "resolve_config",
]
