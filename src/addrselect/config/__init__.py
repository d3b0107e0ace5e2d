"""Configuration loading and logging setup."""

from .config_parser import apply_env_overrides, build_config, parse_config_file
from .config_schema import AddressSelectConfig
from .logging_config import init_logging

__all__ = [
    "AddressSelectConfig",
    "apply_env_overrides",
    "build_config",
    "init_logging",
    "parse_config_file",
]
