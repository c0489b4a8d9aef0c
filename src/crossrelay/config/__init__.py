"""Configuration: YAML + env overlay."""

from crossrelay.config.loader import _deep_update, load_config, load_config_with_env
from crossrelay.config.schema import Config, LeftFormattingOptions, cfg

__all__ = [
    "Config",
    "LeftFormattingOptions",
    "_deep_update",
    "cfg",
    "load_config",
    "load_config_with_env",
]
