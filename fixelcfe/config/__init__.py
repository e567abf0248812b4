"""Configuration loading and validation for fixelcfe."""

from fixelcfe.config.defaults import CFEConfig
from fixelcfe.config.loader import (
    load_config_file,
    merge_configs,
    config_from_dict,
    save_config,
)
from fixelcfe.config.validator import ConfigValidator

__all__ = [
    "CFEConfig",
    "load_config_file",
    "merge_configs",
    "config_from_dict",
    "save_config",
    "ConfigValidator",
]
