"""Configuration module for contextguard."""

from contextguard.config.loader import load_config, save_config, get_config_path
from contextguard.config.schema import Config, CompactionConfig, MemoryConfig

__all__ = [
    "Config",
    "CompactionConfig",
    "MemoryConfig",
    "load_config",
    "save_config",
    "get_config_path",
]
