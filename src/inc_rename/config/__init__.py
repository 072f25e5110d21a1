"""Configuration management for inc-rename."""

from .parser import (
    CONFIG_FILE_NAME,
    IncRenameConfig,
    find_config_file,
    load_config,
    merge_config,
)

__all__ = [
    "CONFIG_FILE_NAME",
    "IncRenameConfig",
    "load_config",
    "find_config_file",
    "merge_config",
]
