"""Configuration file parser for inc-rename."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from dotenv import load_dotenv

try:
    import tomllib  # Python 3.11+
except ImportError:
    import tomli as tomllib  # Fallback for Python 3.10

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".inc_rename.toml"
ENV_PREFIX = "INC_RENAME_"

PostHook = Callable[[Dict[str, Any]], Any]


@dataclass
class IncRenameConfig:
    """Complete inc-rename configuration."""

    # Name the interactive rename command is registered under
    command_name: str = "IncRename"
    # Highlight group used for the replaced spans while previewing
    hl_group: str = "Substitute"
    # Whether a blank candidate name is still previewed
    preview_empty_name: bool = False
    # Whether to report "Renamed N instances in M files" after a commit
    show_message: bool = True
    # Called with the raw WorkspaceEdit after a successful commit
    post_hook: Optional[PostHook] = None

    include_declaration: bool = True
    timeout_ms: int = 2000
    log_level: str = "WARNING"

    # Project root for locating the config file
    project_root: Path = field(default_factory=Path.cwd)


# Options a user may set, with the types they must have
_OPTION_TYPES: Dict[str, Any] = {
    "command_name": str,
    "hl_group": str,
    "preview_empty_name": bool,
    "show_message": bool,
    "include_declaration": bool,
    "timeout_ms": int,
    "log_level": str,
}


def find_config_file(project_path: Path) -> Optional[Path]:
    """Find .inc_rename.toml in project root.

    Args:
        project_path: Root path of the project

    Returns:
        Path to .inc_rename.toml if found, None otherwise
    """
    config_file = project_path / CONFIG_FILE_NAME
    if config_file.exists():
        return config_file
    return None


def merge_config(
    base: IncRenameConfig, overrides: Optional[Mapping[str, Any]] = None
) -> IncRenameConfig:
    """Return a copy of ``base`` with ``overrides`` applied.

    Unknown keys and values of the wrong type are rejected so that typos in
    user configuration fail loudly instead of being ignored.

    Raises:
        ValueError: If an override is unknown or has the wrong type
    """
    if not overrides:
        return replace(base)

    known = {f.name for f in fields(IncRenameConfig)} - {"project_root"}
    values: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in known:
            raise ValueError(f"Unknown inc-rename option: {key!r}")

        if key == "post_hook":
            if value is not None and not callable(value):
                raise ValueError("post_hook must be callable or None")
        else:
            expected = _OPTION_TYPES[key]
            # bool is a subclass of int, don't let it pass as timeout_ms
            if not isinstance(value, expected) or (
                expected is int and isinstance(value, bool)
            ):
                raise ValueError(
                    f"inc-rename option {key!r} must be {expected.__name__}, "
                    f"got {type(value).__name__}"
                )
        values[key] = value

    return replace(base, **values)


def _env_overrides() -> Dict[str, Any]:
    """Collect INC_RENAME_* environment variables as typed overrides."""
    overrides: Dict[str, Any] = {}
    for key, expected in _OPTION_TYPES.items():
        raw = os.getenv(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        if expected is bool:
            overrides[key] = raw.strip().lower() in ("1", "true", "yes", "on")
        elif expected is int:
            try:
                overrides[key] = int(raw)
            except ValueError:
                logger.warning(f"Ignoring {ENV_PREFIX}{key.upper()}={raw!r}: not an integer")
        else:
            overrides[key] = raw
    return overrides


def load_config(project_path: Path) -> IncRenameConfig:
    """Load configuration from .inc_rename.toml and the environment.

    Precedence (lowest to highest): defaults, the ``[inc_rename]`` table of
    the config file, ``INC_RENAME_*`` environment variables (a ``.env`` file
    in the working directory is honoured).

    Args:
        project_path: Root path of the project

    Returns:
        IncRenameConfig with loaded or default configuration
    """
    load_dotenv()
    config = IncRenameConfig(project_root=project_path)

    config_file = find_config_file(project_path)
    if config_file:
        try:
            with open(config_file, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            # If TOML parsing fails, keep defaults
            logger.warning(f"Could not read {config_file}: {e}")
            data = {}

        section = data.get("inc_rename", {})
        if isinstance(section, dict):
            try:
                config = merge_config(config, section)
            except ValueError as e:
                logger.warning(f"Ignoring {config_file}: {e}")

    env = _env_overrides()
    if env:
        config = merge_config(config, env)

    return config
