"""Shared models for the preview engine and the commit path."""

from .errors import *  # noqa: F403 - intentional re-export
from .responses import *  # noqa: F403 - intentional re-export

__all__ = [name for name in dir() if not name.startswith("_")]
