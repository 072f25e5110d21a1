"""Incremental preview engine."""

from .cache import build_line_index, filter_duplicates
from .patcher import is_blank_name, patch_line, render_index
from .session import PreviewSession

__all__ = [
    "build_line_index",
    "filter_duplicates",
    "is_blank_name",
    "patch_line",
    "render_index",
    "PreviewSession",
]
