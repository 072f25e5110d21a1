"""Line patcher: computes previewed line text and highlight spans."""

from __future__ import annotations

import re
from typing import List, Sequence, Tuple

from ..models.responses import (
    HighlightSpan,
    LineIndex,
    LineOccurrence,
    LinePreview,
    RenderResult,
)

_BLANK = re.compile(r"^\s*$")


def is_blank_name(name: str) -> bool:
    """True when the candidate name is empty or whitespace only."""
    return _BLANK.match(name) is not None


def patch_line(
    original: str, occurrences: Sequence[LineOccurrence], replacement: str
) -> Tuple[str, List[HighlightSpan]]:
    """Replace every occurrence on a line with ``replacement``.

    Occurrences are given in the coordinates of ``original`` and must be
    sorted by start column without overlaps. Each splice shifts everything
    to its right, so a running offset (the total length change so far) maps
    original columns into the line being built.

    Returns:
        The new line and one highlight span per occurrence, located in the
        new line.
    """
    offset = 0
    updated = original
    highlights: List[HighlightSpan] = []

    for occurrence in occurrences:
        start = occurrence.start_column + offset
        end = occurrence.end_column + offset
        updated = updated[:start] + replacement + updated[end:]
        highlights.append(HighlightSpan(start, start + len(replacement)))
        offset += len(replacement) - occurrence.length

    return updated, highlights


def render_index(index: LineIndex, new_name: str) -> RenderResult:
    """Patch every cached line of the index for one candidate name."""
    result = RenderResult(new_name=new_name)
    for document_id in sorted(index):
        lines = index[document_id]
        for line_number in sorted(lines):
            cached = lines[line_number]
            new_text, highlights = patch_line(cached.text, cached.occurrences, new_name)
            result.lines.append(
                LinePreview(
                    document_id=document_id,
                    line_number=line_number,
                    original_text=cached.text,
                    new_text=new_text,
                    highlights=highlights,
                )
            )
    return result
