"""Reference cache: turns raw reference locations into a per-line index."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..models.responses import CachedLine, LineIndex, LineOccurrence, Location

logger = logging.getLogger(__name__)

# (document_id, line) -> line text, or None when the document is not loaded
LineProvider = Callable[[str, int], Optional[str]]

RawLocation = Union[Location, Dict[str, Any]]


def to_locations(raw_locations: Iterable[RawLocation]) -> List[Location]:
    """Normalize raw LSP dicts and Location objects into Locations."""
    locations: List[Location] = []
    for raw in raw_locations:
        if isinstance(raw, Location):
            locations.append(raw)
            continue
        try:
            location = Location.from_lsp(raw)
        except (KeyError, TypeError) as e:
            logger.debug(f"Skipping malformed reference {raw!r}: {e}")
            continue
        if location is None:
            logger.debug(f"Skipping reference without uri or range: {raw!r}")
            continue
        locations.append(location)
    return locations


def build_line_index(
    raw_locations: Iterable[RawLocation], line_provider: LineProvider
) -> LineIndex:
    """Group reference locations by document and line.

    Locations spanning several lines are skipped: some servers report a
    function value assigned to a table field that way and there is no sane
    way to preview it. Locations in documents the provider cannot read are
    skipped too, since only loaded buffers can be highlighted.

    The line text is read once per (document, line) pair. Occurrences keep
    their arrival order; call ``filter_duplicates`` to clean them up.
    """
    index: LineIndex = {}
    for location in to_locations(raw_locations):
        if not location.is_single_line:
            continue

        lines = index.get(location.document_id)
        cached = lines.get(location.line_number) if lines is not None else None
        if cached is None:
            text = line_provider(location.document_id, location.line_number)
            if text is None:
                continue
            cached = CachedLine(text=text)
            index.setdefault(location.document_id, {})[location.line_number] = cached

        cached.occurrences.append(
            LineOccurrence(location.start_column, location.end_column)
        )
    return index


def filter_duplicates(index: LineIndex) -> LineIndex:
    """Drop repeated occurrences reported for the same line.

    Some servers (bashls for instance) send the same position several
    times. An occurrence is kept only if neither its start nor its end
    column matches one that was already kept; this is stricter than exact
    equality and may also drop distinct but touching ranges.
    The survivors are sorted by start column, in place, and any occurrence
    overlapping the one before it is dropped so that lines patch cleanly.
    """
    for lines in index.values():
        for cached in lines.values():
            if len(cached.occurrences) < 2:
                continue

            kept = [cached.occurrences[0]]
            starts = {kept[0].start_column}
            ends = {kept[0].end_column}
            for occurrence in cached.occurrences[1:]:
                if occurrence.start_column in starts or occurrence.end_column in ends:
                    continue
                kept.append(occurrence)
                starts.add(occurrence.start_column)
                ends.add(occurrence.end_column)

            cached.occurrences = _drop_overlaps(
                sorted(kept, key=lambda o: o.start_column)
            )
    return index


def _drop_overlaps(occurrences: List[LineOccurrence]) -> List[LineOccurrence]:
    """Keep the leftmost of any occurrences that overlap; input sorted by start."""
    kept: List[LineOccurrence] = []
    for occurrence in occurrences:
        if kept and occurrence.start_column < kept[-1].end_column:
            logger.debug(f"Dropping overlapping occurrence {occurrence}")
            continue
        kept.append(occurrence)
    return kept


def count_occurrences(index: LineIndex) -> int:
    return sum(
        len(cached.occurrences) for lines in index.values() for cached in lines.values()
    )
