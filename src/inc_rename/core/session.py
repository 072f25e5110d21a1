"""Preview session: fetch references once per interaction, preview on every keystroke."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from ..models.errors import (
    Err,
    ErrorKind,
    LSPRequestError,
    NoCapableProviderError,
    Ok,
    Result,
    format_message,
)
from ..models.responses import (
    LineIndex,
    Location,
    RenderResult,
    SessionState,
    TextPosition,
)
from .cache import build_line_index, count_occurrences, filter_duplicates, to_locations
from .patcher import is_blank_name, render_index

logger = logging.getLogger(__name__)


class ReferenceFinder(Protocol):
    async def find_references(
        self, target: TextPosition, include_declaration: bool = True
    ) -> List[Dict[str, Any]]:
        ...


class DocumentSource(Protocol):
    async def read_lines(
        self, document_id: str, line_numbers: List[int]
    ) -> Optional[Dict[int, str]]:
        """Return the requested lines, or None if the document is not loaded."""
        ...


class PreviewSession:
    """State of one rename interaction.

    The first ``preview`` call of an interaction schedules the one and only
    reference fetch and returns immediately; later calls are cheap and
    recompute the preview from the cached line index. ``reset`` ends the
    interaction. Every fetch carries the generation it was started in, so a
    response arriving after ``reset`` is recognised and dropped.
    """

    def __init__(
        self,
        reference_finder: ReferenceFinder,
        document_source: DocumentSource,
        include_declaration: bool = True,
    ) -> None:
        self._finder = reference_finder
        self._source = document_source
        self.include_declaration = include_declaration

        self.state = SessionState.IDLE
        self.target: Optional[TextPosition] = None
        self.line_index: Optional[LineIndex] = None
        self.error: Optional[Err] = None

        self.generation = 0
        self.fetch_count = 0
        self._fetch_task: Optional[asyncio.Task] = None
        # Fetches of ended interactions, kept referenced until they finish
        self._orphaned: Set[asyncio.Task] = set()

    @property
    def fetch_task(self) -> Optional[asyncio.Task]:
        return self._fetch_task

    def begin(self, target: TextPosition) -> None:
        """Set the position the next interaction renames."""
        if self.state is not SessionState.IDLE:
            raise RuntimeError("A rename interaction is already in progress")
        self.target = target

    def preview(
        self, new_name: str, preview_empty_name: bool = False
    ) -> Result[Optional[RenderResult]]:
        """Compute the preview for ``new_name``.

        Returns ``Ok(None)`` when there is nothing to show yet (fetch still
        pending, or a blank name that should not be previewed) and ``Err``
        when the fetch failed. Fetch failures are never raised here: the
        caller keeps them until the user confirms the rename.
        """
        if self.state is SessionState.IDLE:
            self._start_fetch()
            return Ok(None)

        if self.state is SessionState.FETCH_PENDING:
            return Ok(None)

        if self.state is SessionState.ERRORED:
            if self.error is None:
                raise RuntimeError("Session errored without recording an error")
            return self.error

        if not preview_empty_name and is_blank_name(new_name):
            return Ok(None)

        if self.line_index is None:
            raise RuntimeError("Session is ready but holds no references")
        return Ok(render_index(self.line_index, new_name))

    def reset(self) -> None:
        """End the current interaction and forget everything it cached."""
        self.generation += 1
        if self._fetch_task is not None and not self._fetch_task.done():
            self._orphaned.add(self._fetch_task)
            self._fetch_task.add_done_callback(self._orphaned.discard)
        self._fetch_task = None

        self.state = SessionState.IDLE
        self.target = None
        self.line_index = None
        self.error = None

    async def settle(self) -> None:
        """Wait for the in-flight fetch, if any."""
        if self._fetch_task is not None:
            await asyncio.shield(self._fetch_task)

    def _start_fetch(self) -> None:
        if self.target is None:
            raise RuntimeError("No rename target, call begin() first")

        loop = asyncio.get_running_loop()
        self.generation += 1
        self.fetch_count += 1
        self.state = SessionState.FETCH_PENDING
        self.error = None
        self._fetch_task = loop.create_task(self._fetch(self.generation, self.target))

    def _is_current(self, generation: int) -> bool:
        return generation == self.generation

    def _fail(self, generation: int, kind: ErrorKind, message: str) -> None:
        if not self._is_current(generation):
            logger.debug(f"Discarding {kind.value} from an ended interaction")
            return
        self.error = Err(kind, format_message(message))
        self.line_index = None
        self.state = SessionState.ERRORED
        logger.info(f"Reference fetch ended with {kind.value}: {message}")

    async def _fetch(self, generation: int, target: TextPosition) -> None:
        try:
            raw = await self._finder.find_references(
                target, include_declaration=self.include_declaration
            )
        except NoCapableProviderError as e:
            self._fail(generation, ErrorKind.NO_CAPABLE_PROVIDER, str(e))
            return
        except LSPRequestError as e:
            self._fail(
                generation, ErrorKind.FETCH_FAILED, f"Error while finding references: {e}"
            )
            return
        except Exception as e:
            logger.exception("Reference request crashed")
            self._fail(
                generation, ErrorKind.FETCH_FAILED, f"Error while finding references: {e}"
            )
            return

        if not raw:
            self._fail(generation, ErrorKind.NOTHING_TO_RENAME, "Nothing to rename")
            return

        if not self._is_current(generation):
            logger.debug("Discarding references from an ended interaction")
            return

        locations = to_locations(raw)
        try:
            snapshot = await self._snapshot_lines(locations)
        except Exception as e:
            logger.exception("Failed to read referenced lines")
            self._fail(
                generation, ErrorKind.FETCH_FAILED, f"Error while reading buffers: {e}"
            )
            return

        if not self._is_current(generation):
            logger.debug("Discarding references from an ended interaction")
            return

        index = filter_duplicates(
            build_line_index(
                locations,
                lambda document_id, line: snapshot.get(document_id, {}).get(line),
            )
        )
        self.line_index = index
        self.state = SessionState.READY
        logger.debug(
            f"Cached {count_occurrences(index)} occurrences in {len(index)} documents"
        )

    async def _snapshot_lines(
        self, locations: Iterable[Location]
    ) -> Dict[str, Dict[int, str]]:
        wanted: Dict[str, Set[int]] = {}
        for location in locations:
            if location.is_single_line:
                wanted.setdefault(location.document_id, set()).add(location.line_number)

        snapshot: Dict[str, Dict[int, str]] = {}
        for document_id, line_numbers in wanted.items():
            lines = await self._source.read_lines(document_id, sorted(line_numbers))
            if lines is not None:
                snapshot[document_id] = lines
        return snapshot
