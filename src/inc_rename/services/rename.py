"""Interactive incremental rename.

Drives one rename interaction at a time: ``begin`` captures the symbol,
``preview`` runs on every keystroke, and the interaction ends with either
``execute`` (the user confirmed) or ``cancel``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from ..config import IncRenameConfig
from ..core.session import PreviewSession
from ..models.errors import Err, ErrorKind, format_message
from ..models.responses import RenameOutcome, RenderResult, SessionState, TextPosition
from .commit import CommitCoordinator

logger = logging.getLogger(__name__)


class IncRenameService:
    def __init__(self, client: Any, config: IncRenameConfig) -> None:
        """Initialize IncRenameService.

        Args:
            client: Editor collaborator (NeovimClient or compatible): finds
                references, renames, reads lines, draws previews and notifies
            config: Rename configuration
        """
        self.client = client
        self.config = config
        self.session = PreviewSession(
            reference_finder=client,
            document_source=client,
            include_declaration=config.include_declaration,
        )
        self.committer = CommitCoordinator(
            rename_provider=client, config=config, notifier=client.notify
        )
        # Unexpected failure of the preview path, reported when confirming
        self._preview_error: Optional[Err] = None

    @property
    def state(self) -> SessionState:
        return self.session.state

    async def begin(
        self,
        file: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> TextPosition:
        """Start a new interaction on the symbol at a position.

        Any interaction still in progress is cancelled first.

        Args:
            file: File path (relative to project root or absolute); the
                cursor position is used when omitted
            line: Line number (1-indexed)
            column: Column number (0-indexed)

        Returns:
            The targeted position (0-indexed)
        """
        await self.cancel()

        if file is None:
            target = await self.client.get_cursor_position()
        else:
            if line is None or column is None:
                raise ValueError("line and column are required when file is given")
            path = Path(file)
            if not path.is_absolute():
                path = Path(self.client.project_path) / path
            target = TextPosition(
                document_id=str(path.resolve()), line=line - 1, column=column
            )

        self.session.begin(target)
        logger.debug(f"Rename interaction started at {target}")
        return target

    async def preview(self, new_name: str) -> Optional[RenderResult]:
        """Preview ``new_name``; called on every keystroke.

        Returns the RenderResult that was drawn, or None when there is
        nothing to show (references not fetched yet, fetch failed, blank
        name). Never raises: failures are kept and reported by ``execute``.
        """
        try:
            if self.session.target is None and self.session.state is SessionState.IDLE:
                await self.begin()

            await self.client.clear_preview()
            result = self.session.preview(
                new_name, preview_empty_name=self.config.preview_empty_name
            )
            if isinstance(result, Err):
                logger.debug(f"Nothing to preview: {result.message}")
                return None

            render = result.value
            if render is not None:
                await self.client.draw_preview(render, self.config.hl_group)
            return render
        except Exception as e:
            logger.exception("Preview failed")
            self._preview_error = Err(
                ErrorKind.PREVIEW_FAILED,
                format_message(f"An error occurred in the preview function: {e}"),
            )
            return None

    async def settle(self) -> None:
        """Wait until the reference fetch of this interaction has finished."""
        await self.session.settle()

    async def cancel(self) -> None:
        """End the interaction without renaming anything."""
        try:
            await self.client.clear_preview()
        finally:
            self.session.reset()
            self._preview_error = None

    async def execute(self, new_name: str) -> RenameOutcome:
        """Confirm the rename: restore the previewed lines, then rename for real."""
        target = self.session.target
        pending_error = self._preview_error or self.session.error
        try:
            await self.client.clear_preview()
        finally:
            self.session.reset()
            self._preview_error = None

        if target is None:
            target = await self.client.get_cursor_position()

        return await self.committer.commit(target, new_name, pending_error=pending_error)
