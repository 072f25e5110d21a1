from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Tuple

from ..config import IncRenameConfig
from ..models.errors import (
    Err,
    ErrorKind,
    LSPRequestError,
    NoCapableProviderError,
    format_message,
)
from ..models.responses import RenameOutcome, TextPosition

logger = logging.getLogger(__name__)

Notifier = Callable[[str, int], Awaitable[None]]


class RenameProvider(Protocol):
    async def rename(
        self, target: TextPosition, new_name: str
    ) -> Optional[Dict[str, Any]]:
        ...

    async def apply_workspace_edit(self, workspace_edit: Dict[str, Any]) -> None:
        ...


def summarize_workspace_edit(workspace_edit: Dict[str, Any]) -> Tuple[int, int]:
    """Count the text edits and the distinct documents of a WorkspaceEdit.

    Handles both encodings: ``documentChanges`` (a list of per-document
    records with their own ``edits``) and the older ``changes`` mapping of
    uri to edits. Resource operations (create/rename/delete file) carry no
    edits and are not counted.

    Returns:
        (changed_instances, changed_files)
    """
    instances = 0
    files: Set[str] = set()

    document_changes = workspace_edit.get("documentChanges")
    if document_changes is not None:
        for change in document_changes:
            edits = change.get("edits")
            if edits is None:
                continue
            instances += len(edits)
            files.add(change["textDocument"]["uri"])
    else:
        for uri, edits in (workspace_edit.get("changes") or {}).items():
            instances += len(edits)
            files.add(uri)

    return instances, len(files)


def format_summary(changed_instances: int, changed_files: int) -> str:
    return "Renamed {} instance{} in {} file{}".format(
        changed_instances,
        "" if changed_instances == 1 else "s",
        changed_files,
        "" if changed_files == 1 else "s",
    )


class CommitCoordinator:
    """Performs the real rename once the user confirms the new name."""

    def __init__(
        self,
        rename_provider: RenameProvider,
        config: IncRenameConfig,
        notifier: Notifier,
    ) -> None:
        self.rename_provider = rename_provider
        self.config = config
        self.notify = notifier

    async def commit(
        self,
        target: TextPosition,
        new_name: str,
        pending_error: Optional[Err] = None,
    ) -> RenameOutcome:
        """Rename the symbol at ``target`` to ``new_name``.

        Args:
            target: Position of the symbol
            new_name: The confirmed new name
            pending_error: Error stored while previewing; if set, the rename
                is not attempted and the error is reported instead

        Returns:
            RenameOutcome describing what happened
        """
        if pending_error is not None:
            return await self._report(pending_error.kind, pending_error.message)

        try:
            workspace_edit = await self.rename_provider.rename(target, new_name)
        except NoCapableProviderError as e:
            return await self._report(ErrorKind.NO_CAPABLE_PROVIDER, str(e))
        except (LSPRequestError, RuntimeError) as e:
            return await self._report(
                ErrorKind.RENAME_FAILED, f"Error while renaming: {e}"
            )

        changed_instances, changed_files = (
            summarize_workspace_edit(workspace_edit) if workspace_edit else (0, 0)
        )
        if not changed_instances:
            return await self._report(ErrorKind.NOTHING_RENAMED, "Nothing renamed")

        try:
            await self.rename_provider.apply_workspace_edit(workspace_edit)
        except RuntimeError as e:
            return await self._report(
                ErrorKind.RENAME_FAILED, f"Error while applying the rename: {e}"
            )

        message = format_summary(changed_instances, changed_files)
        logger.info(message)
        if self.config.show_message:
            await self.notify(message, logging.INFO)

        if self.config.post_hook is not None:
            try:
                self.config.post_hook(workspace_edit)
            except Exception:
                logger.exception("post_hook raised after a successful rename")

        return RenameOutcome(
            success=True,
            message=message,
            level=logging.INFO,
            changed_instances=changed_instances,
            changed_files=changed_files,
            workspace_edit=workspace_edit,
        )

    async def _report(self, kind: ErrorKind, message: str) -> RenameOutcome:
        message = format_message(message)
        logger.log(kind.level, message)
        await self.notify(message, kind.level)
        return RenameOutcome(
            success=False, message=message, level=kind.level, error_kind=kind.value
        )
