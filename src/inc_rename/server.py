from __future__ import annotations

import os
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from .config import IncRenameConfig, load_config, merge_config
from .models.responses import RenameOutcome, RenderResult
from .neovim.client import NeovimClient
from .services.rename import IncRenameService


class IncRenameServer:
    """Server facade delegating rename requests to the service layer.

    Owns the Neovim connection and the single rename interaction of the
    editor it is attached to.
    """

    def __init__(
        self,
        project_path: Optional[str] = None,
        socket_path: Optional[str] = None,
        user_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.project_path = project_path or os.getcwd()
        self.config: IncRenameConfig = merge_config(
            load_config(Path(self.project_path).resolve()), user_config
        )

        self.nvim_client = NeovimClient(
            project_path=self.project_path, socket_path=socket_path, config=self.config
        )
        self.rename = IncRenameService(client=self.nvim_client, config=self.config)

    async def start(self) -> None:
        """Connect to Neovim."""
        await self.nvim_client.start()

    async def stop(self) -> None:
        """Cancel any open interaction and disconnect."""
        if self.nvim_client.is_running():
            await self.rename.cancel()
        await self.nvim_client.stop()

    async def start_rename(
        self, file: Optional[str] = None, line: Optional[int] = None, column: Optional[int] = None
    ) -> Dict[str, Any]:
        target = await self.rename.begin(file, line, column)
        return {"file": target.document_id, "line": target.line + 1, "column": target.column}

    async def preview_rename(self, new_name: str, wait: bool = True) -> Dict[str, Any]:
        render = await self.rename.preview(new_name)
        if render is None and wait:
            # First keystroke only schedules the fetch
            await self.rename.settle()
            render = await self.rename.preview(new_name)
        return self._preview_response(render)

    async def cancel_rename(self) -> Dict[str, Any]:
        await self.rename.cancel()
        return {"state": self.rename.state.value}

    async def execute_rename(self, new_name: str) -> RenameOutcome:
        return await self.rename.execute(new_name)

    def _preview_response(self, render: Optional[RenderResult]) -> Dict[str, Any]:
        response: Dict[str, Any] = {"state": self.rename.state.value}
        error = self.rename.session.error
        if error is not None:
            response["error"] = error.message
        if render is not None:
            response.update(
                {
                    "new_name": render.new_name,
                    "affected_files": render.affected_files,
                    "total_occurrences": render.total_occurrences,
                    "lines": [asdict(line) for line in render.lines],
                }
            )
        return response


__all__ = ["IncRenameServer"]
