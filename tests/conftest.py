"""Pytest configuration and shared fixtures."""

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Tuple

import pytest

from inc_rename.config import IncRenameConfig
from inc_rename.models.responses import RenderResult, TextPosition


def lsp_location(
    path: str, line: int, start: int, end: int, end_line: Optional[int] = None
) -> Dict[str, Any]:
    """Build an LSP Location dict for a file path."""
    return {
        "uri": f"file://{path}",
        "range": {
            "start": {"line": line, "character": start},
            "end": {"line": line if end_line is None else end_line, "character": end},
        },
    }


class FakeEditor:
    """In-memory stand-in for NeovimClient.

    Documents are lists of lines keyed by path. Reference and rename
    responses are configured per test; ``gate`` lets a test hold the
    reference response until it decides to release it.
    """

    def __init__(self, documents: Optional[Dict[str, List[str]]] = None) -> None:
        self.project_path = "/project"
        self.documents: Dict[str, List[str]] = documents or {}
        self.references: List[Dict[str, Any]] = []
        self.references_error: Optional[Exception] = None
        self.rename_result: Optional[Dict[str, Any]] = None
        self.rename_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Future] = None
        self.cursor = TextPosition("/project/main.py", 0, 0)

        self.reference_calls: List[Tuple[TextPosition, bool]] = []
        self.rename_calls: List[Tuple[TextPosition, str]] = []
        self.applied: List[Dict[str, Any]] = []
        self.notifications: List[Tuple[str, int]] = []
        self.drawn: List[Tuple[RenderResult, str]] = []
        self.clear_calls = 0

    async def find_references(
        self, target: TextPosition, include_declaration: bool = True
    ) -> List[Dict[str, Any]]:
        self.reference_calls.append((target, include_declaration))
        if self.gate is not None:
            await self.gate
        if self.references_error is not None:
            raise self.references_error
        return list(self.references)

    async def read_lines(
        self, document_id: str, line_numbers: List[int]
    ) -> Optional[Dict[int, str]]:
        lines = self.documents.get(document_id)
        if lines is None:
            return None
        return {n: lines[n] for n in line_numbers if n < len(lines)}

    async def rename(
        self, target: TextPosition, new_name: str
    ) -> Optional[Dict[str, Any]]:
        self.rename_calls.append((target, new_name))
        if self.rename_error is not None:
            raise self.rename_error
        return self.rename_result

    async def apply_workspace_edit(self, workspace_edit: Dict[str, Any]) -> None:
        self.applied.append(workspace_edit)

    async def draw_preview(self, render: RenderResult, hl_group: str) -> None:
        self.drawn.append((render, hl_group))

    async def clear_preview(self) -> None:
        self.clear_calls += 1

    async def notify(self, message: str, level: int = logging.INFO) -> None:
        self.notifications.append((message, level))

    async def get_cursor_position(self) -> TextPosition:
        return self.cursor


@pytest.fixture
def editor() -> FakeEditor:
    """Editor with one open document containing three references on line 0."""
    return FakeEditor(
        documents={
            "/project/main.py": [
                "foo = foo + foo",
                "print(foo)",
            ]
        }
    )


@pytest.fixture
def location():
    """Factory for LSP Location dicts."""
    return lsp_location


@pytest.fixture
def config() -> IncRenameConfig:
    return IncRenameConfig(project_root=Path("/project"))


@pytest.fixture
def temp_project_dir() -> Generator[Path, None, None]:
    """Create a temporary project directory with a small Python file."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        project_root = Path(tmp_dir)
        (project_root / "main.py").write_text(
            "foo = 1\nbar = foo + foo\nprint(bar)\n"
        )
        yield project_root


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch):
    """Keep the developer's editor and overrides out of the tests."""
    monkeypatch.delenv("NVIM", raising=False)
    for key in (
        "INC_RENAME_COMMAND_NAME",
        "INC_RENAME_HL_GROUP",
        "INC_RENAME_PREVIEW_EMPTY_NAME",
        "INC_RENAME_SHOW_MESSAGE",
        "INC_RENAME_INCLUDE_DECLARATION",
        "INC_RENAME_TIMEOUT_MS",
        "INC_RENAME_LOG_LEVEL",
    ):
        monkeypatch.delenv(key, raising=False)
