"""Unit tests for the server facade and the MCP command registration."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from inc_rename.mcp_server import execute_rename, register_command
from inc_rename.server import IncRenameServer
from inc_rename.services.rename import IncRenameService


@pytest.fixture
def server(temp_project_dir: Path, editor) -> IncRenameServer:
    server = IncRenameServer(project_path=str(temp_project_dir))
    server.nvim_client = editor
    server.rename = IncRenameService(client=editor, config=server.config)
    return server


class TestIncRenameServer:
    def test_user_config_is_merged(self, temp_project_dir):
        server = IncRenameServer(
            project_path=str(temp_project_dir), user_config={"hl_group": "IncSearch"}
        )

        assert server.config.hl_group == "IncSearch"
        assert server.nvim_client.config is server.config

    def test_invalid_user_config(self, temp_project_dir):
        with pytest.raises(ValueError):
            IncRenameServer(project_path=str(temp_project_dir), user_config={"hl": "x"})

    @pytest.mark.asyncio
    async def test_preview_waits_for_references(self, server, editor, location):
        editor.references = [
            location("/project/main.py", 0, 0, 3),
            location("/project/main.py", 0, 6, 9),
        ]
        start = await server.start_rename("/project/main.py", 1, 0)

        response = await server.preview_rename("x")

        assert start == {"file": "/project/main.py", "line": 1, "column": 0}
        assert response["state"] == "ready"
        assert response["new_name"] == "x"
        assert response["total_occurrences"] == 2
        assert response["lines"][0]["new_text"] == "x = x + foo"
        assert response["lines"][0]["highlights"] == [
            {"start": 0, "end": 1},
            {"start": 4, "end": 5},
        ]

    @pytest.mark.asyncio
    async def test_preview_without_wait(self, server, editor, location):
        editor.references = [location("/project/main.py", 0, 0, 3)]
        await server.start_rename("/project/main.py", 1, 0)

        response = await server.preview_rename("x", wait=False)

        assert response == {"state": "fetch_pending"}
        await server.rename.settle()

    @pytest.mark.asyncio
    async def test_preview_reports_stored_error(self, server, editor):
        editor.references = []
        await server.start_rename("/project/main.py", 1, 0)

        response = await server.preview_rename("x")

        assert response["state"] == "errored"
        assert response["error"] == "[inc-rename] Nothing to rename"

    @pytest.mark.asyncio
    async def test_cancel(self, server, editor, location):
        editor.references = [location("/project/main.py", 0, 0, 3)]
        await server.start_rename("/project/main.py", 1, 0)
        await server.preview_rename("x")

        assert await server.cancel_rename() == {"state": "idle"}


class TestRegisterCommand:
    def test_registers_execute_under_command_name(self):
        mcp = MagicMock()

        register_command(mcp, "IncRename")

        mcp.add_tool.assert_called_once_with(execute_rename, name="IncRename")
