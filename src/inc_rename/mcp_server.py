"""MCP Server for inc-rename.

Exposes the incremental rename of an attached Neovim as MCP tools using
FastMCP: start an interaction, preview candidate names as they are typed,
cancel, and confirm through the tool named after ``command_name``.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import os
import signal
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from mcp.server import FastMCP

from .config import load_config
from .server import IncRenameServer

logger = logging.getLogger(__name__)

# Global server instance and project path
_server: Optional[IncRenameServer] = None
_project_path: Optional[str] = None


mcp = FastMCP("inc-rename")


def set_project_path(path: str) -> None:
    """Set the project path for the rename server."""
    global _project_path
    _project_path = str(Path(path).resolve())


def get_project_path() -> str:
    """Get the current project path."""
    return _project_path or os.getenv("INC_RENAME_PROJECT_PATH") or os.getcwd()


async def get_server() -> IncRenameServer:
    """Get or create the server instance."""
    global _server
    if _server is None:
        _server = IncRenameServer(
            project_path=get_project_path(),
            socket_path=os.getenv("INC_RENAME_NVIM_SOCKET"),
        )
        await _server.start()
    return _server


def _cleanup_server() -> None:
    """Disconnect from Neovim on exit."""
    global _server
    if _server is not None:
        try:
            # Run cleanup in a new event loop since we might be called from atexit
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            try:
                loop.run_until_complete(_server.stop())
            finally:
                loop.close()
        except Exception:
            logger.exception("Error while shutting down")
        finally:
            _server = None


def _setup_cleanup_handlers() -> None:
    """Set up signal handlers and atexit hooks for cleanup."""
    atexit.register(_cleanup_server)

    def signal_handler(signum, frame):
        _cleanup_server()
        # Re-raise the signal to allow normal termination
        signal.signal(signum, signal.SIG_DFL)
        signal.raise_signal(signum)

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)


# ============================================================================
# Tools
# ============================================================================


@mcp.tool()
async def start_rename(
    file: Optional[str] = None,
    line: Optional[int] = None,
    column: Optional[int] = None,
) -> Dict[str, Any]:
    """Start renaming the symbol at a position.

    Args:
        file: File path (relative to project root or absolute). Uses the
            cursor position of the editor when omitted.
        line: Line number (1-indexed)
        column: Column number (0-indexed)

    Returns:
        The targeted position
    """
    server = await get_server()
    return await server.start_rename(file, line, column)


@mcp.tool()
async def preview_rename(new_name: str, wait: bool = True) -> Dict[str, Any]:
    """Preview renaming the current symbol to new_name.

    Call it again with every change of the candidate name; the editor shows
    the renamed lines with the new name highlighted. Nothing is written
    until the rename is confirmed.

    Args:
        new_name: Candidate name
        wait: Wait for the references on the first call instead of
            returning an empty preview

    Returns:
        Session state plus the previewed lines with highlight spans
    """
    server = await get_server()
    return await server.preview_rename(new_name, wait)


@mcp.tool()
async def cancel_rename() -> Dict[str, Any]:
    """Abandon the current rename and restore the previewed lines."""
    server = await get_server()
    return await server.cancel_rename()


async def execute_rename(new_name: str) -> Dict[str, Any]:
    """Rename the current symbol to new_name across all files.

    Args:
        new_name: The new name

    Returns:
        Outcome with the number of changed instances and files
    """
    server = await get_server()
    outcome = await server.execute_rename(new_name)
    return asdict(outcome)


def register_command(server: FastMCP, command_name: str) -> None:
    """Register the confirming tool under the configured command name."""
    server.add_tool(execute_rename, name=command_name)


def main():
    """Run the MCP server.

    The project path can be set via:
    1. First command line argument
    2. INC_RENAME_PROJECT_PATH environment variable
    3. Current working directory (default)

    Set INC_RENAME_NVIM_SOCKET (or run inside Neovim, which sets $NVIM) to
    attach to a running editor.
    """
    _setup_cleanup_handlers()

    if len(sys.argv) > 1 and not sys.argv[1].startswith("-"):
        set_project_path(sys.argv[1])
        # Remove the argument so FastMCP doesn't see it
        sys.argv = [sys.argv[0]] + sys.argv[2:]

    project_path = get_project_path()
    config = load_config(Path(project_path))

    # stdout is used for the MCP protocol
    logging.basicConfig(
        stream=sys.stderr,
        level=config.log_level.upper(),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    logger.info(f"Starting inc-rename MCP server for {project_path}")

    register_command(mcp, config.command_name)
    mcp.run()


if __name__ == "__main__":
    main()
