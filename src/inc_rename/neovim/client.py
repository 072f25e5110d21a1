from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pynvim  # type: ignore

from ..config import IncRenameConfig, load_config
from ..models.errors import LSPRequestError, NoCapableProviderError
from ..models.responses import RenderResult, TextPosition, uri_to_document_id

logger = logging.getLogger(__name__)

NAMESPACE = "inc_rename"

# logging level -> vim.log.levels
_VIM_LOG_LEVELS = {
    logging.DEBUG: 1,
    logging.INFO: 2,
    logging.WARNING: 3,
    logging.ERROR: 4,
}

# Loaded buffer whose name is exactly `path`, or nil
_LUA_FIND_BUFFER = """
local function find_buffer(path)
    for _, bufnr in ipairs(vim.api.nvim_list_bufs()) do
        if vim.api.nvim_buf_is_loaded(bufnr) and vim.api.nvim_buf_get_name(bufnr) == path then
            return bufnr
        end
    end
    return nil
end
"""

# Shared Lua prelude: resolve a buffer and its rename-capable clients
_LUA_RENAME_CLIENTS = """
local get_clients = vim.lsp.get_clients or vim.lsp.get_active_clients
local function rename_clients(bufnr)
    local clients = vim.tbl_filter(function(client)
        return client.supports_method('textDocument/rename')
    end, get_clients({ bufnr = bufnr }))
    return clients
end
local function target_buffer(path)
    local bufnr = vim.fn.bufadd(path)
    vim.fn.bufload(bufnr)
    return bufnr
end
"""


def _byte_column(text: str, column: int) -> int:
    """Convert a string index into the byte column Neovim expects."""
    return len(text[:column].encode("utf-8"))


# LSP position encodings, keyed by offset_encoding
_OFFSET_ENCODINGS = ("utf-8", "utf-16", "utf-32")


def _to_lsp_character(text: str, column: int, encoding: str) -> int:
    """Convert a string index into an LSP character offset."""
    if encoding == "utf-8":
        return _byte_column(text, column)
    if encoding == "utf-16":
        return len(text[:column].encode("utf-16-le")) // 2
    return column


def _from_lsp_character(text: str, character: int, encoding: str) -> int:
    """Convert an LSP character offset into a string index."""
    if encoding == "utf-8":
        return len(text.encode("utf-8")[:character].decode("utf-8", "ignore"))
    if encoding == "utf-16":
        units = text.encode("utf-16-le")[: character * 2]
        return len(units.decode("utf-16-le", "ignore"))
    return character


class NeovimClient:
    """Async wrapper over a Neovim instance.

    Attaches to a running Neovim (``socket_path`` or the ``NVIM`` environment
    variable) or starts a headless one. Provides everything the rename needs
    from the editor: reference lookup, rename requests, workspace edit
    application, buffer line snapshots, preview drawing and notifications.
    """

    def __init__(
        self,
        project_path: str,
        socket_path: Optional[str] = None,
        config: Optional[IncRenameConfig] = None,
        init_lua: Optional[str] = None,
    ) -> None:
        """Initialize the Neovim client.

        Args:
            project_path: Root path of the project
            socket_path: Socket of a running Neovim to attach to. When omitted,
                ``$NVIM`` is used if set, otherwise a headless Neovim is started.
            config: Configuration; loaded from the project when omitted
            init_lua: Config file for a spawned Neovim (``--clean`` if omitted)
        """
        self.project_path = Path(project_path).resolve()
        attach_to = socket_path or os.getenv("NVIM")
        self._attach = attach_to is not None
        self.socket_path = attach_to or self._create_socket_path()
        self.init_lua = init_lua
        self.nvim: Optional[pynvim.Nvim] = None
        self._process: Optional[asyncio.subprocess.Process] = None
        self._started = False

        self.config = config or load_config(self.project_path)
        self._namespace: Optional[int] = None
        # offset encoding of the client that produced the last rename edit
        self._offset_encoding = "utf-16"
        # (document_id, line) -> original text of every line drawn over
        self._drawn: Dict[Tuple[str, int], str] = {}
        # document_id -> 'modified' flag before the preview touched it
        self._modified_before: Dict[str, bool] = {}

    def _create_socket_path(self) -> str:
        """Create a unique socket path for a spawned Neovim instance."""
        temp_dir = tempfile.gettempdir()
        return os.path.join(temp_dir, f"inc_rename_{os.getpid()}.sock")

    async def start(self) -> None:
        """Connect to Neovim, starting a headless instance if needed."""
        if self._started:
            return

        if not self._attach:
            await self._spawn()

        loop = asyncio.get_event_loop()
        try:
            self.nvim = await asyncio.wait_for(
                loop.run_in_executor(
                    None, lambda: pynvim.attach("socket", path=self.socket_path)
                ),
                timeout=5.0,
            )
        except asyncio.TimeoutError:
            await self.stop()
            raise RuntimeError(
                f"Timeout connecting to Neovim socket: {self.socket_path}"
            )
        except Exception as e:
            await self.stop()
            raise RuntimeError(f"Failed to connect to Neovim: {e}")

        self._started = True
        logger.debug(f"Connected to Neovim at {self.socket_path}")

    async def _spawn(self) -> None:
        cmd = [
            "nvim",
            "--headless",
            "--listen",
            self.socket_path,
        ]
        if self.init_lua:
            cmd += ["-u", self.init_lua]
        else:
            cmd.append("--clean")
        cmd += [
            "--cmd",
            "set noswapfile",
            "--cmd",
            f"cd {self.project_path}",
        ]

        self._process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        # Wait for socket file to exist
        socket_timeout = 3.0
        socket_start = asyncio.get_event_loop().time()
        while not os.path.exists(self.socket_path):
            if asyncio.get_event_loop().time() - socket_start > socket_timeout:
                await self.stop()
                raise RuntimeError(f"Socket file not created: {self.socket_path}")
            await asyncio.sleep(0.1)

        # Give it a bit more time to be ready
        await asyncio.sleep(0.2)

    async def stop(self) -> None:
        """Disconnect, and shut down Neovim if this client started it."""
        loop = asyncio.get_event_loop()
        if self.nvim:
            if not self._attach:
                try:
                    await loop.run_in_executor(
                        None, lambda: self.nvim.command("qa!") if self.nvim else None
                    )
                except Exception:
                    # Neovim drops the connection while quitting
                    pass

            try:
                if hasattr(self.nvim, "close"):
                    await loop.run_in_executor(None, self.nvim.close)
            except Exception:
                pass

            self.nvim = None

        if self._process:
            try:
                self._process.terminate()
                await asyncio.wait_for(self._process.wait(), timeout=2.0)
            except asyncio.TimeoutError:
                self._process.kill()
                await self._process.wait()
            except ProcessLookupError:
                pass
            self._process = None

            # Clean up socket file of the instance we started
            if os.path.exists(self.socket_path):
                try:
                    os.remove(self.socket_path)
                except OSError:
                    pass

        self._started = False
        self._namespace = None
        self._drawn.clear()
        self._modified_before.clear()

    async def execute_lua(self, lua_code: str, *args: Any) -> Any:
        """Execute Lua code in Neovim.

        Args:
            lua_code: Lua code to execute
            *args: Arguments to pass to the Lua code (accessed via ... in Lua)

        Returns:
            Result from Lua execution
        """
        if not self._started:
            raise RuntimeError("Neovim not started. Call start() first.")

        if not self.nvim:
            raise RuntimeError("Neovim not connected")

        # pynvim expects the arguments as a list
        loop = asyncio.get_event_loop()
        try:
            result = await loop.run_in_executor(
                None,
                lambda: self.nvim.exec_lua(lua_code, list(args)) if self.nvim else None,
            )
            return result
        except Exception as e:
            raise RuntimeError(f"Lua execution failed: {e}")

    async def open_file(self, filepath: str) -> int:
        """Open a file in a Neovim buffer.

        Args:
            filepath: Path to the file (relative to project root or absolute)

        Returns:
            Buffer number
        """
        file_path = Path(filepath)
        if not file_path.is_absolute():
            file_path = self.project_path / file_path
        file_path = file_path.resolve()

        if not file_path.exists():
            raise RuntimeError(f"Failed to open file {filepath}: File not found")

        lua_code = """
        local path = ...
        vim.cmd.edit(vim.fn.fnameescape(path))
        return vim.api.nvim_get_current_buf()
        """
        return await self.execute_lua(lua_code, str(file_path))

    async def get_cursor_position(self) -> TextPosition:
        """Position of the cursor in the current window (0-indexed)."""
        lua_code = """
        local bufnr = vim.api.nvim_get_current_buf()
        local cursor = vim.api.nvim_win_get_cursor(0)
        local line = vim.api.nvim_buf_get_lines(bufnr, cursor[1] - 1, cursor[1], false)[1] or ''
        return {
            path = vim.api.nvim_buf_get_name(bufnr),
            line = cursor[1] - 1,
            col = cursor[2],
            text = line,
        }
        """
        result = await self.execute_lua(lua_code)
        # Neovim reports a byte column, we work with string indices
        text = result["text"]
        column = len(text.encode("utf-8")[: result["col"]].decode("utf-8", "ignore"))
        return TextPosition(document_id=result["path"], line=result["line"], column=column)

    # ========================================================================
    # LSP: references and rename
    # ========================================================================

    async def find_references(
        self, target: TextPosition, include_declaration: bool = True
    ) -> List[Dict[str, Any]]:
        """Get LSP references for the symbol at ``target``.

        Columns are string indices both ways; they are converted to and from
        the offset encoding of the language server here.

        Raises:
            NoCapableProviderError: No rename-capable LSP client is attached
            LSPRequestError: The server answered with an error
        """
        lua_code = _LUA_RENAME_CLIENTS + """
        local path, line, columns, include_declaration, timeout = ...
        local bufnr = target_buffer(path)
        local clients = rename_clients(bufnr)
        if #clients == 0 then
            return { no_client = true }
        end
        local encoding = clients[1].offset_encoding or 'utf-16'

        local params = {
            textDocument = vim.lsp.util.make_text_document_params(bufnr),
            position = { line = line, character = columns[encoding] or columns['utf-16'] },
            context = { includeDeclaration = include_declaration },
        }
        local responses, err = vim.lsp.buf_request_sync(bufnr, 'textDocument/references', params, timeout)
        if not responses then
            return { error = err or 'request timed out' }
        end

        local locations = {}
        for _, response in pairs(responses) do
            if response.error then
                return { error = response.error.message or 'references request failed' }
            end
            for _, loc in ipairs(response.result or {}) do
                table.insert(locations, loc)
            end
        end
        return { locations = locations, encoding = encoding }
        """

        result = await self.execute_lua(
            lua_code,
            target.document_id,
            target.line,
            await self._lsp_columns(target),
            include_declaration,
            self.config.timeout_ms,
        )
        if result.get("no_client"):
            raise NoCapableProviderError(
                "No active language server with rename capability"
            )
        if "error" in result:
            raise LSPRequestError(result["error"])

        locations = result.get("locations") or []
        await self._decode_locations(locations, result.get("encoding") or "utf-16")
        return locations

    async def rename(
        self, target: TextPosition, new_name: str
    ) -> Optional[Dict[str, Any]]:
        """Ask the language server for the WorkspaceEdit renaming ``target``.

        Returns:
            WorkspaceEdit dictionary, or None if the server returned nothing

        Raises:
            NoCapableProviderError: No rename-capable LSP client is attached
            LSPRequestError: The server answered with an error
        """
        lua_code = _LUA_RENAME_CLIENTS + """
        local path, line, columns, new_name, timeout = ...
        local bufnr = target_buffer(path)
        local clients = rename_clients(bufnr)
        if #clients == 0 then
            return { no_client = true }
        end
        local encoding = clients[1].offset_encoding or 'utf-16'

        local params = {
            textDocument = vim.lsp.util.make_text_document_params(bufnr),
            position = { line = line, character = columns[encoding] or columns['utf-16'] },
            newName = new_name,
        }
        local responses, err = vim.lsp.buf_request_sync(bufnr, 'textDocument/rename', params, timeout)
        if not responses then
            return { error = err or 'request timed out' }
        end

        for client_id, response in pairs(responses) do
            if response.error then
                return { error = response.error.message or 'rename request failed' }
            end
            if response.result then
                local client = vim.lsp.get_client_by_id(client_id)
                return { edit = response.result, encoding = client and client.offset_encoding or 'utf-16' }
            end
        end
        return { edit = vim.NIL }
        """

        result = await self.execute_lua(
            lua_code,
            target.document_id,
            target.line,
            await self._lsp_columns(target),
            new_name,
            self.config.timeout_ms,
        )
        if result.get("no_client"):
            raise NoCapableProviderError(
                "No active language server with rename capability"
            )
        if "error" in result:
            raise LSPRequestError(result["error"])

        self._offset_encoding = result.get("encoding") or self._offset_encoding
        return result.get("edit") or None

    async def _lsp_columns(self, target: TextPosition) -> Dict[str, int]:
        """Column of ``target`` in every LSP offset encoding.

        Lua picks the one matching the client it talks to. If the target
        buffer is not loaded yet the string index is used as is.
        """
        lines = await self.read_lines(target.document_id, [target.line])
        text = (lines or {}).get(target.line)
        if text is None:
            return {encoding: target.column for encoding in _OFFSET_ENCODINGS}
        return {
            encoding: _to_lsp_character(text, target.column, encoding)
            for encoding in _OFFSET_ENCODINGS
        }

    async def _decode_locations(
        self, locations: List[Dict[str, Any]], encoding: str
    ) -> None:
        """Rewrite reference ranges from ``encoding`` offsets to string indices.

        Ranges are changed in place. Documents without a loaded buffer are
        left alone; they are dropped from the preview anyway.
        """
        if encoding == "utf-32":
            return

        ranges: List[Tuple[str, Dict[str, Any]]] = []
        wanted: Dict[str, set] = {}
        for location in locations:
            uri = location.get("uri") or location.get("targetUri")
            range_data = location.get("range") or location.get("targetRange")
            if not uri or not isinstance(range_data, dict):
                continue
            try:
                line_numbers = {range_data["start"]["line"], range_data["end"]["line"]}
            except (KeyError, TypeError):
                continue
            document_id = uri_to_document_id(uri)
            wanted.setdefault(document_id, set()).update(line_numbers)
            ranges.append((document_id, range_data))

        texts: Dict[str, Dict[int, str]] = {}
        for document_id, line_numbers in wanted.items():
            texts[document_id] = (
                await self.read_lines(document_id, sorted(line_numbers)) or {}
            )

        for document_id, range_data in ranges:
            for position in (range_data["start"], range_data["end"]):
                text = texts[document_id].get(position["line"])
                if text is not None and "character" in position:
                    position["character"] = _from_lsp_character(
                        text, position["character"], encoding
                    )

    async def apply_workspace_edit(self, workspace_edit: Dict[str, Any]) -> None:
        """Apply a WorkspaceEdit using Neovim's LSP utilities."""
        lua_code = """
        local workspace_edit, encoding = ...
        vim.lsp.util.apply_workspace_edit(workspace_edit, encoding)
        """
        await self.execute_lua(lua_code, workspace_edit, self._offset_encoding)

    # ========================================================================
    # Buffers, preview drawing and notifications
    # ========================================================================

    async def read_lines(
        self, document_id: str, line_numbers: List[int]
    ) -> Optional[Dict[int, str]]:
        """Read lines of a loaded buffer.

        Returns:
            Mapping of line number to text, or None when the document has no
            loaded buffer. Lines past the end of the buffer are left out.
        """
        lua_code = _LUA_FIND_BUFFER + """
        local path, line_numbers = ...
        local bufnr = find_buffer(path)
        if not bufnr then
            return vim.NIL
        end
        local lines = {}
        for i, line_nr in ipairs(line_numbers) do
            lines[i] = vim.api.nvim_buf_get_lines(bufnr, line_nr, line_nr + 1, false)[1] or vim.NIL
        end
        return lines
        """
        result = await self.execute_lua(lua_code, document_id, line_numbers)
        if result is None:
            return None
        return {
            line_number: text
            for line_number, text in zip(line_numbers, result)
            if text is not None
        }

    async def _get_namespace(self) -> int:
        if self._namespace is None:
            self._namespace = await self.execute_lua(
                "return vim.api.nvim_create_namespace(...)", NAMESPACE
            )
        return self._namespace

    async def draw_preview(self, render: RenderResult, hl_group: str) -> None:
        """Write previewed lines into their buffers and highlight the new name.

        The original text of every line touched is remembered so that
        ``clear_preview`` can put it back.
        """
        if render.is_empty:
            return

        namespace = await self._get_namespace()
        lines = []
        for line in render.lines:
            self._drawn.setdefault((line.document_id, line.line_number), line.original_text)
            lines.append(
                {
                    "path": line.document_id,
                    "line": line.line_number,
                    "text": line.new_text,
                    "highlights": [
                        [
                            _byte_column(line.new_text, span.start),
                            _byte_column(line.new_text, span.end),
                        ]
                        for span in line.highlights
                    ],
                }
            )

        lua_code = _LUA_FIND_BUFFER + """
        local ns, hl_group, lines = ...
        local modified = {}
        for _, item in ipairs(lines) do
            local bufnr = find_buffer(item.path)
            if bufnr then
                if modified[item.path] == nil then
                    modified[item.path] = vim.bo[bufnr].modified
                end
                vim.api.nvim_buf_set_lines(bufnr, item.line, item.line + 1, false, { item.text })
                for _, hl in ipairs(item.highlights) do
                    vim.api.nvim_buf_set_extmark(bufnr, ns, item.line, hl[1], {
                        end_col = hl[2],
                        hl_group = hl_group,
                    })
                end
            end
        end
        return modified
        """
        modified = await self.execute_lua(lua_code, namespace, hl_group, lines)
        # An empty Lua table comes back as a list
        if not isinstance(modified, dict):
            return
        for document_id, was_modified in modified.items():
            self._modified_before.setdefault(document_id, bool(was_modified))

    async def clear_preview(self) -> None:
        """Restore every line drawn over and remove the preview highlights."""
        if not self._drawn:
            return

        namespace = await self._get_namespace()
        lines = [
            {"path": document_id, "line": line_number, "text": text}
            for (document_id, line_number), text in self._drawn.items()
        ]
        lua_code = _LUA_FIND_BUFFER + """
        local ns, lines, modified = ...
        local touched = {}
        for _, item in ipairs(lines) do
            local bufnr = find_buffer(item.path)
            if bufnr then
                vim.api.nvim_buf_set_lines(bufnr, item.line, item.line + 1, false, { item.text })
                touched[item.path] = bufnr
            end
        end
        for path, bufnr in pairs(touched) do
            vim.api.nvim_buf_clear_namespace(bufnr, ns, 0, -1)
            if modified[path] ~= nil then
                vim.bo[bufnr].modified = modified[path]
            end
        end
        """
        await self.execute_lua(lua_code, namespace, lines, dict(self._modified_before))
        self._drawn.clear()
        self._modified_before.clear()

    async def notify(self, message: str, level: int = logging.INFO) -> None:
        """Show a message to the user through vim.notify."""
        vim_level = _VIM_LOG_LEVELS.get(level, 2)
        try:
            await self.execute_lua("vim.notify(...)", message, vim_level)
        except RuntimeError as e:
            # The message is logged either way
            logger.warning(f"Could not notify Neovim: {e}")

    def is_running(self) -> bool:
        """Check if the Neovim connection is up."""
        return self._started and self.nvim is not None

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.stop()
