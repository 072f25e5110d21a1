"""Main entry point for the inc-rename MCP server."""

from inc_rename.mcp_server import main, mcp, set_project_path

# Expose mcp object for MCP inspector
__all__ = ["mcp", "main", "set_project_path"]

if __name__ == "__main__":
    main()
