# =============================================================================
# tools/__init__.py
# =============================================================================
# This package exposes the Coze operations as MCP tools.
#
#   coze_tools.py   CozeTools: argument checks, API calls, result formatting
#   mcp_server.py   FastMCP registrations, colored stderr logging
#
# Tool contracts (names, docstrings, typed parameters) live in
# mcp_server.py; the MCP client reads them to decide what to call.
# =============================================================================
