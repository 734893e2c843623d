# =============================================================================
# core/__init__.py
# =============================================================================
# This package holds everything that talks to (or interprets) the Coze API:
# data models, error taxonomy, HTTP gateway, response normalizer, chat
# poller and SSE decoder.
#
# ARCHITECTURAL RULE:
#   Nothing in this package imports FastMCP.  The MCP surface lives in
#   tools/; core/ can be driven directly from a test or a REPL.
# =============================================================================
