# =============================================================================
# tools/mcp_server.py  -  FastMCP Tool Server (ALL Coze tools in one place)
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Registers every MCP tool with FastMCP.  Each tool is a thin wrapper:
#   it logs the call, hands the arguments to CozeTools.dispatch()
#   (tools/coze_tools.py), logs the result and returns it as a dict.
#
# HOW IT WORKS (the flow):
#   1. An MCP client calls a tool by name (e.g. "list_knowledge_bases")
#   2. FastMCP routes the call to the decorated coroutine below
#   3. The coroutine calls dispatch(), which talks to the Coze API
#   4. The client receives the text as content and the payload as
#      structuredContent; an error result is raised as ToolError so the
#      MCP response carries isError=true
#
# TOOL NAMING CONVENTIONS:
#   - list_*   → Read-only retrieval (safe to retry)
#   - create_* / upload_* → Write operations (NOT idempotent)
#   - chat / chat_stream  → Send a message; the bot's reply is returned
#
# RUNNING THIS SERVER:
#     a) python main.py                    (stdio, the default)
#     b) python main.py --transport http   (streamable HTTP)
#     c) python -m tools.mcp_server        (stdio, env-only configuration)
# =============================================================================

import json
import logging
import sys
from typing import Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult as McpToolResult
from mcp.types import TextContent

from core.config import Settings, load_settings
from core.gateway import CozeApiClient
from tools.coze_tools import CozeTools

# =============================================================================
# Logging Setup
# =============================================================================
# We log to STDERR because stdio transport uses STDOUT for the MCP JSON
# stream; a stray log line on stdout would corrupt the protocol.
#
# ANSI COLOR CODES:
#     - CYAN for incoming requests (tool name + parameters)
#     - GREEN for response JSON
#     - YELLOW for intermediate status/progress messages
# =============================================================================

_CYAN = "\033[36m"     # Requests (tool calls with params)
_GREEN = "\033[32m"    # Responses (JSON output)
_YELLOW = "\033[33m"   # Status/progress messages
_RESET = "\033[0m"

# Never echo these argument values into the log.
_REDACTED_PARAMS = {"api_key", "token"}


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [MCP] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
        force=True,
    )


def _log_request(tool_name: str, **params) -> None:
    """Log an incoming tool call with its parameters in CYAN."""
    param_str = ", ".join(
        f"{k}={'***' if k in _REDACTED_PARAMS else repr(v)}"
        for k, v in params.items()
        if v is not None
    )
    logging.info(f"{_CYAN}{tool_name} called with: {param_str}{_RESET}")


def _log_status(message: str) -> None:
    """Log an intermediate status message in YELLOW."""
    logging.info(f"{_YELLOW}  → {message}{_RESET}")


def _log_response(tool_name: str, result: dict) -> dict:
    """Log the tool response as compact JSON in GREEN, then return it."""
    logging.info(
        f"{_GREEN}  ← {tool_name} response: "
        f"{json.dumps(result, separators=(',', ':'), ensure_ascii=False)}{_RESET}"
    )
    return result


# =============================================================================
# Server state
# =============================================================================
# The httpx client must be created inside the event loop FastMCP runs, so
# configure() only records settings and _get_tools() builds the client on
# the first tool call.
# =============================================================================
_settings = Settings()
_tools: Optional[CozeTools] = None


def configure(settings: Settings) -> None:
    global _settings, _tools
    _settings = settings
    _tools = None


def _get_tools() -> CozeTools:
    global _tools
    if _tools is None:
        client = CozeApiClient(
            base_url=_settings.api_base_url,
            api_token=_settings.api_token,
            timeout=_settings.request_timeout,
        )
        _tools = CozeTools(client, default_space_id=_settings.default_space_id)
        _log_status(f"Coze client ready for {_settings.api_base_url} (token {_settings.masked_token})")
    return _tools


async def _run(tool_name: str, **arguments) -> McpToolResult:
    _log_request(tool_name, **arguments)
    args = {k: v for k, v in arguments.items() if v is not None}
    result = await _get_tools().dispatch(tool_name, args)
    _log_response(tool_name, result.to_dict())
    if result.is_error:
        _log_status(f"{tool_name} returned an error")
        detail = json.dumps(result.structured_content, ensure_ascii=False)
        raise ToolError(f"{result.content}\n{detail}")
    return McpToolResult(
        content=[TextContent(type="text", text=result.content)],
        structured_content=result.structured_content,
    )


mcp = FastMCP("coze-mcp-server")


# =============================================================================
# TOOL: ping
# =============================================================================
@mcp.tool()
async def ping() -> McpToolResult:
    """Check that the server is alive.  Makes no network call."""
    return await _run("ping")


# =============================================================================
# TOOL: list_bots
# =============================================================================
@mcp.tool()
async def list_bots(
    workspace_id: Optional[str] = None,
    publish_status: str = "published_online",
    connector_id: str = "1024",
    page: int = 1,
    page_size: int = 20,
) -> McpToolResult:
    """List the bots in a Coze workspace.

    Args:
        workspace_id: Workspace (space) id.  Falls back to the configured
                      default space when omitted.
        publish_status: all, published_online, published_draft or
                        unpublished_draft.
        connector_id: Channel the bots are published to ("1024" = API).
        page: 1-based page number.
        page_size: Bots per page (1-300).

    Returns:
        Text listing plus structured {workspace_id, total, bots: [...]}.
    """
    return await _run(
        "list_bots",
        workspace_id=workspace_id,
        publish_status=publish_status,
        connector_id=connector_id,
        page=page,
        page_size=page_size,
    )


# =============================================================================
# TOOL: list_knowledge_bases
# =============================================================================
@mcp.tool()
async def list_knowledge_bases(
    space_id: Optional[str] = None,
    name: Optional[str] = None,
    format_type: Optional[int] = None,
    page_num: int = 1,
    page_size: int = 20,
    accurate_counts: bool = False,
    detailed: bool = False,
) -> McpToolResult:
    """List knowledge bases (datasets) in a space.

    Args:
        space_id: Space id; the configured default is used when omitted.
        name: Optional name filter.
        format_type: Optional type filter: 0 text, 1 table, 2 image.
        page_num: 1-based page number.
        page_size: Datasets per page (1-300).
        accurate_counts: Re-count documents per dataset with one detail
                         request each (first 50 only).  Slower.
        detailed: Include every field the API returns, not just the summary.

    Returns:
        Text summary plus structured {total, detailed, items: [...]}.
    """
    return await _run(
        "list_knowledge_bases",
        space_id=space_id,
        name=name,
        format_type=format_type,
        page_num=page_num,
        page_size=page_size,
        accurate_counts=accurate_counts,
        detailed=detailed,
    )


# =============================================================================
# TOOL: create_dataset
# =============================================================================
@mcp.tool()
async def create_dataset(
    name: str,
    format_type: int,
    space_id: Optional[str] = None,
    description: Optional[str] = None,
    file_id: Optional[str] = None,
) -> McpToolResult:
    """Create a new knowledge base (dataset).

    Args:
        name: Dataset name, at most 100 characters.
        format_type: 0 for a text dataset, 2 for an image dataset.
        space_id: Space to create it in; defaults to the configured space.
        description: Optional description.
        file_id: Optional icon file id.
    """
    return await _run(
        "create_dataset",
        name=name,
        format_type=format_type,
        space_id=space_id,
        description=description,
        file_id=file_id,
    )


# =============================================================================
# TOOL: upload_document_to_knowledge_base
# =============================================================================
@mcp.tool()
async def upload_document_to_knowledge_base(
    dataset_id: str,
    file_path: str,
    document_name: Optional[str] = None,
    chunk_size: int = 800,
) -> McpToolResult:
    """Upload a local file (max 10 MiB) into a knowledge base.

    The file is split on blank lines into chunks of at most chunk_size tokens.

    Args:
        dataset_id: Target dataset id.
        file_path: Path to a local file readable by the server.
        document_name: Name shown in Coze; defaults to the file name.
        chunk_size: Max tokens per chunk.
    """
    return await _run(
        "upload_document_to_knowledge_base",
        dataset_id=dataset_id,
        file_path=file_path,
        document_name=document_name,
        chunk_size=chunk_size,
    )


# =============================================================================
# TOOL: list_conversations
# =============================================================================
@mcp.tool()
async def list_conversations(
    bot_id: str,
    workspace_id: Optional[str] = None,
    page: int = 1,
    page_size: int = 20,
) -> McpToolResult:
    """List the conversations a bot has had."""
    return await _run(
        "list_conversations",
        bot_id=bot_id,
        workspace_id=workspace_id,
        page=page,
        page_size=page_size,
    )


# =============================================================================
# TOOL: chat / chat_stream
# =============================================================================
# chat waits for the bot by polling (up to ~60 s); if the bot hasn't
# finished by then the result says so with timeout=true and is NOT an error.
# chat_stream consumes the streamed answer as it is generated.
# =============================================================================
@mcp.tool()
async def chat(
    bot_id: str,
    message: str,
    user_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    custom_variables: Optional[dict] = None,
) -> McpToolResult:
    """Send a message to a bot and wait for its reply.

    Args:
        bot_id: The bot to talk to.
        message: The user's message.
        user_id: Caller identity; a random id is generated when omitted.
        conversation_id: Continue an existing conversation.
        custom_variables: Values for the bot's prompt variables.
    """
    return await _run(
        "chat",
        bot_id=bot_id,
        message=message,
        user_id=user_id,
        conversation_id=conversation_id,
        custom_variables=custom_variables,
    )


@mcp.tool()
async def chat_stream(
    bot_id: str,
    message: str,
    user_id: Optional[str] = None,
    conversation_id: Optional[str] = None,
    custom_variables: Optional[dict] = None,
) -> McpToolResult:
    """Send a message to a bot and collect its streamed reply.

    Same arguments as chat.  The result also reports token usage and the
    number of stream events received.
    """
    return await _run(
        "chat_stream",
        bot_id=bot_id,
        message=message,
        user_id=user_id,
        conversation_id=conversation_id,
        custom_variables=custom_variables,
    )


if __name__ == "__main__":
    settings = load_settings([])
    setup_logging(settings.log_level)
    configure(settings)
    mcp.run()
