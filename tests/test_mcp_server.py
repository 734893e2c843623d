"""Tests for the FastMCP surface, seen through an in-memory MCP client."""

import httpx
import pytest
from fastmcp import Client

from tools import mcp_server
from tools.coze_tools import CozeTools


@pytest.fixture
def server(client, monkeypatch):
    monkeypatch.setattr(mcp_server, "_tools", CozeTools(client, default_space_id="space-default"))
    return mcp_server.mcp


async def test_success_carries_text_and_structured_content(server, fake_coze) -> None:
    async with Client(server) as mcp_client:
        result = await mcp_client.call_tool("ping", {})

    assert not result.is_error
    assert result.content[0].text == "pong"
    assert result.structured_content == {"ok": True}
    assert fake_coze.requests == []


async def test_invalid_arguments_set_is_error(server, fake_coze) -> None:
    async with Client(server) as mcp_client:
        result = await mcp_client.call_tool(
            "create_dataset", {"name": "x" * 101, "format_type": 0}, raise_on_error=False
        )

    assert result.is_error
    assert result.content[0].text.startswith("Invalid parameters")
    assert "InvalidParameters" in result.content[0].text
    assert fake_coze.requests == []


async def test_api_failure_sets_is_error(server, fake_coze) -> None:
    fake_coze.add("/v1/datasets", httpx.Response(401, json={"msg": "Unauthorized"}))

    async with Client(server) as mcp_client:
        result = await mcp_client.call_tool(
            "list_knowledge_bases", {"space_id": "s1"}, raise_on_error=False
        )

    assert result.is_error
    assert "Unauthorized" in result.content[0].text
    assert "AuthenticationError" in result.content[0].text
