"""Tests for CozeTools: local validation, result shaping and error wrapping."""

import json
import uuid

import httpx
import pytest

from tools.coze_tools import CozeTools


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def tools(client) -> CozeTools:
    return CozeTools(client, default_space_id="space-default", sleep=_no_sleep)


async def test_ping(tools, fake_coze) -> None:
    result = await tools.dispatch("ping", {})
    assert result.content == "pong"
    assert result.structured_content == {"ok": True}
    assert fake_coze.requests == []


async def test_unknown_tool_is_an_error_result(tools) -> None:
    result = await tools.dispatch("delete_everything", {})
    assert result.is_error
    assert result.structured_content["error"]["type"] == "UnknownTool"
    assert "chat" in result.structured_content["available_tools"]


async def test_list_knowledge_bases_uses_default_space(tools, fake_coze) -> None:
    fake_coze.add("/v1/datasets", {
        "code": 0,
        "data": {
            "dataset_list": [
                {"dataset_id": "ds1", "name": "Manuals", "doc_count": 2, "create_time": 1700000000,
                 "format_type": 0, "slice_count": 10},
            ],
            "total_count": 1,
        },
    })

    result = await tools.dispatch("list_knowledge_bases", {})

    assert not result.is_error
    assert "Found 1 knowledge bases" in result.content
    assert "ID: ds1" in result.content
    assert result.structured_content["total"] == 1
    assert result.structured_content["detailed"] is False
    assert result.structured_content["items"][0] == {
        "dataset_id": "ds1", "name": "Manuals", "description": "",
        "document_count": 2, "created_at": 1700000000,
    }
    sent = fake_coze.requests[0]
    assert sent.url.params["space_id"] == "space-default"
    assert sent.url.params["page_num"] == "1"


async def test_list_knowledge_bases_detailed_and_accurate(tools, fake_coze) -> None:
    fake_coze.add("/v1/datasets", {"data": {"datasets": [
        {"dataset_id": "ds1", "name": "A", "doc_count": 0, "slice_count": 4},
    ]}})
    fake_coze.add("/open_api/knowledge/dataset", {"data": {"file_list": [{}, {}]}})

    result = await tools.dispatch(
        "list_knowledge_bases", {"space_id": "s9", "detailed": True, "accurate_counts": True}
    )

    item = result.structured_content["items"][0]
    assert item["document_count"] == 2
    assert item["slice_count"] == 4
    detail_call = fake_coze.calls("/open_api/knowledge/dataset")[0]
    assert detail_call.url.params["dataset_id"] == "ds1"


async def test_list_knowledge_bases_business_error(tools, fake_coze) -> None:
    fake_coze.add("/v1/datasets", {"code": 4100, "msg": "invalid token"})
    result = await tools.dispatch("list_knowledge_bases", {"space_id": "s"})
    assert result.is_error
    assert result.structured_content["error"]["type"] == "BusinessError"
    assert result.structured_content["error"]["upstream_code"] == 4100
    assert "invalid token" in result.content


async def test_http_error_becomes_error_result(tools, fake_coze) -> None:
    fake_coze.add("/v1/datasets", httpx.Response(401, json={"msg": "Unauthorized"}))
    result = await tools.dispatch("list_knowledge_bases", {"space_id": "s"})
    assert result.is_error
    assert result.structured_content["error"]["type"] == "AuthenticationError"
    assert result.structured_content["error"]["message"] == "Unauthorized"


async def test_create_dataset_validation_happens_before_network(tools, fake_coze) -> None:
    too_long = await tools.dispatch("create_dataset", {"name": "x" * 101, "format_type": 0})
    bad_format = await tools.dispatch("create_dataset", {"name": "ok", "format_type": 1})
    missing = await tools.dispatch("create_dataset", {"name": "ok"})
    fractional = await tools.dispatch("create_dataset", {"name": "ok", "format_type": 2.7})
    fractional_text = await tools.dispatch("create_dataset", {"name": "ok", "format_type": "0.5"})

    for result in (too_long, bad_format, missing, fractional, fractional_text):
        assert result.is_error
        assert result.structured_content["error"]["type"] == "InvalidParameters"
    assert fake_coze.requests == []


async def test_create_dataset_success(tools, fake_coze) -> None:
    fake_coze.add("/v1/datasets", {"code": 0, "data": {"dataset_id": "new-ds"}})

    result = await tools.dispatch(
        "create_dataset", {"name": "Docs", "format_type": 2, "description": "images"}
    )

    assert not result.is_error
    assert result.structured_content["dataset_id"] == "new-ds"
    body = fake_coze.json_body(fake_coze.requests[0])
    assert body == {"name": "Docs", "space_id": "space-default", "format_type": 2,
                    "description": "images"}


async def test_upload_document(tools, fake_coze, tmp_path) -> None:
    path = tmp_path / "guide.pdf"
    path.write_bytes(b"%PDF-1.4 fake")
    fake_coze.add("/open_api/knowledge/document/create", {
        "code": 0,
        "document_infos": [{"document_id": "doc1", "name": "guide.pdf", "status": 0}],
    })

    result = await tools.dispatch(
        "upload_document_to_knowledge_base", {"dataset_id": "ds1", "file_path": str(path)}
    )

    assert not result.is_error
    assert result.structured_content["documents"][0]["document_id"] == "doc1"
    sent = fake_coze.requests[0]
    assert sent.headers["Agw-Js-Conv"] == "str"
    body = fake_coze.json_body(sent)
    assert body["document_bases"][0]["source_info"]["file_type"] == "pdf"
    assert body["chunk_strategy"]["max_tokens"] == 800


async def test_upload_missing_file_rejected_locally(tools, fake_coze, tmp_path) -> None:
    result = await tools.dispatch(
        "upload_document_to_knowledge_base",
        {"dataset_id": "ds1", "file_path": str(tmp_path / "nope.txt")},
    )
    assert result.is_error
    assert result.structured_content["error"]["type"] == "InvalidParameters"
    assert fake_coze.requests == []


async def test_list_bots(tools, fake_coze) -> None:
    fake_coze.add("/v1/bots", {"code": 0, "data": {
        "items": [{"id": "b1", "name": "Helper", "description": "answers", "is_published": True}],
        "total": 1,
    }})

    result = await tools.dispatch("list_bots", {"space_id": "ws1"})

    assert result.structured_content["bots"][0]["bot_id"] == "b1"
    assert "Helper (ID: b1)" in result.content
    params = fake_coze.requests[0].url.params
    assert params["workspace_id"] == "ws1"
    assert params["publish_status"] == "published_online"
    assert params["connector_id"] == "1024"


async def test_list_bots_rejects_bad_publish_status(tools, fake_coze) -> None:
    result = await tools.dispatch("list_bots", {"publish_status": "secret"})
    assert result.is_error
    assert fake_coze.requests == []


async def test_list_conversations(tools, fake_coze) -> None:
    fake_coze.add("/v1/conversations", {"code": 0, "data": {
        "conversations": [{"id": "c1", "created_at": 1700000000, "meta_data": {}}],
        "has_more": True,
    }})

    result = await tools.dispatch("list_conversations", {"bot_id": "b1", "page_size": 5})

    assert result.structured_content["conversations"][0]["conversation_id"] == "c1"
    assert result.structured_content["has_more"] is True
    assert fake_coze.requests[0].url.params["page_size"] == "5"


async def test_missing_required_args(tools, fake_coze) -> None:
    for name, args in [
        ("list_conversations", {}),
        ("chat", {"bot_id": "b1"}),
        ("chat_stream", {"message": "hi"}),
        ("upload_document_to_knowledge_base", {"dataset_id": "d"}),
    ]:
        result = await tools.dispatch(name, args)
        assert result.is_error, name
        assert "Missing required parameter" in result.content
    assert fake_coze.requests == []


async def test_chat_polls_and_generates_user_id(tools, fake_coze) -> None:
    created = {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "created"}}
    fake_coze.add("/v3/chat", created)
    fake_coze.add("/v3/chat/retrieve",
                  {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "completed"}})
    fake_coze.add("/v3/chat/message/list",
                  {"code": 0, "data": [{"role": "assistant", "type": "answer", "content": "hello"}]})

    first = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi"})
    second = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi again"})

    assert first.content == "hello"
    assert first.structured_content["status"] == "completed"
    assert first.structured_content["user_id_generated"] is True
    assert first.structured_content["user_id"] != second.structured_content["user_id"]
    uuid.UUID(first.structured_content["user_id"])

    body = fake_coze.json_body(fake_coze.calls("/v3/chat")[0])
    assert body["stream"] is False
    assert body["auto_save_history"] is True
    assert body["additional_messages"][0] == {"role": "user", "content": "hi", "content_type": "text"}


async def test_chat_keeps_given_user_and_conversation(tools, fake_coze) -> None:
    fake_coze.add("/v3/chat", {"code": 0, "data": {"id": "k1", "conversation_id": "c7", "status": "completed"}})
    fake_coze.add("/v3/chat/message/list", {"data": []})

    result = await tools.dispatch("chat", {
        "bot_id": "b1", "message": "hi", "user_id": "u42", "conversation_id": "c7",
        "custom_variables": {"city": "Paris", "limit": 3},
    })

    assert result.structured_content["user_id"] == "u42"
    assert result.structured_content["user_id_generated"] is False
    sent = fake_coze.calls("/v3/chat")[0]
    assert sent.url.params["conversation_id"] == "c7"
    assert fake_coze.json_body(sent)["custom_variables"] == {"city": "Paris", "limit": "3"}


async def test_chat_timeout_is_not_an_error(client, fake_coze) -> None:
    tools = CozeTools(client, sleep=_no_sleep, max_poll_attempts=3)
    fake_coze.add("/v3/chat", {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "created"}})
    fake_coze.add("/v3/chat/retrieve",
                  {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "in_progress"}})

    result = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi"})

    assert not result.is_error
    assert result.structured_content["timeout"] is True
    assert result.structured_content["attempts"] == 3


async def test_chat_failed_status_is_an_error(tools, fake_coze) -> None:
    fake_coze.add("/v3/chat", {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "created"}})
    fake_coze.add("/v3/chat/retrieve", {"code": 0, "data": {
        "id": "k1", "conversation_id": "c1", "status": "failed",
        "last_error": {"code": 720, "msg": "bot unavailable"},
    }})

    result = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi"})

    assert result.is_error
    assert result.structured_content["error"]["message"] == "bot unavailable"
    assert fake_coze.calls("/v3/chat/message/list") == []


async def test_chat_message_list_business_error_is_an_error(tools, fake_coze) -> None:
    fake_coze.add("/v3/chat", {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "created"}})
    fake_coze.add("/v3/chat/retrieve",
                  {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "completed"}})
    fake_coze.add("/v3/chat/message/list", {"code": 4101, "msg": "token lacks permission"})

    result = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi"})

    assert result.is_error
    assert result.structured_content["error"]["upstream_code"] == 4101
    assert result.structured_content["error"]["message"] == "token lacks permission"


async def test_chat_status_business_error_stops_polling(tools, fake_coze) -> None:
    fake_coze.add("/v3/chat", {"code": 0, "data": {"id": "k1", "conversation_id": "c1", "status": "created"}})
    fake_coze.add("/v3/chat/retrieve", {"code": 4200, "msg": "chat not found"})

    result = await tools.dispatch("chat", {"bot_id": "b1", "message": "hi"})

    assert result.is_error
    assert result.structured_content["error"]["upstream_code"] == 4200
    assert len(fake_coze.calls("/v3/chat/retrieve")) == 1
    assert fake_coze.calls("/v3/chat/message/list") == []


def _sse(event: str, data: dict) -> str:
    return f"event:{event}\ndata:{json.dumps(data)}\n\n"


async def test_chat_stream_accumulates_deltas(tools, fake_coze) -> None:
    body = (
        _sse("conversation.chat.created", {"id": "k1", "conversation_id": "c1", "status": "created"})
        + _sse("conversation.message.delta", {"chat_id": "k1", "conversation_id": "c1", "content": "Hi "})
        + _sse("conversation.message.delta", {"chat_id": "k1", "conversation_id": "c1", "content": "there"})
        + _sse("conversation.message.completed", {"chat_id": "k1", "content": "Hi there"})
        + _sse("conversation.chat.completed", {"id": "k1", "conversation_id": "c1", "usage": {"token_count": 7}})
        + 'event:done\ndata:"[DONE]"\n\n'
    )
    fake_coze.add("/v3/chat", httpx.Response(200, text=body,
                                             headers={"Content-Type": "text/event-stream"}))

    result = await tools.dispatch("chat_stream", {"bot_id": "b1", "message": "hello"})

    assert not result.is_error
    assert result.content == "Hi there"
    assert result.structured_content["status"] == "completed"
    assert result.structured_content["usage"] == {"token_count": 7}
    assert result.structured_content["chat_id"] == "k1"
    assert fake_coze.json_body(fake_coze.requests[0])["stream"] is True


async def test_chat_stream_business_error(tools, fake_coze) -> None:
    fake_coze.add("/v3/chat", httpx.Response(200, text=_sse("error", {"code": 4015, "msg": "bot not published"})))

    result = await tools.dispatch("chat_stream", {"bot_id": "b1", "message": "hello"})

    assert result.is_error
    assert result.structured_content["error"]["type"] == "StreamBusinessError"
    assert result.structured_content["error"]["upstream_code"] == 4015
