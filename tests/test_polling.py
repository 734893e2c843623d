"""Tests for the bounded chat completion poller."""

import httpx
import pytest

from core.errors import BusinessError
from core.models import ChatSession, ChatStatus
from core.polling import collect_assistant_reply, wait_for_completion


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _chat(status: str, **extra) -> dict:
    return {"code": 0, "data": {"id": "chat1", "conversation_id": "conv1", "status": status, **extra}}


async def test_polls_until_completed_then_collects_reply(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", _chat("in_progress"), _chat("completed", usage={"token_count": 9}))
    fake_coze.add("/v3/chat/message/list", {
        "code": 0,
        "data": [
            {"role": "user", "content": "hi"},
            {"role": "assistant", "type": "answer", "content": "hello"},
        ],
    })
    sleep = FakeSleep()
    session = ChatSession(conversation_id="conv1", chat_id="chat1")

    outcome = await wait_for_completion(client, session, sleep=sleep)

    assert outcome.status is ChatStatus.COMPLETED
    assert outcome.reply == "hello"
    assert outcome.attempts == 2
    assert not outcome.timed_out
    assert sleep.calls == [2.0, 2.0]
    assert session.usage == {"token_count": 9}
    retrieve = fake_coze.calls("/v3/chat/retrieve")[0]
    assert retrieve.url.params["chat_id"] == "chat1"


async def test_never_terminal_times_out_after_max_attempts(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", _chat("in_progress"))
    sleep = FakeSleep()

    outcome = await wait_for_completion(
        client, ChatSession(conversation_id="conv1", chat_id="chat1"), sleep=sleep
    )

    assert outcome.timed_out
    assert outcome.attempts == 30
    assert len(sleep.calls) == 30
    assert outcome.status is ChatStatus.IN_PROGRESS
    assert fake_coze.calls("/v3/chat/message/list") == []


async def test_failed_status_stops_immediately(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", _chat("failed", last_error={"code": 5000, "msg": "boom"}))

    session = ChatSession(conversation_id="conv1", chat_id="chat1")
    outcome = await wait_for_completion(client, session, sleep=FakeSleep())

    assert outcome.status is ChatStatus.FAILED
    assert outcome.attempts == 1
    assert not outcome.timed_out
    assert session.last_error == {"code": 5000, "msg": "boom"}


async def test_transient_status_error_spends_an_attempt(client, fake_coze) -> None:
    fake_coze.add(
        "/v3/chat/retrieve",
        httpx.Response(502, json={"msg": "bad gateway"}),
        _chat("completed"),
    )
    fake_coze.add("/v3/chat/message/list", {"data": {"messages": []}})

    outcome = await wait_for_completion(
        client, ChatSession(conversation_id="conv1", chat_id="chat1"), sleep=FakeSleep()
    )
    assert outcome.status is ChatStatus.COMPLETED
    assert outcome.attempts == 2
    assert outcome.reply == ""


async def test_already_terminal_session_skips_loop(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/message/list", {"data": [{"role": "assistant", "content": "done"}]})
    sleep = FakeSleep()
    session = ChatSession(conversation_id="conv1", chat_id="chat1", status=ChatStatus.COMPLETED)

    outcome = await wait_for_completion(client, session, sleep=sleep)
    assert outcome.reply == "done"
    assert sleep.calls == []


def test_reply_joins_assistant_messages_in_order() -> None:
    messages = [
        {"role": "assistant", "content": "one"},
        {"role": "user", "content": "ignored"},
        {"role": "assistant", "content": "two"},
        "not a message",
    ]
    assert collect_assistant_reply(messages) == "one\ntwo"


async def test_business_code_on_status_check_ends_the_wait(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", {"code": 4200, "msg": "chat not found"})
    sleep = FakeSleep()

    with pytest.raises(BusinessError) as info:
        await wait_for_completion(
            client, ChatSession(conversation_id="conv1", chat_id="chat1"), sleep=sleep
        )

    assert info.value.upstream_code == 4200
    assert len(fake_coze.calls("/v3/chat/retrieve")) == 1
    assert sleep.calls == [2.0]


async def test_business_code_on_message_list_is_raised(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", _chat("completed"))
    fake_coze.add("/v3/chat/message/list", {"code": 4101, "msg": "token lacks permission"})

    with pytest.raises(BusinessError) as info:
        await wait_for_completion(
            client, ChatSession(conversation_id="conv1", chat_id="chat1"), sleep=FakeSleep()
        )

    assert info.value.upstream_code == 4101
    assert info.value.message == "token lacks permission"


async def test_null_status_keeps_polling(client, fake_coze) -> None:
    fake_coze.add("/v3/chat/retrieve", _chat(None), _chat("completed"))
    fake_coze.add("/v3/chat/message/list", {"data": [{"role": "assistant", "content": "late"}]})

    outcome = await wait_for_completion(
        client, ChatSession(conversation_id="conv1", chat_id="chat1"), sleep=FakeSleep()
    )

    assert outcome.status is ChatStatus.COMPLETED
    assert outcome.attempts == 2
    assert outcome.reply == "late"
