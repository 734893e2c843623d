# =============================================================================
# core/polling.py  -  Async Completion Poller for non-streaming chat
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   A non-streaming chat is created on the server and finishes *later*.
#   wait_for_completion() re-fetches the chat status on a fixed interval
#   until it reaches a terminal state, then collects the assistant's reply.
#
# HOW IT WORKS (the loop):
#   1. While the status is created/in_progress and attempts remain:
#        sleep(interval)          ← non-blocking, injectable for tests
#        retrieve the chat        ← a failed fetch just spends the attempt,
#                                   a nonzero business code ends the wait
#   2. completed        → fetch the message list, join assistant contents
#   3. failed / other   → stop at once, the caller reports the status
#   4. out of attempts  → timed_out=True, the last status seen is kept
#
#   Total wait is bounded by max_attempts × interval (30 × 2 s by default).
# =============================================================================

import asyncio
import logging
from typing import Awaitable, Callable

from core.errors import ApiError, check_business_code
from core.models import ChatOutcome, ChatSession, ChatStatus
from core.normalizer import as_str, normalize_list_response, unwrap_data

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 2.0
MAX_POLL_ATTEMPTS = 30


def collect_assistant_reply(messages: list) -> str:
    """Join the content of every assistant message, in order, with newlines."""
    parts = []
    for message in messages:
        if not isinstance(message, dict) or message.get("role") != "assistant":
            continue
        content = as_str(message.get("content"))
        if content:
            parts.append(content)
    return "\n".join(parts)


async def wait_for_completion(
    client,
    session: ChatSession,
    interval: float = POLL_INTERVAL_SECONDS,
    max_attempts: int = MAX_POLL_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ChatOutcome:
    """Poll a chat until it finishes (or attempts run out)."""
    attempts = 0
    while session.status.is_pending and attempts < max_attempts:
        attempts += 1
        await sleep(interval)
        try:
            response = await client.retrieve_chat(session.conversation_id, session.chat_id)
        except ApiError as err:
            logger.info("status check %d/%d for chat %s failed: %s",
                        attempts, max_attempts, session.chat_id, err)
            continue
        check_business_code(response.body)
        data = unwrap_data(response.body)
        if isinstance(data, dict):
            session.update_from(data)
        logger.debug("chat %s status=%s (attempt %d)", session.chat_id, session.status.value, attempts)

    if session.status.is_pending:
        return ChatOutcome(session=session, attempts=attempts, timed_out=True)

    if session.status != ChatStatus.COMPLETED:
        return ChatOutcome(session=session, attempts=attempts)

    response = await client.list_chat_messages(session.conversation_id, session.chat_id)
    check_business_code(response.body)
    messages, _ = normalize_list_response(response.body, extra_keys=("messages",))
    return ChatOutcome(
        session=session,
        reply=collect_assistant_reply(messages),
        attempts=attempts,
    )
