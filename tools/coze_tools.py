# =============================================================================
# tools/coze_tools.py  -  Tool Dispatcher (tool name + JSON args → ToolResult)
# =============================================================================
#
# WHAT THIS FILE DOES:
#   Owns the behavior behind every MCP tool.  tools/mcp_server.py only
#   registers signatures and logs; everything else happens here:
#
#     1. Validate arguments LOCALLY (missing ids, bad enums, oversized files)
#        and reject them before any network call.
#     2. Call the API Gateway (core/gateway.py) for one or more requests.
#     3. Check the business "code" where the endpoint uses one.
#     4. Normalize the answer (core/normalizer.py) and format it as
#        readable text plus a structured payload.
#
# ERROR CONTRACT:
#   No exception leaves dispatch().  Every ApiError and every invalid
#   argument becomes ToolResult(is_error=True) whose structured_content
#   holds {"error": {...}} with a stable "type".
# =============================================================================

import json
import logging
import uuid
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from core import endpoints
from core.errors import (
    ApiError,
    InvalidResponseFormatError,
    check_business_code,
)
from core.gateway import CozeApiClient
from core.models import (
    BotPublishStatus,
    ChatSession,
    ChatStatus,
    KnowledgeBaseRecord,
    StreamEventKind,
    ToolResult,
)
from core.normalizer import (
    as_bool,
    as_int,
    as_str,
    first_present,
    normalize_list_response,
    refine_document_counts,
    unwrap_data,
)
from core.polling import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, wait_for_completion
from core.streaming import iter_stream_events
from core.uploads import (
    DEFAULT_CHUNK_TOKENS,
    UploadValidationError,
    build_document_create_body,
    prepare_upload,
)

logger = logging.getLogger(__name__)

MAX_DATASET_NAME_LENGTH = 100
ALLOWED_DATASET_FORMATS = (0, 2)                # 0 = text, 2 = image
MAX_PAGE_SIZE = 300
DEFAULT_PAGE_SIZE = 20


class InvalidParameters(ValueError):
    """A tool argument is missing or malformed."""


# -----------------------------------------------------------------------------
# Argument helpers
# -----------------------------------------------------------------------------

def _require_str(args: dict, name: str, *aliases: str) -> str:
    value = as_str(first_present(args, name, *aliases))
    if value is None or not value.strip():
        raise InvalidParameters(f"Missing required parameter: {name}")
    return value.strip()


def _optional_str(args: dict, name: str, *aliases: str) -> Optional[str]:
    value = as_str(first_present(args, name, *aliases))
    if value is None or not value.strip():
        return None
    return value.strip()


def _optional_int(args: dict, name: str, default: Optional[int] = None) -> Optional[int]:
    raw = args.get(name)
    if raw is None or raw == "":
        return default
    value = as_int(raw)
    if value is None or not _is_whole(raw):
        raise InvalidParameters(f"Parameter {name} must be an integer, got {raw!r}")
    return value


def _is_whole(raw: Any) -> bool:
    if isinstance(raw, str):
        try:
            raw = float(raw.strip())
        except ValueError:
            return False
    return not isinstance(raw, float) or raw.is_integer()


def _page_args(args: dict, page_key: str = "page_num") -> tuple[int, int]:
    page = _optional_int(args, page_key, _optional_int(args, "page", 1))
    page_size = _optional_int(args, "page_size", DEFAULT_PAGE_SIZE)
    if page < 1:
        raise InvalidParameters(f"{page_key} must be >= 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise InvalidParameters(f"page_size must be between 1 and {MAX_PAGE_SIZE}")
    return page, page_size


def _string_variables(raw: Any) -> Optional[dict[str, str]]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise InvalidParameters("custom_variables must be an object")
    return {
        str(key): value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        for key, value in raw.items()
    }


def _format_timestamp(value: Optional[int]) -> str:
    if not value:
        return "unknown"
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    except (OverflowError, OSError, ValueError):
        return str(value)


def _error_result(label: str, err: ApiError) -> ToolResult:
    return ToolResult(
        content=f"{label} failed: {err.message or err.hint}",
        is_error=True,
        structured_content={"error": err.to_dict()},
    )


def _invalid_result(message: str) -> ToolResult:
    return ToolResult(
        content=f"Invalid parameters: {message}",
        is_error=True,
        structured_content={"error": {"type": "InvalidParameters", "message": message}},
    )


class CozeTools:
    """Tool implementations bound to one CozeApiClient."""

    def __init__(
        self,
        client: CozeApiClient,
        default_space_id: str = "",
        poll_interval: float = POLL_INTERVAL_SECONDS,
        max_poll_attempts: int = MAX_POLL_ATTEMPTS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.client = client
        self.default_space_id = default_space_id
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self._sleep = sleep

        # name → (handler, human label used in error messages)
        self._tools: dict[str, tuple[Callable[[dict], Awaitable[ToolResult]], str]] = {
            "ping": (self.ping, "Ping"),
            "list_bots": (self.list_bots, "List bots"),
            "list_knowledge_bases": (self.list_knowledge_bases, "List knowledge bases"),
            "create_dataset": (self.create_dataset, "Create dataset"),
            "upload_document_to_knowledge_base": (self.upload_document, "Upload document"),
            "list_conversations": (self.list_conversations, "List conversations"),
            "chat": (self.chat, "Chat"),
            "chat_stream": (self.chat_stream, "Streaming chat"),
        }

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    async def dispatch(self, tool_name: str, arguments: Optional[dict] = None) -> ToolResult:
        """Run one tool.  Never raises."""
        entry = self._tools.get(tool_name)
        if entry is None:
            return ToolResult(
                content=f"Unknown tool: {tool_name}",
                is_error=True,
                structured_content={
                    "error": {"type": "UnknownTool", "message": tool_name},
                    "available_tools": self.tool_names,
                },
            )
        handler, label = entry
        args = arguments if isinstance(arguments, dict) else {}
        try:
            return await handler(args)
        except (InvalidParameters, UploadValidationError) as err:
            return _invalid_result(str(err))
        except ApiError as err:
            logger.info("%s failed with %s (%s)", tool_name, err.kind, err.message)
            return _error_result(label, err)

    def _space_id(self, args: dict, *keys: str) -> str:
        space_id = _optional_str(args, *keys) or self.default_space_id
        if not space_id:
            raise InvalidParameters(
                f"Missing required parameter: {keys[0]} (no default space configured)"
            )
        return space_id

    # -------------------------------------------------------------------------
    # ping
    # -------------------------------------------------------------------------
    async def ping(self, args: dict) -> ToolResult:
        return ToolResult(content="pong", structured_content={"ok": True})

    # -------------------------------------------------------------------------
    # list_bots
    # -------------------------------------------------------------------------
    async def list_bots(self, args: dict) -> ToolResult:
        workspace_id = self._space_id(args, "workspace_id", "space_id")
        status_raw = _optional_str(args, "publish_status") or BotPublishStatus.PUBLISHED_ONLINE.value
        try:
            publish_status = BotPublishStatus(status_raw)
        except ValueError:
            allowed = ", ".join(s.value for s in BotPublishStatus)
            raise InvalidParameters(f"publish_status must be one of: {allowed}") from None
        page, page_size = _page_args(args, "page")

        response = await self.client.list_bots({
            "workspace_id": workspace_id,
            "publish_status": publish_status.value,
            "connector_id": _optional_str(args, "connector_id") or endpoints.DEFAULT_CONNECTOR_ID,
            "page_num": page,
            "page_size": page_size,
        })
        check_business_code(response.body)
        items, total = normalize_list_response(response.body, extra_keys=("bots", "space_bots"))

        bots = []
        for item in items:
            if not isinstance(item, dict):
                continue
            bots.append({
                "bot_id": as_str(first_present(item, "id", "bot_id")) or "",
                "name": as_str(first_present(item, "name", "bot_name")) or "",
                "description": as_str(item.get("description")) or "",
                "icon_url": as_str(item.get("icon_url")),
                "is_published": as_bool(item.get("is_published")),
                "updated_at": as_int(first_present(item, "updated_at", "publish_time")),
            })

        if not bots:
            text = f"No bots found in workspace {workspace_id}."
        else:
            lines = [f"Found {total} bots in workspace {workspace_id}:"]
            for index, bot in enumerate(bots, 1):
                lines.append(f"{index}. {bot['name']} (ID: {bot['bot_id']})")
                if bot["description"]:
                    lines.append(f"   {bot['description']}")
            text = "\n".join(lines)
        return ToolResult(
            content=text,
            structured_content={"workspace_id": workspace_id, "total": total, "bots": bots},
        )

    # -------------------------------------------------------------------------
    # list_knowledge_bases
    # -------------------------------------------------------------------------
    async def list_knowledge_bases(self, args: dict) -> ToolResult:
        space_id = self._space_id(args, "space_id", "workspace_id")
        page, page_size = _page_args(args)
        format_type = _optional_int(args, "format_type")
        detailed = bool(args.get("detailed"))
        accurate_counts = bool(args.get("accurate_counts"))

        response = await self.client.list_datasets({
            "space_id": space_id,
            "name": _optional_str(args, "name"),
            "format_type": format_type,
            "page_num": page,
            "page_size": page_size,
        })
        check_business_code(response.body)
        items, total = normalize_list_response(response.body)
        records = [KnowledgeBaseRecord.from_json(item) for item in items if isinstance(item, dict)]

        if accurate_counts and records:
            refined = await refine_document_counts(records, self.client.get_dataset_detail)
            logger.info("refined document counts for %d/%d datasets", refined, len(records))

        if not records:
            text = f"No knowledge bases found in space {space_id}."
        else:
            lines = [f"Found {total} knowledge bases:"]
            for record in records:
                lines.append(f"- ID: {record.dataset_id}")
                lines.append(f"  Name: {record.name}")
                if record.description:
                    lines.append(f"  Description: {record.description}")
                lines.append(f"  Documents: {record.document_count}")
                lines.append(f"  Created: {_format_timestamp(record.created_at)}")
            text = "\n".join(lines)
        return ToolResult(
            content=text,
            structured_content={
                "total": total,
                "detailed": detailed,
                "items": [record.to_dict(detailed=detailed) for record in records],
            },
        )

    # -------------------------------------------------------------------------
    # create_dataset
    # -------------------------------------------------------------------------
    async def create_dataset(self, args: dict) -> ToolResult:
        name = _require_str(args, "name")
        if len(name) > MAX_DATASET_NAME_LENGTH:
            raise InvalidParameters(
                f"name must be at most {MAX_DATASET_NAME_LENGTH} characters (got {len(name)})"
            )
        if args.get("format_type") is None:
            raise InvalidParameters("Missing required parameter: format_type")
        format_type = _optional_int(args, "format_type")
        if format_type not in ALLOWED_DATASET_FORMATS:
            raise InvalidParameters("format_type must be 0 (text) or 2 (image)")
        space_id = self._space_id(args, "space_id", "workspace_id")

        body: dict[str, Any] = {"name": name, "space_id": space_id, "format_type": format_type}
        description = _optional_str(args, "description")
        if description:
            body["description"] = description
        file_id = _optional_str(args, "file_id")
        if file_id:
            body["file_id"] = file_id

        response = await self.client.create_dataset(body)
        check_business_code(response.body)
        data = unwrap_data(response.body)
        dataset_id = as_str(first_present(data, "dataset_id", "id"))
        if not dataset_id:
            raise InvalidResponseFormatError("create dataset response has no dataset_id")
        return ToolResult(
            content=f"Created dataset '{name}' (ID: {dataset_id}) in space {space_id}.",
            structured_content={
                "dataset_id": dataset_id,
                "name": name,
                "space_id": space_id,
                "format_type": format_type,
            },
        )

    # -------------------------------------------------------------------------
    # upload_document_to_knowledge_base
    # -------------------------------------------------------------------------
    async def upload_document(self, args: dict) -> ToolResult:
        dataset_id = _require_str(args, "dataset_id")
        file_path = _require_str(args, "file_path")
        chunk_size = _optional_int(args, "chunk_size", DEFAULT_CHUNK_TOKENS)
        if chunk_size < 1:
            raise InvalidParameters("chunk_size must be positive")

        upload = prepare_upload(file_path, _optional_str(args, "document_name"))
        response = await self.client.upload_documents(
            build_document_create_body(dataset_id, upload, chunk_size)
        )
        check_business_code(response.body)

        infos = first_present(response.body, "document_infos")
        if infos is None:
            infos = first_present(unwrap_data(response.body), "document_infos")
        documents = [
            {
                "document_id": as_str(first_present(info, "document_id", "id")),
                "name": as_str(info.get("name")),
                "status": as_int(info.get("status")),
            }
            for info in (infos or [])
            if isinstance(info, dict)
        ]
        return ToolResult(
            content=(
                f"Uploaded '{upload.document_name}' ({upload.size_bytes} bytes, "
                f"{upload.file_type}) to dataset {dataset_id}."
            ),
            structured_content={
                "dataset_id": dataset_id,
                "document_name": upload.document_name,
                "file_type": upload.file_type,
                "size_bytes": upload.size_bytes,
                "documents": documents,
            },
        )

    # -------------------------------------------------------------------------
    # list_conversations
    # -------------------------------------------------------------------------
    async def list_conversations(self, args: dict) -> ToolResult:
        bot_id = _require_str(args, "bot_id")
        page, page_size = _page_args(args, "page")

        response = await self.client.list_conversations({
            "bot_id": bot_id,
            "workspace_id": _optional_str(args, "workspace_id"),
            "page_num": page,
            "page_size": page_size,
        })
        check_business_code(response.body)
        items, total = normalize_list_response(response.body, extra_keys=("conversations",))
        data = unwrap_data(response.body)
        has_more = as_bool(data.get("has_more")) if isinstance(data, dict) else None

        conversations = [
            {
                "conversation_id": as_str(first_present(item, "id", "conversation_id")) or "",
                "created_at": as_int(item.get("created_at")),
                "meta_data": item.get("meta_data") or {},
            }
            for item in items
            if isinstance(item, dict)
        ]
        if not conversations:
            text = f"No conversations found for bot {bot_id}."
        else:
            lines = [f"Found {total} conversations for bot {bot_id}:"]
            for conv in conversations:
                lines.append(
                    f"- {conv['conversation_id']} (created {_format_timestamp(conv['created_at'])})"
                )
            text = "\n".join(lines)
        return ToolResult(
            content=text,
            structured_content={
                "bot_id": bot_id,
                "total": total,
                "has_more": bool(has_more),
                "conversations": conversations,
            },
        )

    # -------------------------------------------------------------------------
    # chat / chat_stream
    # -------------------------------------------------------------------------
    def _chat_request(self, args: dict) -> tuple[dict, Optional[str], str, bool]:
        bot_id = _require_str(args, "bot_id")
        message = _require_str(args, "message")
        user_id = _optional_str(args, "user_id")
        generated = user_id is None
        if generated:
            user_id = str(uuid.uuid4())
        body: dict[str, Any] = {
            "bot_id": bot_id,
            "user_id": user_id,
            "additional_messages": [
                {"role": "user", "content": message, "content_type": "text"}
            ],
            "stream": False,
            "auto_save_history": True,
        }
        variables = _string_variables(args.get("custom_variables"))
        if variables:
            body["custom_variables"] = variables
        return body, _optional_str(args, "conversation_id"), user_id, generated

    async def chat(self, args: dict) -> ToolResult:
        body, conversation_id, user_id, generated = self._chat_request(args)
        response = await self.client.create_chat(body, conversation_id)
        check_business_code(response.body)
        data = unwrap_data(response.body)
        if not isinstance(data, dict):
            raise InvalidResponseFormatError("chat response has no chat object")
        session = ChatSession.from_json(data)
        if not session.chat_id or not session.conversation_id:
            raise InvalidResponseFormatError("chat response is missing chat_id or conversation_id")

        poll_kwargs: dict[str, Any] = {
            "interval": self.poll_interval,
            "max_attempts": self.max_poll_attempts,
        }
        if self._sleep is not None:
            poll_kwargs["sleep"] = self._sleep
        outcome = await wait_for_completion(self.client, session, **poll_kwargs)

        structured: dict[str, Any] = {
            "conversation_id": session.conversation_id,
            "chat_id": session.chat_id,
            "status": outcome.status.value,
            "reply": outcome.reply,
            "usage": session.usage,
            "attempts": outcome.attempts,
            "timeout": outcome.timed_out,
            "user_id": user_id,
            "user_id_generated": generated,
        }
        if outcome.timed_out:
            return ToolResult(
                content=(
                    f"Chat {session.chat_id} is still {outcome.status.value} after "
                    f"{outcome.attempts} status checks. Retry later with conversation_id "
                    f"{session.conversation_id}."
                ),
                structured_content=structured,
            )
        if outcome.status == ChatStatus.FAILED:
            error = session.last_error or {}
            message = as_str(error.get("msg")) or "the bot reported a failure"
            structured["error"] = {
                "type": "ChatFailed",
                "message": message,
                "upstream_code": error.get("code"),
            }
            return ToolResult(content=f"Chat failed: {message}", is_error=True,
                              structured_content=structured)
        if outcome.status != ChatStatus.COMPLETED:
            return ToolResult(
                content=f"Chat stopped with status {outcome.status.value}; no reply collected.",
                structured_content=structured,
            )
        return ToolResult(content=outcome.reply or "(the bot returned no reply)",
                          structured_content=structured)

    async def chat_stream(self, args: dict) -> ToolResult:
        body, conversation_id, user_id, generated = self._chat_request(args)
        parts: list[str] = []
        status = "incomplete"
        usage = None
        error = None
        chat_id = None
        event_count = 0

        async with aclosing(self.client.stream_chat(body, conversation_id)) as chunks:
            async for event in iter_stream_events(chunks):
                event_count += 1
                conversation_id = event.conversation_id or conversation_id
                chat_id = event.chat_id or chat_id
                if event.usage:
                    usage = event.usage
                if event.kind is StreamEventKind.MESSAGE_DELTA:
                    if event.content:
                        parts.append(event.content)
                elif event.kind is StreamEventKind.CHAT_IN_PROGRESS:
                    status = ChatStatus.IN_PROGRESS.value
                elif event.kind is StreamEventKind.CHAT_COMPLETED:
                    status = ChatStatus.COMPLETED.value
                elif event.kind is StreamEventKind.CHAT_FAILED:
                    status = ChatStatus.FAILED.value
                    error = event.error
                elif event.kind is StreamEventKind.REQUIRES_ACTION:
                    status = ChatStatus.REQUIRES_ACTION.value
                elif event.kind is StreamEventKind.ERROR:
                    status = "error"
                    error = event.error
                    break
                elif event.kind is StreamEventKind.DONE and status in ("incomplete", "in_progress"):
                    status = ChatStatus.COMPLETED.value

        reply = "".join(parts)
        structured: dict[str, Any] = {
            "conversation_id": conversation_id,
            "chat_id": chat_id,
            "status": status,
            "reply": reply,
            "usage": usage,
            "event_count": event_count,
            "user_id": user_id,
            "user_id_generated": generated,
        }
        if status in ("failed", "error"):
            message = as_str((error or {}).get("msg")) or "the stream reported an error"
            structured["error"] = {
                "type": "ChatFailed" if status == "failed" else "StreamError",
                "message": message,
                "upstream_code": (error or {}).get("code"),
            }
            return ToolResult(content=f"Streaming chat failed: {message}", is_error=True,
                              structured_content=structured)
        return ToolResult(content=reply or "(the bot returned no reply)",
                          structured_content=structured)
