# =============================================================================
# core/models.py  -  Data Models (the "nouns" of the Coze bridge)
# =============================================================================
#
# These dataclasses define the *shape* of every value that flows between a
# tool call and the Coze REST API.  They are request-scoped: nothing here is
# shared or cached between tool invocations.
#
#   ApiRequest / ApiResponse   one outbound HTTP call and its answer
#   KnowledgeBaseRecord        one dataset, parsed tolerantly from JSON
#   ChatSession / ChatOutcome  the state of an async chat and its result
#   StreamEvent                one decoded Server-Sent-Events frame
#   ToolResult                 the envelope every tool returns over MCP
# =============================================================================

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from core.normalizer import (
    as_bool,
    as_dict,
    as_int,
    as_str,
    first_present,
)


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


# -----------------------------------------------------------------------------
# ApiRequest / ApiResponse - the Gateway's input and output
# -----------------------------------------------------------------------------
@dataclass
class ApiRequest:
    """One logical outbound call, built fresh per request."""

    endpoint: str                                   # Path, e.g. "/v1/datasets"
    method: HttpMethod = HttpMethod.GET
    headers: dict[str, str] = field(default_factory=dict)
    params: dict[str, Any] = field(default_factory=dict)   # Query string
    body: Optional[Any] = None                      # JSON body (POST/PUT/PATCH)


@dataclass(frozen=True)
class ApiResponse:
    """The parsed answer to an ApiRequest.  Immutable once built."""

    status_code: int
    headers: dict[str, str]
    body: Any                                       # Parsed JSON, or {"raw": text}

    @property
    def success(self) -> bool:
        return 200 <= self.status_code < 400


# -----------------------------------------------------------------------------
# KnowledgeBaseRecord - one dataset ("knowledge base")
# -----------------------------------------------------------------------------
# The list endpoint and the detail endpoint disagree on field names
# (dataset_id vs id, doc_count vs document_count, create_time vs created_at).
# from_json() accepts every spelling; to_dict() always writes the canonical one.
# -----------------------------------------------------------------------------

# Upstream keys consumed by from_json(); anything else lands in `extra`.
_KNOWN_KB_KEYS = {
    "dataset_id", "id", "name", "description",
    "doc_count", "document_count", "file_count",
    "create_time", "created_at", "update_time", "status", "format_type",
    "slice_count", "space_id", "dataset_type", "can_edit", "icon_url",
    "icon_uri", "avatar_url", "creator_id", "creator_name", "hit_count",
    "all_file_size", "bot_used_count", "file_list", "failed_file_list",
    "processing_file_list", "processing_file_id_list", "chunk_strategy",
    "storage_config", "project_id",
}

_EXTENDED_FIELDS = (
    "update_time", "status", "format_type", "slice_count", "space_id",
    "dataset_type", "can_edit", "icon_url", "icon_uri", "avatar_url",
    "creator_id", "creator_name", "hit_count", "all_file_size",
    "bot_used_count", "file_list", "failed_file_list", "processing_file_list",
    "processing_file_id_list", "chunk_strategy", "storage_config", "project_id",
)


@dataclass
class KnowledgeBaseRecord:
    """A dataset as seen by list_knowledge_bases."""

    dataset_id: str
    name: str = ""
    description: str = ""
    document_count: int = 0                         # Never negative
    created_at: Optional[int] = None                # Unix seconds

    # --- Extended fields (only reported when detailed=true) ---
    update_time: Optional[int] = None
    status: Optional[int] = None
    format_type: Optional[int] = None               # 0 text, 1 table, 2 image
    slice_count: Optional[int] = None
    space_id: Optional[str] = None
    dataset_type: Optional[int] = None
    can_edit: Optional[bool] = None
    icon_url: Optional[str] = None
    icon_uri: Optional[str] = None
    avatar_url: Optional[str] = None
    creator_id: Optional[str] = None
    creator_name: Optional[str] = None
    hit_count: Optional[int] = None
    all_file_size: Optional[int] = None             # May arrive as a numeric string
    bot_used_count: Optional[int] = None
    file_list: Optional[list] = None
    failed_file_list: Optional[list] = None
    processing_file_list: Optional[list] = None
    processing_file_id_list: Optional[list] = None
    chunk_strategy: Optional[dict] = None
    storage_config: Optional[dict] = None
    project_id: Optional[str] = None

    extra: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.document_count < 0:
            self.document_count = 0

    @classmethod
    def from_json(cls, obj: dict) -> "KnowledgeBaseRecord":
        count = as_int(first_present(obj, "doc_count", "document_count", "file_count"))
        return cls(
            dataset_id=as_str(first_present(obj, "dataset_id", "id")) or "",
            name=as_str(obj.get("name")) or "",
            description=as_str(obj.get("description")) or "",
            document_count=max(count or 0, 0),
            created_at=as_int(first_present(obj, "create_time", "created_at")),
            update_time=as_int(obj.get("update_time")),
            status=as_int(obj.get("status")),
            format_type=as_int(obj.get("format_type")),
            slice_count=as_int(obj.get("slice_count")),
            space_id=as_str(obj.get("space_id")),
            dataset_type=as_int(obj.get("dataset_type")),
            can_edit=as_bool(obj.get("can_edit")),
            icon_url=as_str(obj.get("icon_url")),
            icon_uri=as_str(obj.get("icon_uri")),
            avatar_url=as_str(obj.get("avatar_url")),
            creator_id=as_str(obj.get("creator_id")),
            creator_name=as_str(obj.get("creator_name")),
            hit_count=as_int(obj.get("hit_count")),
            all_file_size=as_int(obj.get("all_file_size")),
            bot_used_count=as_int(obj.get("bot_used_count")),
            file_list=_as_list(obj.get("file_list")),
            failed_file_list=_as_list(obj.get("failed_file_list")),
            processing_file_list=_as_list(obj.get("processing_file_list")),
            processing_file_id_list=_as_list(obj.get("processing_file_id_list")),
            chunk_strategy=as_dict(obj.get("chunk_strategy")),
            storage_config=as_dict(obj.get("storage_config")),
            project_id=as_str(obj.get("project_id")),
            extra={k: v for k, v in obj.items() if k not in _KNOWN_KB_KEYS},
        )

    def to_dict(self, detailed: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "dataset_id": self.dataset_id,
            "name": self.name,
            "description": self.description,
            "document_count": self.document_count,
            "created_at": self.created_at,
        }
        if detailed:
            for name in _EXTENDED_FIELDS:
                value = getattr(self, name)
                if value is not None:
                    data[name] = value
            if self.extra:
                data["extra"] = dict(self.extra)
        return data


def _as_list(value: Any) -> Optional[list]:
    return value if isinstance(value, list) else None


# -----------------------------------------------------------------------------
# Chat - async (polling) model
# -----------------------------------------------------------------------------
#   created → in_progress → completed
#                         → failed
#                         → requires_action   (tool call; we stop here)
# -----------------------------------------------------------------------------
class ChatStatus(str, Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    REQUIRES_ACTION = "requires_action"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "ChatStatus":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_pending(self) -> bool:
        return self in (ChatStatus.CREATED, ChatStatus.IN_PROGRESS)


@dataclass
class ChatSession:
    """The server-side chat being tracked by the poller."""

    conversation_id: str
    chat_id: str
    status: ChatStatus = ChatStatus.CREATED
    last_error: Optional[dict] = None
    usage: Optional[dict] = None

    @classmethod
    def from_json(cls, obj: dict) -> "ChatSession":
        return cls(
            conversation_id=as_str(obj.get("conversation_id")) or "",
            chat_id=as_str(first_present(obj, "id", "chat_id")) or "",
            status=ChatStatus.parse(first_present(obj, "status") or "created"),
            last_error=as_dict(obj.get("last_error")),
            usage=as_dict(obj.get("usage")),
        )

    def update_from(self, obj: dict) -> None:
        status = first_present(obj, "status")
        if status is not None:
            self.status = ChatStatus.parse(status)
        self.last_error = as_dict(obj.get("last_error")) or self.last_error
        self.usage = as_dict(obj.get("usage")) or self.usage


@dataclass
class ChatOutcome:
    """What wait_for_completion() hands back to the dispatcher."""

    session: ChatSession
    reply: str = ""
    attempts: int = 0
    timed_out: bool = False

    @property
    def status(self) -> ChatStatus:
        return self.session.status


# -----------------------------------------------------------------------------
# Streaming
# -----------------------------------------------------------------------------
class StreamEventKind(str, Enum):
    MESSAGE_DELTA = "conversation_message_delta"
    CHAT_COMPLETED = "chat_completed"
    CHAT_IN_PROGRESS = "chat_in_progress"
    CHAT_FAILED = "chat_failed"
    REQUIRES_ACTION = "requires_action"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (
            StreamEventKind.DONE,
            StreamEventKind.CHAT_COMPLETED,
            StreamEventKind.CHAT_FAILED,
        )


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    content: Optional[str] = None
    usage: Optional[dict] = None
    error: Optional[dict] = None
    conversation_id: Optional[str] = None
    chat_id: Optional[str] = None


class BotPublishStatus(str, Enum):
    ALL = "all"
    PUBLISHED_ONLINE = "published_online"
    PUBLISHED_DRAFT = "published_draft"
    UNPUBLISHED_DRAFT = "unpublished_draft"


# -----------------------------------------------------------------------------
# ToolResult - what every tool returns
# -----------------------------------------------------------------------------
@dataclass
class ToolResult:
    """Human-readable text plus a machine-readable payload."""

    content: str
    is_error: bool = False
    structured_content: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "is_error": self.is_error,
            "structured_content": self.structured_content,
        }
