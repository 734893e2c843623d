# =============================================================================
# core/gateway.py  -  API Gateway (one authenticated HTTP call per operation)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Wraps a single pooled httpx.AsyncClient and turns an ApiRequest into an
#   ApiResponse, or raises an ApiError subclass from core/errors.py.
#
# HOW IT WORKS:
#   1. Every call carries "Authorization: Bearer <token>" and a JSON
#      content type; per-request headers are layered on top.
#   2. Query parameters are encoded for EVERY method (the chat endpoint
#      takes conversation_id on a POST).  Strings go in raw, numbers and
#      booleans as their JSON text, nulls/objects/arrays are skipped.
#   3. The whole body is read, then parsed as JSON.  A non-JSON body is
#      wrapped as {"raw": "<text>"} instead of failing.
#   4. Transport failures become NetworkError / ApiTimeoutError; HTTP
#      statuses ≥ 400 become the class error_from_response() picks.
#
#   The gateway never looks at the body's business "code".  The endpoint
#   helpers at the bottom leave that to their callers.
# =============================================================================

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx

from core import endpoints
from core.errors import (
    ApiTimeoutError,
    NetworkError,
    error_from_response,
)
from core.models import ApiRequest, ApiResponse, HttpMethod

logger = logging.getLogger(__name__)


def encode_query_params(params: dict[str, Any]) -> dict[str, str]:
    """Flatten query params to strings the way the Coze API expects them."""
    encoded: dict[str, str] = {}
    for key, value in params.items():
        if value is None or isinstance(value, (dict, list, tuple)):
            continue
        if isinstance(value, str):
            encoded[key] = value
        else:
            encoded[key] = json.dumps(value)
    return encoded


def _parse_body(text: str) -> Any:
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


class CozeApiClient:
    """Async client for the Coze REST API.

    Safe to share between concurrent tool calls: the only shared state is
    httpx's connection pool.
    """

    def __init__(
        self,
        base_url: str = endpoints.DEFAULT_BASE_URL,
        api_token: str = "",
        timeout: float = endpoints.DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def __aenter__(self) -> "CozeApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, extra: dict[str, str]) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_token}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    def _build(self, request: ApiRequest, extra_headers: Optional[dict] = None) -> httpx.Request:
        headers = self._headers(request.headers)
        if extra_headers:
            headers.update(extra_headers)
        content = None
        if request.body is not None and request.method != HttpMethod.GET:
            content = json.dumps(request.body, ensure_ascii=False).encode("utf-8")
        return self._client.build_request(
            request.method.value,
            request.endpoint,
            params=encode_query_params(request.params),
            headers=headers,
            content=content,
        )

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    async def execute(self, request: ApiRequest) -> ApiResponse:
        """Send one request and return the parsed response."""
        logger.debug("%s %s params=%s", request.method.value, request.endpoint, request.params)
        try:
            response = await self._client.send(self._build(request))
        except httpx.TimeoutException as err:
            raise ApiTimeoutError(f"request to {request.endpoint} timed out") from err
        except httpx.HTTPError as err:
            raise NetworkError(f"request to {request.endpoint} failed: {err}") from err

        body = _parse_body(response.text)
        logger.debug("%s %s -> %s", request.method.value, request.endpoint, response.status_code)
        if response.status_code >= 400:
            raise error_from_response(response.status_code, body, response.text)
        return ApiResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
        )

    async def stream(self, request: ApiRequest) -> AsyncIterator[bytes]:
        """Open a Server-Sent-Events response and yield its raw byte chunks."""
        http_request = self._build(request, {"Accept": "text/event-stream"})
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.TimeoutException as err:
            raise ApiTimeoutError(f"stream to {request.endpoint} timed out") from err
        except httpx.HTTPError as err:
            raise NetworkError(f"stream to {request.endpoint} failed: {err}") from err

        try:
            if response.status_code >= 400:
                await response.aread()
                raise error_from_response(
                    response.status_code, _parse_body(response.text), response.text
                )
            async for chunk in response.aiter_bytes():
                yield chunk
        except httpx.TimeoutException as err:
            raise ApiTimeoutError(f"stream from {request.endpoint} timed out") from err
        except httpx.HTTPError as err:
            raise NetworkError(f"stream from {request.endpoint} broke: {err}") from err
        finally:
            await response.aclose()

    # -------------------------------------------------------------------------
    # Endpoint helpers
    # -------------------------------------------------------------------------

    async def list_bots(self, params: dict[str, Any]) -> ApiResponse:
        return await self.execute(ApiRequest(endpoint=endpoints.BOTS, params=params))

    async def list_datasets(self, params: dict[str, Any]) -> ApiResponse:
        return await self.execute(ApiRequest(endpoint=endpoints.DATASETS, params=params))

    async def get_dataset_detail(self, dataset_id: str) -> Any:
        response = await self.execute(
            ApiRequest(endpoint=endpoints.DATASET_DETAIL, params={"dataset_id": dataset_id})
        )
        return response.body

    async def create_dataset(self, body: dict[str, Any]) -> ApiResponse:
        return await self.execute(
            ApiRequest(endpoint=endpoints.DATASETS, method=HttpMethod.POST, body=body)
        )

    async def upload_documents(self, body: dict[str, Any]) -> ApiResponse:
        return await self.execute(
            ApiRequest(
                endpoint=endpoints.DOCUMENT_CREATE,
                method=HttpMethod.POST,
                headers={"Agw-Js-Conv": "str"},
                body=body,
            )
        )

    async def list_conversations(self, params: dict[str, Any]) -> ApiResponse:
        return await self.execute(ApiRequest(endpoint=endpoints.CONVERSATIONS, params=params))

    async def create_chat(self, body: dict[str, Any], conversation_id: Optional[str] = None) -> ApiResponse:
        return await self.execute(
            ApiRequest(
                endpoint=endpoints.CHAT,
                method=HttpMethod.POST,
                params={"conversation_id": conversation_id},
                body=body,
            )
        )

    async def retrieve_chat(self, conversation_id: str, chat_id: str) -> ApiResponse:
        return await self.execute(
            ApiRequest(
                endpoint=endpoints.CHAT_RETRIEVE,
                params={"conversation_id": conversation_id, "chat_id": chat_id},
            )
        )

    async def list_chat_messages(self, conversation_id: str, chat_id: str) -> ApiResponse:
        return await self.execute(
            ApiRequest(
                endpoint=endpoints.CHAT_MESSAGES,
                params={"conversation_id": conversation_id, "chat_id": chat_id},
            )
        )

    def stream_chat(self, body: dict[str, Any], conversation_id: Optional[str] = None) -> AsyncIterator[bytes]:
        return self.stream(
            ApiRequest(
                endpoint=endpoints.CHAT,
                method=HttpMethod.POST,
                params={"conversation_id": conversation_id},
                body=dict(body, stream=True),
            )
        )
