# =============================================================================
# core/normalizer.py  -  Response Normalizer (tolerant JSON reading)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   The Coze API is not consistent about where it puts list results.  The
#   same "list datasets" call has been observed to answer in three shapes:
#
#     {"data": {"datasets": [...], "total": N}}
#     {"data": {"dataset_list": [...], "total_count": N}}
#     {"datasets": [...], "total": N}
#
#   This module turns any of them into one canonical (items, total) pair,
#   and provides small typed accessors so the rest of the code never pokes
#   at raw JSON with ad-hoc isinstance checks.
#
# RULES:
#   - List keys are tried in priority order (LIST_KEYS).
#   - Count keys are tried in priority order (COUNT_KEYS); when none is
#     present the list length is the total.
#   - A shape mismatch NEVER fails the call: no list found → ([], 0).
# =============================================================================

import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from core.errors import ApiError

logger = logging.getLogger(__name__)

LIST_KEYS: tuple[str, ...] = ("datasets", "dataset_list", "list", "items")
COUNT_KEYS: tuple[str, ...] = ("total", "total_count")

# Detail fetches are capped so a huge listing doesn't fan out unbounded.
DETAIL_FETCH_LIMIT = 50


# -----------------------------------------------------------------------------
# Typed accessors
# -----------------------------------------------------------------------------

def first_present(obj: Any, *keys: str) -> Any:
    """Return the value of the first key present (and not null) in obj."""
    if not isinstance(obj, dict):
        return None
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def as_int(value: Any) -> Optional[int]:
    """Read a JSON number or numeric string as int.  Booleans are rejected."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError:
                return None
    return None


def as_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def as_dict(value: Any) -> Optional[dict]:
    return value if isinstance(value, dict) else None


# -----------------------------------------------------------------------------
# List extraction
# -----------------------------------------------------------------------------

def unwrap_data(body: Any) -> Any:
    """Return body["data"] when present, otherwise the body itself."""
    if isinstance(body, dict) and body.get("data") is not None:
        return body["data"]
    return body


def extract_list_and_total(
    data: Any, list_keys: Sequence[str] = LIST_KEYS
) -> tuple[list, int]:
    """Find the item array and total count inside an (already unwrapped) payload."""
    if isinstance(data, list):
        return list(data), len(data)
    if not isinstance(data, dict):
        return [], 0

    items: Optional[list] = None
    for key in list_keys:
        candidate = data.get(key)
        if isinstance(candidate, list):
            items = candidate
            break
    if items is None:
        return [], 0

    for key in COUNT_KEYS:
        total = as_int(data.get(key))
        if total is not None:
            return items, total
    return items, len(items)


def normalize_list_response(
    body: Any, extra_keys: Iterable[str] = ()
) -> tuple[list, int]:
    """unwrap_data + extract_list_and_total, with optional extra list keys."""
    keys = tuple(LIST_KEYS) + tuple(k for k in extra_keys if k not in LIST_KEYS)
    return extract_list_and_total(unwrap_data(body), keys)


# -----------------------------------------------------------------------------
# Document count refinement
# -----------------------------------------------------------------------------

def document_count_from_detail(detail: Any) -> Optional[int]:
    """Count documents in a dataset detail payload.

    The file_list length wins; the explicit count fields are the fallback.
    """
    detail = unwrap_data(detail)
    if not isinstance(detail, dict):
        return None
    files = detail.get("file_list")
    if isinstance(files, list):
        return len(files)
    count = as_int(first_present(detail, "doc_count", "document_count", "file_count"))
    if count is not None and count >= 0:
        return count
    return None


async def refine_document_counts(
    records: list,
    fetch_detail: Callable[[str], Awaitable[Any]],
    limit: int = DETAIL_FETCH_LIMIT,
) -> int:
    """Replace list-view document counts with per-dataset detail counts.

    Best effort: a failed detail fetch keeps the original value.  Returns the
    number of records that were refined.
    """
    refined = 0
    for record in records[:limit]:
        if not record.dataset_id:
            continue
        try:
            detail = await fetch_detail(record.dataset_id)
        except ApiError as err:
            logger.debug("detail fetch for %s failed: %s", record.dataset_id, err)
            continue
        count = document_count_from_detail(detail)
        if count is not None:
            record.document_count = count
            refined += 1
    return refined
