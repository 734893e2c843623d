# =============================================================================
# core/uploads.py  -  Local file → upload payload for the knowledge API
# =============================================================================
#
# Reads a local file, checks it (exists, regular file, non-empty, ≤ 10 MiB),
# base64-encodes it, and builds the document_bases entry the
# /open_api/knowledge/document/create endpoint expects.
# =============================================================================

import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_FILE_TYPE = "txt"
DEFAULT_CHUNK_TOKENS = 800
CHUNK_SEPARATOR = "\n\n"


class UploadValidationError(ValueError):
    """The local file can't be uploaded.  Raised before any network call."""


@dataclass
class PreparedUpload:
    document_name: str
    file_type: str
    size_bytes: int
    file_base64: str


def file_type_for(path: Path) -> str:
    suffix = path.suffix.lower().lstrip(".")
    return suffix or DEFAULT_FILE_TYPE


def prepare_upload(file_path: str, document_name: Optional[str] = None) -> PreparedUpload:
    path = Path(file_path).expanduser()
    if not path.exists():
        raise UploadValidationError(f"File not found: {file_path}")
    if not path.is_file():
        raise UploadValidationError(f"Not a regular file: {file_path}")

    size = path.stat().st_size
    if size == 0:
        raise UploadValidationError(f"File is empty: {file_path}")
    if size > MAX_UPLOAD_BYTES:
        raise UploadValidationError(
            f"File is {size} bytes; the upload limit is {MAX_UPLOAD_BYTES} bytes (10 MiB)"
        )

    data = path.read_bytes()
    return PreparedUpload(
        document_name=document_name or path.name,
        file_type=file_type_for(path),
        size_bytes=len(data),
        file_base64=base64.b64encode(data).decode("ascii"),
    )


def build_document_create_body(
    dataset_id: str, upload: PreparedUpload, chunk_size: int = DEFAULT_CHUNK_TOKENS
) -> dict:
    return {
        "dataset_id": dataset_id,
        "document_bases": [
            {
                "name": upload.document_name,
                "source_info": {
                    "file_base64": upload.file_base64,
                    "file_type": upload.file_type,
                },
            }
        ],
        "chunk_strategy": {
            "separator": CHUNK_SEPARATOR,
            "max_tokens": chunk_size,
            "chunk_type": 1,
        },
        "format_type": 0,
    }
