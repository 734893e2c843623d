"""Tests for local upload preparation and settings resolution."""

import base64

import pytest

from core.config import load_settings
from core.errors import ConfigError
from core.uploads import (
    MAX_UPLOAD_BYTES,
    UploadValidationError,
    build_document_create_body,
    prepare_upload,
)


def test_prepare_upload_encodes_file(tmp_path) -> None:
    path = tmp_path / "Notes.MD"
    path.write_bytes(b"hello world")

    upload = prepare_upload(str(path))

    assert upload.document_name == "Notes.MD"
    assert upload.file_type == "md"
    assert upload.size_bytes == 11
    assert base64.b64decode(upload.file_base64) == b"hello world"


def test_prepare_upload_defaults_to_txt_and_custom_name(tmp_path) -> None:
    path = tmp_path / "README"
    path.write_text("content")
    upload = prepare_upload(str(path), document_name="Readme doc")
    assert upload.file_type == "txt"
    assert upload.document_name == "Readme doc"


def test_prepare_upload_rejects_bad_files(tmp_path) -> None:
    with pytest.raises(UploadValidationError, match="not found"):
        prepare_upload(str(tmp_path / "missing.txt"))
    with pytest.raises(UploadValidationError, match="regular file"):
        prepare_upload(str(tmp_path))

    empty = tmp_path / "empty.txt"
    empty.write_bytes(b"")
    with pytest.raises(UploadValidationError, match="empty"):
        prepare_upload(str(empty))

    big = tmp_path / "big.txt"
    with open(big, "wb") as handle:
        handle.truncate(MAX_UPLOAD_BYTES + 1)
    with pytest.raises(UploadValidationError, match="10 MiB"):
        prepare_upload(str(big))


def test_document_create_body_shape(tmp_path) -> None:
    path = tmp_path / "a.txt"
    path.write_text("x")
    body = build_document_create_body("ds1", prepare_upload(str(path)), chunk_size=500)

    assert body["dataset_id"] == "ds1"
    assert body["format_type"] == 0
    assert body["chunk_strategy"] == {"separator": "\n\n", "max_tokens": 500, "chunk_type": 1}
    assert body["document_bases"][0]["source_info"]["file_type"] == "txt"


def test_settings_defaults() -> None:
    settings = load_settings([], env={})
    assert settings.api_base_url == "https://api.coze.cn"
    assert settings.api_token == ""
    assert settings.transport == "stdio"
    assert settings.log_level == "INFO"
    assert settings.request_timeout == 30.0
    assert settings.masked_token == "<unset>"


def test_settings_env_then_cli_precedence() -> None:
    env = {
        "COZE_API_KEY": "pat_from_key_var",
        "COZE_API_BASE_URL": "https://api.coze.com/",
        "COZE_DEFAULT_SPACE_ID": "env-space",
        "LOG_LEVEL": "debug",
    }
    settings = load_settings([], env=env)
    assert settings.api_token == "pat_from_key_var"
    assert settings.api_base_url == "https://api.coze.com"
    assert settings.default_space_id == "env-space"
    assert settings.log_level == "DEBUG"

    env["COZE_API_TOKEN"] = "pat_preferred_var"
    assert load_settings([], env=env).api_token == "pat_preferred_var"

    settings = load_settings(
        ["--api-key", "pat_cli_token_value", "--space-id", "cli-space", "--transport", "http"],
        env=env,
    )
    assert settings.api_token == "pat_cli_token_value"
    assert settings.default_space_id == "cli-space"
    assert settings.transport == "http"
    assert settings.masked_token == "pat_…alue"


@pytest.mark.parametrize(
    "argv",
    [["--transport", "carrier-pigeon"], ["--log-level", "LOUD"], ["--timeout", "soon"], ["--timeout", "0"]],
)
def test_settings_reject_invalid_values(argv) -> None:
    with pytest.raises(ConfigError):
        load_settings(argv, env={})
