# =============================================================================
# core/config.py  -  Server settings (CLI flag > environment > default)
# =============================================================================
#
# ENVIRONMENT VARIABLES (a .env file is loaded first by main.py):
#   COZE_API_TOKEN / COZE_API_KEY   Personal access token (Bearer)
#   COZE_API_BASE_URL               Default: https://api.coze.cn
#   COZE_DEFAULT_SPACE_ID           Workspace used when a tool omits one
#   COZE_MCP_TRANSPORT              stdio (default), sse, or http
#   COZE_API_TIMEOUT                Per-request timeout in seconds (30)
#   LOG_LEVEL                       DEBUG / INFO / WARNING / ERROR
#
# Every variable has a matching command-line flag that overrides it.
# =============================================================================

import argparse
import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from core import endpoints
from core.errors import ConfigError

logger = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "sse", "http")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class Settings:
    api_base_url: str = endpoints.DEFAULT_BASE_URL
    api_token: str = ""
    default_space_id: str = ""
    transport: str = "stdio"
    log_level: str = "INFO"
    request_timeout: float = endpoints.DEFAULT_TIMEOUT_SECONDS

    @property
    def masked_token(self) -> str:
        """Show just enough of the token to recognise it in logs."""
        if not self.api_token:
            return "<unset>"
        if len(self.api_token) <= 8:
            return "****"
        return f"{self.api_token[:4]}…{self.api_token[-4:]}"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coze-mcp-server",
        description="MCP tool server for the Coze bot, knowledge base and chat APIs",
    )
    parser.add_argument("--api-key", help="Coze API token (env: COZE_API_TOKEN)")
    parser.add_argument("--space-id", help="default workspace id (env: COZE_DEFAULT_SPACE_ID)")
    parser.add_argument("--base-url", help="Coze API base URL (env: COZE_API_BASE_URL)")
    parser.add_argument("--transport", help="stdio, sse or http (env: COZE_MCP_TRANSPORT)")
    parser.add_argument("--log-level", help="logging level (env: LOG_LEVEL)")
    parser.add_argument("--timeout", help="request timeout in seconds (env: COZE_API_TIMEOUT)")
    return parser


def _pick(cli_value: Optional[str], env: Mapping[str, str], *names: str) -> Optional[str]:
    if cli_value:
        return cli_value
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def load_settings(
    argv: Optional[Sequence[str]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Resolve settings from the command line and the environment."""
    env = os.environ if env is None else env
    args = build_parser().parse_args(argv)

    settings = Settings()
    settings.api_token = _pick(args.api_key, env, "COZE_API_TOKEN", "COZE_API_KEY") or ""
    settings.default_space_id = _pick(args.space_id, env, "COZE_DEFAULT_SPACE_ID") or ""
    base_url = _pick(args.base_url, env, "COZE_API_BASE_URL")
    if base_url:
        settings.api_base_url = base_url.rstrip("/")

    transport = (_pick(args.transport, env, "COZE_MCP_TRANSPORT") or "stdio").lower()
    if transport not in TRANSPORTS:
        raise ConfigError(f"unsupported transport {transport!r}, expected one of {TRANSPORTS}")
    settings.transport = transport

    log_level = (_pick(args.log_level, env, "LOG_LEVEL") or "INFO").upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"unsupported log level {log_level!r}")
    settings.log_level = log_level

    timeout = _pick(args.timeout, env, "COZE_API_TIMEOUT")
    if timeout:
        try:
            settings.request_timeout = float(timeout)
        except ValueError as err:
            raise ConfigError(f"timeout must be a number of seconds, got {timeout!r}") from err
        if settings.request_timeout <= 0:
            raise ConfigError("timeout must be positive")

    if not settings.api_token:
        logger.warning("No Coze API token configured; every API call will be rejected")
    return settings
