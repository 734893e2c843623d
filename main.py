# =============================================================================
# main.py  -  Entry Point for the Coze MCP Server
# =============================================================================
#
# HOW TO RUN:
#   python main.py                                 # stdio transport
#   python main.py --transport http                # streamable HTTP
#   python main.py --api-key pat_xxx --space-id 7351234567890
#
# WHAT HAPPENS:
#   1. Loads a .env file (COZE_API_TOKEN, COZE_DEFAULT_SPACE_ID, ...)
#   2. Resolves settings: CLI flag > environment variable > default
#   3. Configures colored stderr logging
#   4. Runs the FastMCP server from tools/mcp_server.py
# =============================================================================

import logging
import sys

from dotenv import load_dotenv

# Must run before load_settings() so .env values are visible in os.environ.
load_dotenv()

from core.config import load_settings
from core.errors import ConfigError
from tools import mcp_server


def main(argv=None) -> int:
    try:
        settings = load_settings(argv)
    except ConfigError as err:
        print(f"Configuration error: {err.message}", file=sys.stderr)
        return 2

    mcp_server.setup_logging(settings.log_level)
    logging.info(
        "Starting coze-mcp-server (transport=%s, base_url=%s, default_space=%s)",
        settings.transport,
        settings.api_base_url,
        settings.default_space_id or "<none>",
    )
    mcp_server.configure(settings)
    mcp_server.mcp.run(transport=settings.transport)
    return 0


if __name__ == "__main__":
    sys.exit(main())
