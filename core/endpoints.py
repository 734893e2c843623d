# =============================================================================
# core/endpoints.py  -  Coze REST endpoint paths and fixed defaults
# =============================================================================

DEFAULT_BASE_URL = "https://api.coze.cn"
DEFAULT_TIMEOUT_SECONDS = 30.0

# --- Bots ---
BOTS = "/v1/bots"
DEFAULT_CONNECTOR_ID = "1024"                  # "API" connector

# --- Knowledge bases ---
DATASETS = "/v1/datasets"                      # GET list, POST create
DATASET_DETAIL = "/open_api/knowledge/dataset"
DOCUMENT_CREATE = "/open_api/knowledge/document/create"

# --- Conversations & chat ---
CONVERSATIONS = "/v1/conversations"
CHAT = "/v3/chat"
CHAT_RETRIEVE = "/v3/chat/retrieve"
CHAT_MESSAGES = "/v3/chat/message/list"
