import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secrets stay in .env (GOOGLE_API_KEY, YOUTUBE_API_KEY)

# User config: loaded from ~/.tubechat/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".tubechat" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('ingest.max_limit', 100)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for logs and exported channel data.
# Priority: TUBECHAT_DIR env var > "data_dir" config key > ~/.tubechat

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``TUBECHAT_DIR`` environment variable (highest)
    2. ``"data_dir"`` key in config.json
    3. ``~/.tubechat`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("TUBECHAT_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".tubechat"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


# ---- API keys ------------------------------------------------------------------

def get_api_key() -> str | None:
    """Return the Gemini API key (``GOOGLE_API_KEY``)."""
    return os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")


def get_youtube_api_key() -> str | None:
    """Return the YouTube Data API key (``YOUTUBE_API_KEY``)."""
    return os.getenv("YOUTUBE_API_KEY")


# ---- Models ----------------------------------------------------------------------
MODEL = get("model", "gemini-2.5-flash")
IMAGE_MODEL = get("image_model", "gemini-2.5-flash-image")
LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)

# ---- Dispatcher --------------------------------------------------------------------
TOOL_LOOP_MAX_CALLS = get("tool_loop.max_total_calls", 10)
CSV_BASE64_CHAR_LIMIT = get("csv.base64_char_limit", 500_000)
SLIM_CSV_MAX_ROWS = get("csv.slim_max_rows", 500)

# ---- Ingestion ----------------------------------------------------------------------
INGEST_DEFAULT_LIMIT = get("ingest.default_limit", 10)
INGEST_MAX_LIMIT = get("ingest.max_limit", 100)
INGEST_PAGE_SIZE = get("ingest.page_size", 50)
INGEST_DETAIL_BATCH_SIZE = get("ingest.detail_batch_size", 50)
INGEST_REQUEST_TIMEOUT = get("ingest.request_timeout", 15)

# ---- Server --------------------------------------------------------------------------
MAX_SESSIONS = get("max_sessions", 20)
SESSION_IDLE_TIMEOUT = get("session_idle_timeout", 3600)


# ---- Setting descriptions (single source of truth for UI) --------------------
CONFIG_DESCRIPTIONS: dict[str, str] = {
    "model": "Gemini model used for tool calling, code execution and grounded generation.",
    "image_model": "Gemini model used for image generation and editing.",
    "tool_loop.max_total_calls": "Hard cap on tool invocations within a single chat turn.",
    "csv.base64_char_limit": "Maximum characters of an uploaded CSV embedded as base64 for code execution.",
    "csv.slim_max_rows": "Maximum rows of the key-column CSV digest embedded in prompts.",
    "ingest.default_limit": "Number of videos harvested when the request does not specify one.",
    "ingest.max_limit": "Upper bound on the number of videos a single harvest may request.",
    "ingest.page_size": "Maximum items requested per playlist page (YouTube caps this at 50).",
    "ingest.detail_batch_size": "Video IDs per details request (YouTube caps this at 50).",
    "ingest.request_timeout": "Timeout in seconds for each YouTube Data API request.",
    "classification": "Override the routing vocabulary. Keys: plot_patterns, code_patterns, image_patterns, edit_patterns. Each is a list of [name, regex] pairs evaluated in order.",
    "console_format": "Console log format: 'simple' (bare messages), 'full' (same as the log file) or 'clean' (no console output).",
    "max_sessions": "Maximum concurrent chat sessions held in memory.",
}


def reload_config() -> None:
    """Re-read config from disk and reassign all module-level constants.

    Existing sessions keep their current adapter; only new turns pick up
    changed models, routing tables and limits.
    """
    global _user_config
    global MODEL, IMAGE_MODEL, LLM_TIMEOUT_MS
    global TOOL_LOOP_MAX_CALLS, CSV_BASE64_CHAR_LIMIT, SLIM_CSV_MAX_ROWS
    global \
        INGEST_DEFAULT_LIMIT, \
        INGEST_MAX_LIMIT, \
        INGEST_PAGE_SIZE, \
        INGEST_DETAIL_BATCH_SIZE, \
        INGEST_REQUEST_TIMEOUT
    global MAX_SESSIONS, SESSION_IDLE_TIMEOUT

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    MODEL = get("model", "gemini-2.5-flash")
    IMAGE_MODEL = get("image_model", "gemini-2.5-flash-image")
    LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)
    TOOL_LOOP_MAX_CALLS = get("tool_loop.max_total_calls", 10)
    CSV_BASE64_CHAR_LIMIT = get("csv.base64_char_limit", 500_000)
    SLIM_CSV_MAX_ROWS = get("csv.slim_max_rows", 500)
    INGEST_DEFAULT_LIMIT = get("ingest.default_limit", 10)
    INGEST_MAX_LIMIT = get("ingest.max_limit", 100)
    INGEST_PAGE_SIZE = get("ingest.page_size", 50)
    INGEST_DETAIL_BATCH_SIZE = get("ingest.detail_batch_size", 50)
    INGEST_REQUEST_TIMEOUT = get("ingest.request_timeout", 15)
    MAX_SESSIONS = get("max_sessions", 20)
    SESSION_IDLE_TIMEOUT = get("session_idle_timeout", 3600)
