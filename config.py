import json
import os
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secret: stays in .env (per-provider env vars: GOOGLE_API_KEY, OPENAI_API_KEY, ANTHROPIC_API_KEY)

# User config: loaded from ~/.datachat/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".datachat" / "config.json"
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
    """Get a config value by dot-separated key. E.g. get('query.row_cap', 1000)"""
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
# Single source of truth for the base data directory (database, logs).
# Priority: DATACHAT_DIR env var > "data_dir" config key > ~/.datachat

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``DATACHAT_DIR`` environment variable (highest: useful for CI/Docker)
    2. ``"data_dir"`` key in config.json
    3. ``~/.datachat`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("DATACHAT_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".datachat"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


def get_db_path() -> Path:
    """Return the SQLite database file path.

    ``"database_path"`` in config.json wins; otherwise the database lives
    in the data directory.
    """
    configured = get("database_path")
    if configured:
        return Path(configured).expanduser().resolve()
    return get_data_dir() / "datachat.db"


# ---- LLM provider config ------------------------------------------------------
LLM_PROVIDER = get("llm_provider", "gemini")  # "gemini", "openai", "anthropic"

_PROVIDER_ENV_KEYS = {
    "gemini": "GOOGLE_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def get_api_key(provider: str | None = None) -> str | None:
    """Return the API key for the given provider.

    Each provider uses its own env var:
      gemini    → GOOGLE_API_KEY
      openai    → OPENAI_API_KEY
      anthropic → ANTHROPIC_API_KEY
    """
    p = (provider or LLM_PROVIDER).lower()
    env_key = _PROVIDER_ENV_KEYS.get(p)
    if env_key:
        return os.getenv(env_key)
    return None


# ---- Per-provider defaults ---------------------------------------------------
# Used as final fallback when neither providers.<active>.key nor a top-level
# key is set in config.json.
_PROVIDER_DEFAULTS = {
    "gemini": {
        "model": "gemini-2.5-flash",
        "base_url": None,
        "thinking": "low",
    },
    "openai": {
        "model": "gpt-4o-mini",
        "base_url": "",
        "thinking": "default",
    },
    "anthropic": {
        "model": "claude-sonnet-4-5",
        "base_url": "",
        "thinking": "default",
    },
}


def _provider_get(key: str, default=None):
    """Get a config value with provider-section priority.

    Resolution order:
    1. providers.<active_provider>.key  (provider-specific)
    2. Top-level key                    (override)
    3. _PROVIDER_DEFAULTS[provider].key (hardcoded defaults)
    4. default argument
    """
    provider = get("llm_provider", "gemini")
    val = get(f"providers.{provider}.{key}")
    if val is not None:
        return val
    val = get(key)
    if val is not None:
        return val
    provider_defaults = _PROVIDER_DEFAULTS.get(provider, {})
    if key in provider_defaults:
        return provider_defaults[key]
    return default


def _context_turn_limit() -> int:
    env_val = os.environ.get("CHAT_CONTEXT_LIMIT")
    if env_val:
        try:
            return int(env_val)
        except ValueError:
            pass
    return int(get("history.context_turn_limit", 3))


# ---- Model ---------------------------------------------------------------------
LLM_BASE_URL = _provider_get("base_url")
SMART_MODEL = _provider_get("model")
LLM_THINKING = _provider_get("thinking", "default")
LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)

# ---- Data knobs ----------------------------------------------------------------
CONTEXT_TURN_LIMIT = _context_turn_limit()
QUERY_ROW_CAP = get("query.row_cap", 1000)
SAMPLE_ROW_CAP = get("query.sample_cap", 50)
MAX_TYPE_SAMPLES = get("ingest.max_type_samples", 100)
MAX_UPLOAD_BYTES = get("ingest.max_upload_bytes", 50 * 1024 * 1024)

# ---- Reasoning features -------------------------------------------------------
OBSERVATION_SUMMARIES = get("reasoning.observation_summaries", True)
SHOW_REASONING = get("reasoning.show_reasoning", True)


# ---- Setting descriptions (single source of truth for UI) --------------------
CONFIG_DESCRIPTIONS: dict[str, str] = {
    "llm_provider": "Reasoning provider: 'gemini', 'openai', or 'anthropic'. API keys come from .env.",
    "data_dir": "Base directory for the database and logs. DATACHAT_DIR env var takes precedence.",
    "database_path": "Explicit SQLite database file. Defaults to <data_dir>/datachat.db.",
    "history.context_turn_limit": "Number of prior conversation turns injected into the agent prompt. CHAT_CONTEXT_LIMIT env var takes precedence.",
    "query.row_cap": "Maximum rows returned by a single data query.",
    "query.sample_cap": "Maximum rows returned by a sample request.",
    "ingest.max_type_samples": "Non-null values sampled per column when inferring its type.",
    "ingest.max_upload_bytes": "Reject uploads larger than this many bytes.",
    "reasoning.observation_summaries": "Inject human-readable summaries into tool results for better LLM reasoning.",
    "reasoning.show_reasoning": "Stream progress messages to the client during a chat turn.",
    "turn_limits": "Override agent loop limits. Keys are named limits (e.g. 'orchestrator.max_cycles'). See agent/turn_limits.py DEFAULTS for all limit names.",
    "truncation": "Override text character limits for truncation. Keys are named limits (e.g. 'history.context'). Values are integers; 0 means no truncation. See agent/truncation.py for all limit names.",
}


def reload_config() -> None:
    """Re-read config from disk and reassign all module-level constants.

    Call this after writing config.json to make new values take effect
    without restarting the server. Runs already in flight keep their
    adapter and limits; only new runs pick up changes.
    """
    global _user_config
    global LLM_PROVIDER, LLM_BASE_URL, SMART_MODEL, LLM_THINKING, LLM_TIMEOUT_MS
    global CONTEXT_TURN_LIMIT, QUERY_ROW_CAP, SAMPLE_ROW_CAP, MAX_TYPE_SAMPLES, MAX_UPLOAD_BYTES
    global OBSERVATION_SUMMARIES, SHOW_REASONING

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    LLM_PROVIDER = get("llm_provider", "gemini")
    LLM_BASE_URL = _provider_get("base_url")
    SMART_MODEL = _provider_get("model")
    LLM_THINKING = _provider_get("thinking", "default")
    LLM_TIMEOUT_MS = get("llm_timeout_ms", 300_000)
    CONTEXT_TURN_LIMIT = _context_turn_limit()
    QUERY_ROW_CAP = get("query.row_cap", 1000)
    SAMPLE_ROW_CAP = get("query.sample_cap", 50)
    MAX_TYPE_SAMPLES = get("ingest.max_type_samples", 100)
    MAX_UPLOAD_BYTES = get("ingest.max_upload_bytes", 50 * 1024 * 1024)
    OBSERVATION_SUMMARIES = get("reasoning.observation_summaries", True)
    SHOW_REASONING = get("reasoning.show_reasoning", True)

    # Modules that cache config-derived overrides
    from agent import truncation, turn_limits

    truncation.reload()
    turn_limits.reload()
