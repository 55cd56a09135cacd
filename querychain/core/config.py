"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


# LLM provider: "gemini" (REST via httpx) or "openai" (SDK)
LLM_PROVIDER: str = (os.getenv("LLM_PROVIDER", "gemini").strip().lower() or "gemini")

# Gemini (default provider)
GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "").strip()
GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta/models"
GEMINI_CHAT_MODEL: str = (
    os.getenv("GEMINI_CHAT_MODEL", "gemini-2.0-flash").strip() or "gemini-2.0-flash"
)
GEMINI_EMBED_MODEL: str = (
    os.getenv("GEMINI_EMBED_MODEL", "text-embedding-004").strip() or "text-embedding-004"
)

# OpenAI (alternative provider)
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)
OPENAI_EMBED_MODEL: str = (
    os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small").strip() or "text-embedding-3-small"
)

# MongoDB / Atlas (from env)
MONGODB_URI: str = os.getenv("MONGODB_URI", "").strip()
MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "Employees").strip() or "Employees"
PERMISSIONS_COLLECTION: str = "Permissions"
AUDIT_COLLECTION: str = "AuditLogs"

# Record embeddings (text-embedding-004 = 768 dims)
EMBEDDING_FIELD: str = "docEmbedding"
EMBEDDING_DIMENSIONS: int = 768
REEMBED_MARKER_FIELD: str = "needsReembedding"

# Atlas vector search
VECTOR_INDEX_NAME: str = os.getenv("VECTOR_INDEX_NAME", "vectorIndex").strip() or "vectorIndex"
RAG_NUM_CANDIDATES: int = 100
RAG_LIMIT: int = 5

# API timeouts (seconds)
LLM_API_TIMEOUT: float = 60.0
EMBED_API_TIMEOUT: float = 30.0
MONGO_SERVER_SELECTION_TIMEOUT_MS: int = 10_000

# Upstream retries for transient failures (transport errors, 429, 5xx). 0 disables.
UPSTREAM_MAX_RETRIES: int = _int_env("UPSTREAM_MAX_RETRIES", 2)
UPSTREAM_BACKOFF_SECONDS: float = _float_env("UPSTREAM_BACKOFF_SECONDS", 0.5)

# Caller used by the HTTP layer when no identity headers are sent
DEFAULT_CALLER_ID: str = os.getenv("DEFAULT_CALLER_ID", "user-123").strip() or "user-123"
DEFAULT_CALLER_ROLE: str = os.getenv("DEFAULT_CALLER_ROLE", "Admin").strip() or "Admin"

# Embedding backfill: pause between records to respect embedding API rate limits
BACKFILL_DELAY_SECONDS: float = _float_env("BACKFILL_DELAY_SECONDS", 1.0)
DEFAULT_DATA_COLLECTION: str = "managers"
