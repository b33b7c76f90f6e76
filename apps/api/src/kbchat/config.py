from dataclasses import dataclass
from functools import lru_cache
import logging
import os


DEFAULT_EXCLUDE_PATTERNS = (
    "/admin",
    "/login",
    "/register",
    "/cart",
    "/checkout",
    "/account",
    "/api",
    "/wp-admin",
    "/wp-content",
    "*.pdf",
    "*.jpg",
    "*.png",
    "*.gif",
    "*.css",
    "*.js",
)
DEFAULT_BOILERPLATE_PATTERNS = (
    "cookie policy",
    "privacy policy",
    "terms of service",
    "all rights reserved",
    "copyright",
    "follow us on",
    "subscribe to our newsletter",
    "read more",
    "learn more",
    "click here",
)


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_float(value: str | None, *, default: float, minimum: float) -> float:
    if value is None:
        return default
    parsed = float(value)
    return max(minimum, parsed)


def _to_list(value: str | None, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if value is None:
        return default
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    rag_store_path: str
    rag_pdf_dir: str
    rag_chunk_size: int
    rag_chunk_overlap: int
    rag_min_chunk_length: int
    rag_embed_concurrency: int
    rag_top_k: int
    rag_context_chunks: int
    rag_similarity_threshold: float
    rag_ingest_on_startup: bool
    embed_provider: str
    embed_base_url: str
    embed_model: str
    embed_api_key: str
    embed_dimensions: int
    embed_timeout_seconds: float
    llm_base_url: str
    llm_model: str
    llm_fallback_model: str
    llm_api_key: str
    llm_timeout_seconds: float
    site_base_url: str
    site_max_depth: int
    site_max_pages: int
    site_request_delay_seconds: float
    site_request_timeout_seconds: float
    site_user_agent: str
    site_exclude_patterns: tuple[str, ...]
    site_remove_boilerplate: bool
    site_boilerplate_patterns: tuple[str, ...]
    sync_interval_seconds: int
    sync_schedule_enabled: bool
    worker_api_url: str
    worker_sync_timeout_seconds: float
    log_level: str


@lru_cache
def get_settings() -> Settings:
    return Settings(
        rag_store_path=os.getenv("RAG_STORE_PATH", "data/vectors.json"),
        rag_pdf_dir=os.getenv("RAG_PDF_DIR", "pdfs"),
        rag_chunk_size=_to_int(os.getenv("RAG_CHUNK_SIZE"), default=1000, minimum=100),
        rag_chunk_overlap=_to_int(os.getenv("RAG_CHUNK_OVERLAP"), default=200, minimum=0),
        rag_min_chunk_length=_to_int(os.getenv("RAG_MIN_CHUNK_LENGTH"), default=100, minimum=0),
        rag_embed_concurrency=_to_int(os.getenv("RAG_EMBED_CONCURRENCY"), default=5, minimum=1),
        rag_top_k=_to_int(os.getenv("RAG_TOP_K"), default=5, minimum=1),
        rag_context_chunks=_to_int(os.getenv("RAG_CONTEXT_CHUNKS"), default=2, minimum=1),
        rag_similarity_threshold=_to_float(
            os.getenv("RAG_SIMILARITY_THRESHOLD"), default=0.05, minimum=-1.0
        ),
        rag_ingest_on_startup=_to_bool(os.getenv("RAG_INGEST_ON_STARTUP"), default=True),
        embed_provider=os.getenv("EMBED_PROVIDER", "openai").strip().lower(),
        embed_base_url=os.getenv("EMBED_BASE_URL", "https://api.openai.com/v1"),
        embed_model=os.getenv("EMBED_MODEL", "text-embedding-3-small"),
        embed_api_key=os.getenv("EMBED_API_KEY", os.getenv("OPENAI_API_KEY", "")),
        embed_dimensions=_to_int(os.getenv("EMBED_DIMENSIONS"), default=64, minimum=8),
        embed_timeout_seconds=_to_float(
            os.getenv("EMBED_TIMEOUT_SECONDS"), default=10.0, minimum=0.1
        ),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.openai.com/v1"),
        llm_model=os.getenv("LLM_MODEL", "gpt-3.5-turbo"),
        llm_fallback_model=os.getenv("LLM_FALLBACK_MODEL", ""),
        llm_api_key=os.getenv("LLM_API_KEY", os.getenv("OPENAI_API_KEY", "")),
        llm_timeout_seconds=_to_float(os.getenv("LLM_TIMEOUT_SECONDS"), default=15.0, minimum=0.1),
        site_base_url=os.getenv("SITE_BASE_URL", ""),
        site_max_depth=_to_int(os.getenv("SITE_MAX_DEPTH"), default=2, minimum=0),
        site_max_pages=_to_int(os.getenv("SITE_MAX_PAGES"), default=50, minimum=1),
        site_request_delay_seconds=_to_float(
            os.getenv("SITE_REQUEST_DELAY_SECONDS"), default=1.0, minimum=0.0
        ),
        site_request_timeout_seconds=_to_float(
            os.getenv("SITE_REQUEST_TIMEOUT_SECONDS"), default=10.0, minimum=0.1
        ),
        site_user_agent=os.getenv("SITE_USER_AGENT", "kbchat-bot/1.0 (Website Content Scraper)"),
        site_exclude_patterns=_to_list(
            os.getenv("SITE_EXCLUDE_PATTERNS"), default=DEFAULT_EXCLUDE_PATTERNS
        ),
        site_remove_boilerplate=_to_bool(os.getenv("SITE_REMOVE_BOILERPLATE"), default=True),
        site_boilerplate_patterns=_to_list(
            os.getenv("SITE_BOILERPLATE_PATTERNS"), default=DEFAULT_BOILERPLATE_PATTERNS
        ),
        sync_interval_seconds=_to_int(os.getenv("SYNC_INTERVAL_SECONDS"), default=86400, minimum=60),
        sync_schedule_enabled=_to_bool(os.getenv("SYNC_SCHEDULE_ENABLED"), default=True),
        worker_api_url=os.getenv("WORKER_API_URL", "http://localhost:8000"),
        worker_sync_timeout_seconds=_to_float(
            os.getenv("WORKER_SYNC_TIMEOUT_SECONDS"), default=600.0, minimum=1.0
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
