import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from functools import lru_cache
import logging
from pathlib import Path
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from kbchat.config import Settings, get_settings
from kbchat.llm import LLMClient, LLMClientError, build_llm_client
from kbchat.scheduler import run_forever
from kbchat.services.rag.embedding_client import EmbeddingClient, build_embedding_client
from kbchat.services.rag.errors import RequestTimeoutError, RetrievalError, StoreIOError
from kbchat.services.rag.ingest import build_ingestor, ingest_pdf_directory
from kbchat.services.rag.query import answer_question, search_knowledge_base
from kbchat.services.rag.sync import ContentSynchronizer, build_synchronizer
from kbchat.services.rag.types import SearchHit
from kbchat.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

TIMEOUT_DETAIL = "Request took too long. Please try a shorter question."


async def _ingest_pdfs_on_startup(store: VectorStore, settings: Settings) -> None:
    pdf_dir = Path(settings.rag_pdf_dir)
    if not pdf_dir.is_dir():
        logger.info("PDF directory %s not found; skipping startup ingestion", pdf_dir)
        return

    ingestor = build_ingestor(settings, build_embedding_client(settings))
    try:
        summary = await ingest_pdf_directory(store, ingestor, pdf_dir)
    except (OSError, StoreIOError):
        logger.exception("Startup PDF ingestion from %s failed", pdf_dir)
        return

    logger.info(
        "Startup PDF ingestion: found=%d processed=%d skipped=%d failed=%d chunks=%d",
        summary.files_found,
        summary.files_processed,
        summary.files_skipped,
        summary.files_failed,
        summary.chunk_count,
    )


def _start_sync_schedule(store: VectorStore, settings: Settings) -> asyncio.Task[int] | None:
    if not settings.sync_schedule_enabled or not settings.site_base_url:
        logger.info("Scheduled website sync disabled")
        return None

    synchronizer = build_synchronizer(settings, store, build_embedding_client(settings))
    logger.info("Scheduling website sync every %ds", settings.sync_interval_seconds)
    return asyncio.create_task(
        run_forever(
            synchronizer,
            interval_seconds=settings.sync_interval_seconds,
            run_immediately=False,
        )
    )


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    store = get_vector_store()
    await store.wait_ready()

    if settings.rag_ingest_on_startup:
        await _ingest_pdfs_on_startup(store, settings)
    logger.info("Knowledge base ready with %d records from %s", await store.count(), store.path)

    sync_task = _start_sync_schedule(store, settings)
    try:
        yield
    finally:
        if sync_task is not None:
            sync_task.cancel()
            with suppress(asyncio.CancelledError):
                await sync_task


app = FastAPI(title="kbchat Retrieval Assistant API", version="0.1.0", lifespan=lifespan)


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(default="", max_length=4000)


class SyncRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    force_update: bool = False


@lru_cache
def get_vector_store() -> VectorStore:
    return VectorStore(Path(get_settings().rag_store_path))


def get_embedding_client() -> EmbeddingClient:
    return build_embedding_client(get_settings())


def get_llm_client() -> LLMClient:
    return build_llm_client(get_settings())


def get_synchronizer(
    store: Annotated[VectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
) -> ContentSynchronizer:
    return build_synchronizer(get_settings(), store, embedding_client)


def _hit_payload(hit: SearchHit) -> dict[str, Any]:
    return {
        "text": hit.text,
        "score": round(hit.similarity, 6),
        "metadata": hit.metadata.to_dict(),
    }


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/status")
async def status(store: Annotated[VectorStore, Depends(get_vector_store)]) -> dict[str, Any]:
    return {"document_count": await store.count(), "status": "ready"}


@app.get("/rag/search")
async def rag_search(
    q: str,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    k: int = 5,
) -> list[dict[str, Any]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    settings = get_settings()
    try:
        hits = await search_knowledge_base(
            store,
            embedding_client,
            q,
            top_k=max(1, min(k, 20)),
            embed_timeout_seconds=settings.embed_timeout_seconds,
        )
    except RequestTimeoutError as exc:
        raise HTTPException(status_code=504, detail=TIMEOUT_DETAIL) from exc
    except RetrievalError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    return [_hit_payload(hit) for hit in hits]


@app.post("/chat")
async def chat(
    request: ChatRequest,
    store: Annotated[VectorStore, Depends(get_vector_store)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any]:
    message = request.message.strip()
    if not message:
        raise HTTPException(status_code=400, detail="Message is required")

    settings = get_settings()
    try:
        answer = await answer_question(
            message,
            store=store,
            embedding_client=embedding_client,
            llm_client=llm_client,
            top_k=settings.rag_top_k,
            threshold=settings.rag_similarity_threshold,
            context_chunks=settings.rag_context_chunks,
            embed_timeout_seconds=settings.embed_timeout_seconds,
            completion_timeout_seconds=settings.llm_timeout_seconds,
        )
    except RequestTimeoutError as exc:
        logger.warning("Chat request timed out: %s", exc)
        raise HTTPException(status_code=504, detail=TIMEOUT_DETAIL) from exc
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to generate response: {exc}") from exc

    return {
        "response": answer.answer,
        "retrieved": answer.retrieved,
        "model": answer.model,
        "sources": [_hit_payload(hit) for hit in answer.sources],
    }


@app.post("/content/sync")
async def sync_content(
    synchronizer: Annotated[ContentSynchronizer, Depends(get_synchronizer)],
    request: SyncRequest | None = None,
) -> dict[str, Any]:
    force_update = request.force_update if request is not None else False
    logger.info("Manual website content update requested (force=%s)", force_update)

    try:
        result = await synchronizer.update_website_content(force_update=force_update)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreIOError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    return result.to_dict()


@app.get("/content/sources")
async def content_sources(store: Annotated[VectorStore, Depends(get_vector_store)]) -> dict[str, Any]:
    stats = await store.content_sources_stats()
    return {
        "total_documents": await store.count(),
        "website_documents": stats.get("website", {}).get("count", 0),
        "pdf_documents": stats.get("pdf", {}).get("count", 0),
        "sources": stats,
    }


@app.delete("/rag/clear")
async def clear_knowledge_base(store: Annotated[VectorStore, Depends(get_vector_store)]) -> dict[str, str]:
    try:
        await store.clear()
    except StoreIOError as exc:
        raise HTTPException(status_code=500, detail="Failed to clear knowledge base") from exc
    return {"message": "Knowledge base cleared successfully"}


def run() -> None:
    import uvicorn

    uvicorn.run("kbchat.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
