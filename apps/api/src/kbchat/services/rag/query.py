from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
import logging

from kbchat.llm import LLMClient, complete_with_timeout
from kbchat.services.rag.embedding_client import (
    EmbeddingClient,
    EmbeddingError,
    embed_with_timeout,
)
from kbchat.services.rag.errors import DimensionMismatchError, RetrievalError
from kbchat.services.rag.types import SearchHit
from kbchat.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = (
    "Sorry, I could not retrieve relevant information to answer that right now. "
    "Please try again in a moment."
)


@dataclass(frozen=True)
class Answer:
    answer: str
    sources: list[SearchHit]
    retrieved: bool
    model: str | None = None


async def search_knowledge_base(
    store: VectorStore,
    embedding_client: EmbeddingClient,
    query_text: str,
    *,
    top_k: int = 5,
    embed_timeout_seconds: float = 10.0,
) -> list[SearchHit]:
    """Embed ``query_text`` and return the ``top_k`` most similar records.

    Timeouts propagate as ``RequestTimeoutError``; any other failure to embed
    or search raises ``RetrievalError``.
    """
    normalized_query = query_text.strip()
    if not normalized_query:
        raise ValueError("query_text must not be empty")

    try:
        query_embedding = await embed_with_timeout(
            embedding_client, normalized_query, timeout_seconds=embed_timeout_seconds
        )
    except EmbeddingError as exc:
        raise RetrievalError(f"Failed to generate query embedding: {exc}") from exc

    try:
        return await store.search(query_embedding, top_k)
    except DimensionMismatchError as exc:
        raise RetrievalError(f"Query rejected by vector store: {exc}") from exc


def select_context(
    hits: Sequence[SearchHit], *, threshold: float = 0.05, max_chunks: int = 2
) -> list[SearchHit]:
    relevant = [hit for hit in hits if hit.similarity > threshold]
    return (relevant or list(hits))[:max_chunks]


def build_context(hits: Sequence[SearchHit]) -> str:
    return "\n\n".join(hit.text for hit in hits)


async def answer_question(
    question: str,
    *,
    store: VectorStore,
    embedding_client: EmbeddingClient,
    llm_client: LLMClient,
    top_k: int = 5,
    threshold: float = 0.05,
    context_chunks: int = 2,
    embed_timeout_seconds: float = 10.0,
    completion_timeout_seconds: float = 15.0,
) -> Answer:
    try:
        hits = await search_knowledge_base(
            store,
            embedding_client,
            question,
            top_k=top_k,
            embed_timeout_seconds=embed_timeout_seconds,
        )
    except RetrievalError as exc:
        logger.error("Retrieval failed: %s", exc)
        return Answer(answer=NO_CONTEXT_ANSWER, sources=[], retrieved=False)

    context_hits = select_context(hits, threshold=threshold, max_chunks=context_chunks)
    result = await complete_with_timeout(
        llm_client,
        question.strip(),
        build_context(context_hits),
        timeout_seconds=completion_timeout_seconds,
    )
    return Answer(answer=result.answer, sources=context_hits, retrieved=True, model=result.model)
