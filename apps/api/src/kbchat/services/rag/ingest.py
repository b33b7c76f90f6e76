from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
from pathlib import Path

from kbchat.config import Settings
from kbchat.services.rag.chunker import build_chunks
from kbchat.services.rag.embedding_client import (
    EmbeddingClient,
    EmbeddingError,
    embed_with_timeout,
)
from kbchat.services.rag.errors import ExtractionError, RequestTimeoutError
from kbchat.services.rag.extract import extract_text, list_pdf_files
from kbchat.services.rag.types import (
    CrawledPage,
    IngestionSummary,
    PendingChunk,
    Record,
    RecordMetadata,
)
from kbchat.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)


class Ingestor:
    """Turns files and crawled pages into embedded records.

    Embedding calls run ``concurrency`` at a time. A chunk whose embedding fails
    is logged and dropped; output order always follows chunk order.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        min_chunk_length: int = 0,
        concurrency: int = 5,
        embed_timeout_seconds: float = 10.0,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        if concurrency <= 0:
            raise ValueError("concurrency must be > 0")

        self._embedding_client = embedding_client
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._min_chunk_length = min_chunk_length
        self._concurrency = concurrency
        self._embed_timeout_seconds = embed_timeout_seconds

    async def ingest(self, source: Path | CrawledPage) -> list[Record]:
        if isinstance(source, CrawledPage):
            pending = self.page_chunks(source)
        else:
            pending = self.file_chunks(source)
        return await self.embed_chunks(pending)

    def file_chunks(self, path: Path) -> list[PendingChunk]:
        text = extract_text(path)
        chunks = build_chunks(
            text,
            target_size=self._chunk_size,
            overlap=self._chunk_overlap,
            min_length=self._min_chunk_length,
            paginated=path.suffix.lower() == ".pdf",
        )
        if not chunks:
            raise ExtractionError(f"No text chunks produced for {path.name}")

        return [
            PendingChunk(
                text=chunk.text,
                metadata=RecordMetadata(
                    source="pdf",
                    chunk_index=chunk.index,
                    file_name=path.name,
                    page=chunk.page,
                ),
            )
            for chunk in chunks
        ]

    def page_chunks(self, page: CrawledPage) -> list[PendingChunk]:
        if len(page.content.strip()) < self._min_chunk_length:
            return []

        chunks = build_chunks(
            page.content,
            target_size=self._chunk_size,
            overlap=self._chunk_overlap,
            min_length=self._min_chunk_length,
        )
        return [
            PendingChunk(
                text=chunk.text,
                metadata=RecordMetadata(
                    source="website",
                    chunk_index=chunk.index,
                    url=page.url,
                    title=page.title,
                    last_updated=page.last_updated,
                ),
            )
            for chunk in chunks
        ]

    def pages_to_chunks(self, pages: Sequence[CrawledPage]) -> list[PendingChunk]:
        pending: list[PendingChunk] = []
        for page in pages:
            pending.extend(self.page_chunks(page))
        return pending

    async def embed_chunks(self, pending: Sequence[PendingChunk]) -> list[Record]:
        records: list[Record] = []
        total = len(pending)

        for batch_start in range(0, total, self._concurrency):
            batch = pending[batch_start : batch_start + self._concurrency]
            results = await asyncio.gather(
                *(self._embed_one(chunk, batch_start + offset) for offset, chunk in enumerate(batch))
            )
            records.extend(record for record in results if record is not None)
            logger.debug("Embedded %d/%d chunks", min(batch_start + len(batch), total), total)

        if len(records) < total:
            logger.warning("Dropped %d of %d chunks after embedding failures", total - len(records), total)
        return records

    async def _embed_one(self, chunk: PendingChunk, position: int) -> Record | None:
        try:
            embedding = await embed_with_timeout(
                self._embedding_client,
                chunk.text,
                timeout_seconds=self._embed_timeout_seconds,
            )
        except (EmbeddingError, RequestTimeoutError) as exc:
            logger.warning("Error embedding chunk %d: %s", position + 1, exc)
            return None
        return chunk.with_embedding(embedding)


async def ingest_pdf_directory(
    store: VectorStore,
    ingestor: Ingestor,
    pdf_dir: Path,
) -> IngestionSummary:
    pdf_files = list_pdf_files(pdf_dir)
    processed = await store.processed_file_names()
    pending_files = [path for path in pdf_files if path.name not in processed]
    skipped = len(pdf_files) - len(pending_files)

    if skipped:
        logger.info("Already processed %d PDF(s); %d remaining", skipped, len(pending_files))

    files_processed = 0
    files_failed = 0
    chunk_count = 0

    for path in pending_files:
        logger.info("Processing %s", path.name)
        try:
            records = await ingestor.ingest(path)
        except ExtractionError as exc:
            logger.error("Skipping %s: %s", path.name, exc)
            files_failed += 1
            continue

        if not records:
            logger.warning("No embeddings generated for %s", path.name)
            files_failed += 1
            continue

        await store.add(records)
        files_processed += 1
        chunk_count += len(records)
        logger.info("Added %d chunks from %s", len(records), path.name)

    return IngestionSummary(
        files_found=len(pdf_files),
        files_processed=files_processed,
        files_skipped=skipped,
        files_failed=files_failed,
        chunk_count=chunk_count,
    )


def build_ingestor(settings: Settings, embedding_client: EmbeddingClient) -> Ingestor:
    return Ingestor(
        embedding_client,
        chunk_size=settings.rag_chunk_size,
        chunk_overlap=settings.rag_chunk_overlap,
        min_chunk_length=settings.rag_min_chunk_length,
        concurrency=settings.rag_embed_concurrency,
        embed_timeout_seconds=settings.embed_timeout_seconds,
    )
