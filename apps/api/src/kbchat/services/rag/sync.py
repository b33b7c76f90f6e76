from __future__ import annotations

from collections.abc import Iterable, Sequence
import hashlib
import logging

import httpx

from kbchat.config import Settings
from kbchat.services.rag.crawler import CrawlSettings, WebsiteCrawler
from kbchat.services.rag.embedding_client import EmbeddingClient
from kbchat.services.rag.ingest import Ingestor, build_ingestor
from kbchat.services.rag.types import PendingChunk, Record, SourceKind, SyncResult
from kbchat.services.rag.vector_store import VectorStore

logger = logging.getLogger(__name__)


def content_fingerprint(url: str | None, text: str) -> str:
    return hashlib.md5(f"{url or ''}:{text}".encode("utf-8")).hexdigest()


def _fingerprints(items: Iterable[Record | PendingChunk]) -> set[str]:
    return {content_fingerprint(item.metadata.url, item.text) for item in items}


def detect_changes(current: Sequence[Record], fresh: Sequence[PendingChunk]) -> bool:
    current_hashes = _fingerprints(current)
    fresh_hashes = _fingerprints(fresh)
    has_new_content = not fresh_hashes <= current_hashes
    has_removed_content = not current_hashes <= fresh_hashes

    if has_new_content or has_removed_content:
        logger.info(
            "Changes detected: new_content=%s removed_content=%s",
            has_new_content,
            has_removed_content,
        )
    return has_new_content or has_removed_content


class ContentSynchronizer:
    """Keeps one source kind of the store in step with freshly crawled content.

    Any detected change replaces every record of that kind; unchanged content
    leaves the store untouched.
    """

    def __init__(
        self,
        store: VectorStore,
        ingestor: Ingestor,
        *,
        crawler: WebsiteCrawler | None = None,
        source: SourceKind = "website",
    ) -> None:
        self._store = store
        self._ingestor = ingestor
        self._crawler = crawler
        self._source = source

    async def sync(
        self,
        fresh_chunks: Sequence[PendingChunk],
        *,
        force_update: bool = False,
        pages_processed: int = 0,
    ) -> SyncResult:
        current = await self._store.records_by_source(self._source)
        logger.info("Found %d existing %s records", len(current), self._source)

        if not force_update and not detect_changes(current, fresh_chunks):
            logger.info("No changes detected in %s content", self._source)
            return SyncResult(
                success=True,
                message="No changes detected",
                unchanged=True,
                pages_processed=pages_processed,
            )

        records = await self._ingestor.embed_chunks(fresh_chunks)
        if fresh_chunks and not records:
            logger.error("Every embedding failed; keeping existing %s records", self._source)
            return SyncResult(
                success=False,
                message="No embeddings generated",
                pages_processed=pages_processed,
            )

        source = self._source
        result = await self._store.replace(lambda record: record.metadata.source == source, records)
        logger.info("Synchronized %s content: removed=%d added=%d", source, result.removed, result.added)
        return SyncResult(
            success=True,
            message=f"{source.capitalize()} content updated successfully",
            added=result.added,
            removed=result.removed,
            pages_processed=pages_processed,
        )

    async def update_website_content(self, *, force_update: bool = False) -> SyncResult:
        if self._crawler is None:
            raise ValueError("A crawler is required to update website content")

        pages = await self._crawler.crawl()
        if not pages:
            logger.warning("No website content crawled")
            return SyncResult(success=False, message="No content scraped")

        fresh_chunks = self._ingestor.pages_to_chunks(pages)
        logger.info("Crawled %d pages into %d chunks", len(pages), len(fresh_chunks))
        if not fresh_chunks:
            return SyncResult(
                success=False,
                message="No chunks generated",
                pages_processed=len(pages),
            )

        result = await self.sync(fresh_chunks, force_update=force_update, pages_processed=len(pages))
        logger.info("Crawl stats: %s", self._crawler.stats())
        return result


def build_synchronizer(
    settings: Settings,
    store: VectorStore,
    embedding_client: EmbeddingClient,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> ContentSynchronizer:
    return ContentSynchronizer(
        store,
        build_ingestor(settings, embedding_client),
        crawler=WebsiteCrawler(CrawlSettings.from_settings(settings), http_client=http_client),
    )
