from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

SourceKind = Literal["pdf", "website"]


@dataclass(frozen=True)
class Chunk:
    text: str
    index: int
    page: int | None = None


@dataclass(frozen=True)
class RecordMetadata:
    source: SourceKind
    chunk_index: int
    file_name: str | None = None
    url: str | None = None
    title: str | None = None
    page: int | None = None
    last_updated: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "fileName": self.file_name,
            "url": self.url,
            "title": self.title,
            "page": self.page,
            "chunkIndex": self.chunk_index,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RecordMetadata:
        file_name = payload.get("fileName")
        source = payload.get("source")
        if source not in ("pdf", "website"):
            source = "website" if payload.get("url") and not file_name else "pdf"

        page = payload.get("page")
        chunk_index = payload.get("chunkIndex", 0)
        return cls(
            source=source,
            chunk_index=int(chunk_index) if isinstance(chunk_index, (int, float)) else 0,
            file_name=file_name if isinstance(file_name, str) else None,
            url=payload.get("url") if isinstance(payload.get("url"), str) else None,
            title=payload.get("title") if isinstance(payload.get("title"), str) else None,
            page=int(page) if isinstance(page, (int, float)) and not isinstance(page, bool) else None,
            last_updated=(
                payload.get("lastUpdated") if isinstance(payload.get("lastUpdated"), str) else None
            ),
        )


@dataclass(frozen=True)
class Record:
    text: str
    embedding: list[float]
    metadata: RecordMetadata

    @property
    def dimensions(self) -> int:
        return len(self.embedding)

    def to_dict(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "embedding": self.embedding,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> Record:
        text = payload.get("text")
        embedding = payload.get("embedding")
        metadata = payload.get("metadata") or {}
        if not isinstance(text, str):
            raise ValueError("record text must be a string")
        if not isinstance(embedding, list) or not embedding:
            raise ValueError("record embedding must be a non-empty list")
        if not isinstance(metadata, dict):
            raise ValueError("record metadata must be an object")

        return cls(
            text=text,
            embedding=[float(value) for value in embedding],
            metadata=RecordMetadata.from_dict(metadata),
        )


@dataclass(frozen=True)
class PendingChunk:
    """A chunk with its metadata, waiting for an embedding."""

    text: str
    metadata: RecordMetadata

    def with_embedding(self, embedding: list[float]) -> Record:
        return Record(text=self.text, embedding=embedding, metadata=self.metadata)


@dataclass(frozen=True)
class CrawledPage:
    url: str
    title: str
    content: str
    last_updated: str
    description: str = ""
    html: str = field(default="", repr=False)


@dataclass(frozen=True)
class SearchHit:
    record: Record
    similarity: float

    @property
    def text(self) -> str:
        return self.record.text

    @property
    def metadata(self) -> RecordMetadata:
        return self.record.metadata


@dataclass(frozen=True)
class ReplaceResult:
    removed: int
    added: int


@dataclass(frozen=True)
class IngestionSummary:
    files_found: int
    files_processed: int
    files_skipped: int
    files_failed: int
    chunk_count: int


@dataclass(frozen=True)
class SyncResult:
    success: bool
    message: str
    added: int = 0
    removed: int = 0
    unchanged: bool = False
    pages_processed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "added": self.added,
            "removed": self.removed,
            "unchanged": self.unchanged,
            "pages_processed": self.pages_processed,
        }
