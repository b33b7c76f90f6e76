"""In-memory embedding store persisted as a JSON array of records.

Every exported operation first waits for the single lazy load, then mutates
the in-memory list in one synchronous step before awaiting the disk write, so
a concurrent ``search`` never observes a half-applied mutation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
import json
import logging
import math
import os
from pathlib import Path
from typing import Any

from kbchat.services.rag.errors import DimensionMismatchError, StoreIOError
from kbchat.services.rag.types import Record, ReplaceResult, SearchHit, SourceKind

logger = logging.getLogger(__name__)

RecordPredicate = Callable[[Record], bool]


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise DimensionMismatchError(len(a), len(b))

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


def select_top_k(
    query_embedding: Sequence[float], records: Sequence[Record], top_k: int
) -> list[SearchHit]:
    """Single pass over ``records`` keeping a descending buffer of size ``top_k``.

    A candidate displaces the current minimum only when strictly greater, so on
    equal scores the earlier record wins.
    """
    best: list[SearchHit] = []
    if top_k <= 0:
        return best

    for record in records:
        similarity = cosine_similarity(query_embedding, record.embedding)
        if len(best) == top_k:
            if similarity <= best[-1].similarity:
                continue
            best.pop()

        position = len(best)
        while position > 0 and best[position - 1].similarity < similarity:
            position -= 1
        best.insert(position, SearchHit(record=record, similarity=similarity))

    return best


class VectorStore:
    def __init__(self, path: Path) -> None:
        self._path = path
        self._records: list[Record] = []
        self._loaded = False
        self._load_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def dimensions(self) -> int | None:
        if not self._records:
            return None
        return self._records[0].dimensions

    async def wait_ready(self) -> None:
        if self._loaded:
            return
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._load())
        await asyncio.shield(self._load_task)

    async def add(self, records: Sequence[Record]) -> None:
        await self.wait_ready()
        batch = list(records)
        if not batch:
            return

        _check_dimensions(batch, expected=self.dimensions)
        self._records.extend(batch)

        await self._persist()
        logger.info("Added %d records to vector store (total=%d)", len(batch), len(self._records))

    async def search(self, query_embedding: Sequence[float], top_k: int = 5) -> list[SearchHit]:
        await self.wait_ready()
        if top_k <= 0 or not self._records:
            return []

        expected = self.dimensions
        if expected is not None and len(query_embedding) != expected:
            raise DimensionMismatchError(expected, len(query_embedding))

        return select_top_k(query_embedding, self._records, top_k)

    async def clear(self) -> None:
        await self.wait_ready()
        self._records = []
        await self._persist()
        logger.info("Vector store cleared")

    async def replace(self, predicate: RecordPredicate, new_records: Sequence[Record]) -> ReplaceResult:
        await self.wait_ready()
        incoming = list(new_records)
        kept = [record for record in self._records if not predicate(record)]
        removed = len(self._records) - len(kept)
        if removed == 0 and not incoming:
            return ReplaceResult(removed=0, added=0)

        if incoming:
            _check_dimensions(incoming, expected=kept[0].dimensions if kept else None)
        self._records = kept + incoming

        await self._persist()
        logger.info("Replaced records: removed=%d added=%d", removed, len(incoming))
        return ReplaceResult(removed=removed, added=len(incoming))

    async def remove_by_source(self, source: SourceKind) -> int:
        result = await self.replace(lambda record: record.metadata.source == source, [])
        return result.removed

    async def count(self) -> int:
        await self.wait_ready()
        return len(self._records)

    async def records_by_source(self, source: SourceKind) -> list[Record]:
        await self.wait_ready()
        return [record for record in self._records if record.metadata.source == source]

    async def processed_file_names(self) -> set[str]:
        await self.wait_ready()
        return {
            record.metadata.file_name
            for record in self._records
            if record.metadata.file_name
        }

    async def content_sources_stats(self) -> dict[str, dict[str, Any]]:
        await self.wait_ready()
        stats: dict[str, dict[str, Any]] = {}
        for record in self._records:
            metadata = record.metadata
            entry = stats.setdefault(metadata.source, {"count": 0, "urls": [], "files": []})
            entry["count"] += 1
            if metadata.url and metadata.url not in entry["urls"]:
                entry["urls"].append(metadata.url)
            if metadata.file_name and metadata.file_name not in entry["files"]:
                entry["files"].append(metadata.file_name)
        return stats

    async def _load(self) -> None:
        try:
            self._records = await asyncio.to_thread(self._read_records)
            logger.info("Loaded %d records from %s", len(self._records), self._path)
        except (OSError, ValueError) as exc:
            logger.error("Failed to load vector store %s, starting empty: %s", self._path, exc)
            self._records = []
        finally:
            self._loaded = True

    def _read_records(self) -> list[Record]:
        if not self._path.exists():
            logger.info("No vector store file at %s, starting fresh", self._path)
            return []

        payload = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(payload, list):
            raise ValueError(f"Invalid vector store payload in {self._path}: expected a list")

        records: list[Record] = []
        for position, item in enumerate(payload):
            if not isinstance(item, dict):
                logger.warning("Skipping malformed record #%d in %s", position, self._path)
                continue
            try:
                record = Record.from_dict(item)
            except ValueError as exc:
                logger.warning("Skipping malformed record #%d in %s: %s", position, self._path, exc)
                continue
            if records and record.dimensions != records[0].dimensions:
                logger.warning(
                    "Skipping record #%d in %s: dimension %d != %d",
                    position,
                    self._path,
                    record.dimensions,
                    records[0].dimensions,
                )
                continue
            records.append(record)
        return records

    async def _persist(self) -> None:
        async with self._write_lock:
            payload = [record.to_dict() for record in self._records]
            try:
                await asyncio.to_thread(self._write_payload, payload)
            except (OSError, TypeError, ValueError) as exc:
                raise StoreIOError(f"Failed to write vector store {self._path}: {exc}") from exc

    def _write_payload(self, payload: list[dict[str, Any]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
        tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp_path, self._path)


def _check_dimensions(records: Sequence[Record], *, expected: int | None) -> None:
    dimensions = expected if expected is not None else records[0].dimensions
    if dimensions == 0:
        raise ValueError("embedding vectors must not be empty")
    for record in records:
        if record.dimensions != dimensions:
            raise DimensionMismatchError(dimensions, record.dimensions)
