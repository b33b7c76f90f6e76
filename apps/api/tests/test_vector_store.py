import asyncio
import json
from pathlib import Path

import pytest

from kbchat.services.rag.embedder import deterministic_embedding
from kbchat.services.rag.errors import DimensionMismatchError
from kbchat.services.rag.types import Record, RecordMetadata
from kbchat.services.rag.vector_store import VectorStore, cosine_similarity, select_top_k


def _record(
    text: str,
    embedding: list[float],
    *,
    source: str = "website",
    url: str | None = None,
    file_name: str | None = None,
) -> Record:
    return Record(
        text=text,
        embedding=embedding,
        metadata=RecordMetadata(source=source, chunk_index=0, url=url, file_name=file_name),
    )


def test_cosine_similarity_identities() -> None:
    assert cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0, 3.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0


def test_cosine_similarity_rejects_length_mismatch() -> None:
    with pytest.raises(DimensionMismatchError):
        cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


def test_top_k_selection_matches_stable_full_sort() -> None:
    records = [
        _record(f"text {index}", deterministic_embedding(f"text {index % 7}", dimensions=16))
        for index in range(30)
    ]
    query = deterministic_embedding("text 3", dimensions=16)

    hits = select_top_k(query, records, 5)

    expected = sorted(
        records,
        key=lambda record: -cosine_similarity(query, record.embedding),
    )[:5]
    assert [hit.record for hit in hits] == expected
    similarities = [hit.similarity for hit in hits]
    assert similarities == sorted(similarities, reverse=True)


@pytest.mark.asyncio
async def test_search_ranks_records_by_similarity(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "vectors.json")
    await store.add(
        [
            _record("first", [1.0, 0.0, 0.0]),
            _record("second", [0.0, 1.0, 0.0]),
            _record("third", [0.9, 0.1, 0.0]),
        ]
    )

    hits = await store.search([1.0, 0.0, 0.0], 2)

    assert [hit.text for hit in hits] == ["first", "third"]
    assert hits[0].similarity == pytest.approx(1.0)
    assert hits[1].similarity == pytest.approx(0.9939, abs=1e-3)


@pytest.mark.asyncio
async def test_search_on_empty_store_or_non_positive_k_returns_nothing(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "vectors.json")

    assert await store.search([1.0, 0.0], 5) == []

    await store.add([_record("only", [1.0, 0.0])])
    assert await store.search([1.0, 0.0], 0) == []


@pytest.mark.asyncio
async def test_adding_empty_batch_does_not_touch_disk(tmp_path: Path) -> None:
    path = tmp_path / "vectors.json"
    store = VectorStore(path)

    await store.add([])

    assert await store.count() == 0
    assert not path.exists()


@pytest.mark.asyncio
async def test_records_survive_reload(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "vectors.json"
    store = VectorStore(path)
    await store.add(
        [
            _record("alpha", [1.0, 0.0], source="pdf", file_name="guide.pdf"),
            _record("beta", [0.0, 1.0], url="https://example.com/about"),
        ]
    )

    reloaded = VectorStore(path)

    assert await reloaded.count() == 2
    hits = await reloaded.search([0.0, 1.0], 1)
    assert hits[0].text == "beta"
    assert hits[0].metadata.url == "https://example.com/about"

    payload = json.loads(path.read_text(encoding="utf-8"))
    assert payload[0]["metadata"]["fileName"] == "guide.pdf"
    assert payload[0]["metadata"]["source"] == "pdf"


@pytest.mark.asyncio
async def test_clear_persists_empty_store(tmp_path: Path) -> None:
    path = tmp_path / "vectors.json"
    store = VectorStore(path)
    await store.add([_record("alpha", [1.0, 0.0])])

    await store.clear()

    assert await store.count() == 0
    assert json.loads(path.read_text(encoding="utf-8")) == []
    assert await VectorStore(path).count() == 0


@pytest.mark.asyncio
async def test_mismatched_dimensions_are_rejected_without_mutation(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "vectors.json")
    await store.add([_record("alpha", [1.0, 0.0, 0.0])])

    with pytest.raises(DimensionMismatchError):
        await store.add([_record("ok", [0.0, 1.0, 0.0]), _record("bad", [1.0, 0.0])])

    with pytest.raises(DimensionMismatchError):
        await store.search([1.0, 0.0], 3)

    assert await store.count() == 1
    assert store.dimensions == 3


@pytest.mark.asyncio
async def test_replace_swaps_matching_records_only(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "vectors.json")
    await store.add(
        [
            _record("manual", [1.0, 0.0], source="pdf", file_name="manual.pdf"),
            _record("old page", [0.0, 1.0], url="https://example.com/old"),
        ]
    )

    result = await store.replace(
        lambda record: record.metadata.source == "website",
        [
            _record("new page", [0.5, 0.5], url="https://example.com/new"),
            _record("other page", [0.2, 0.8], url="https://example.com/other"),
        ],
    )

    assert (result.removed, result.added) == (1, 2)
    assert [record.text for record in await store.records_by_source("pdf")] == ["manual"]
    assert [record.text for record in await store.records_by_source("website")] == [
        "new page",
        "other page",
    ]


@pytest.mark.asyncio
async def test_replace_without_changes_skips_write(tmp_path: Path) -> None:
    path = tmp_path / "vectors.json"
    store = VectorStore(path)

    result = await store.replace(lambda record: True, [])

    assert (result.removed, result.added) == (0, 0)
    assert not path.exists()


@pytest.mark.asyncio
async def test_remove_by_source_and_stats(tmp_path: Path) -> None:
    store = VectorStore(tmp_path / "vectors.json")
    await store.add(
        [
            _record("a", [1.0, 0.0], source="pdf", file_name="a.pdf"),
            _record("a2", [1.0, 0.1], source="pdf", file_name="a.pdf"),
            _record("home", [0.0, 1.0], url="https://example.com/"),
        ]
    )

    stats = await store.content_sources_stats()
    assert stats["pdf"] == {"count": 2, "urls": [], "files": ["a.pdf"]}
    assert stats["website"] == {"count": 1, "urls": ["https://example.com/"], "files": []}
    assert await store.processed_file_names() == {"a.pdf"}

    removed = await store.remove_by_source("pdf")

    assert removed == 2
    assert await store.count() == 1
    assert await store.processed_file_names() == set()


@pytest.mark.asyncio
async def test_corrupt_store_file_loads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "vectors.json"
    path.write_text("{not json", encoding="utf-8")
    store = VectorStore(path)

    assert await store.count() == 0

    await store.add([_record("fresh", [1.0, 0.0])])
    assert await VectorStore(path).count() == 1


@pytest.mark.asyncio
async def test_malformed_and_inconsistent_records_are_skipped_on_load(tmp_path: Path) -> None:
    path = tmp_path / "vectors.json"
    path.write_text(
        json.dumps(
            [
                {"text": "good", "embedding": [1.0, 0.0], "metadata": {"source": "website"}},
                {"text": "no vector", "metadata": {}},
                "not a record",
                {"text": "wrong size", "embedding": [1.0, 0.0, 0.0], "metadata": {}},
                {"text": "legacy", "embedding": [0.0, 1.0], "metadata": {"fileName": "x.pdf"}},
            ]
        ),
        encoding="utf-8",
    )

    store = VectorStore(path)

    assert await store.count() == 2
    legacy = await store.records_by_source("pdf")
    assert [record.text for record in legacy] == ["legacy"]


@pytest.mark.asyncio
async def test_concurrent_callers_share_a_single_load(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "vectors.json"
    path.write_text(
        json.dumps([{"text": "seed", "embedding": [1.0, 0.0], "metadata": {"source": "website"}}]),
        encoding="utf-8",
    )
    store = VectorStore(path)
    original_read = store._read_records
    calls: list[int] = []

    def counting_read() -> list[Record]:
        calls.append(1)
        return original_read()

    monkeypatch.setattr(store, "_read_records", counting_read)

    counts, hits, _ = await asyncio.gather(
        store.count(),
        store.search([1.0, 0.0], 1),
        store.wait_ready(),
    )

    assert calls == [1]
    assert counts == 1
    assert hits[0].text == "seed"
