from collections.abc import Iterator
import json
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient

from kbchat.config import get_settings
from kbchat.main import app, get_vector_store


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_vector_store.cache_clear()
    yield
    get_settings.cache_clear()
    get_vector_store.cache_clear()
    app.dependency_overrides.clear()


@pytest.fixture
def store_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "data" / "vectors.json"
    monkeypatch.setenv("RAG_STORE_PATH", str(path))
    monkeypatch.setenv("RAG_PDF_DIR", str(tmp_path / "no-pdfs"))
    monkeypatch.setenv("EMBED_PROVIDER", "hash")
    monkeypatch.setenv("SITE_BASE_URL", "")
    return path


@pytest.fixture
def client(store_path: Path) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


def write_store(path: Path, records: list[dict[str, Any]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(records), encoding="utf-8")


def record_payload(
    text: str,
    embedding: list[float],
    *,
    source: str = "website",
    url: str | None = None,
    file_name: str | None = None,
    chunk_index: int = 0,
) -> dict[str, Any]:
    return {
        "text": text,
        "embedding": embedding,
        "metadata": {
            "source": source,
            "url": url,
            "fileName": file_name,
            "title": None,
            "page": None,
            "chunkIndex": chunk_index,
            "lastUpdated": None,
        },
    }
