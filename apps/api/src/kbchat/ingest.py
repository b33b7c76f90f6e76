from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import sys

from kbchat.config import configure_logging, get_settings
from kbchat.services.rag.embedding_client import build_embedding_client
from kbchat.services.rag.ingest import Ingestor, ingest_pdf_directory
from kbchat.services.rag.sync import build_synchronizer
from kbchat.services.rag.types import IngestionSummary, SyncResult
from kbchat.services.rag.vector_store import VectorStore


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="kb-ingest",
        description="Embed PDF documents into the local knowledge base",
    )
    parser.add_argument(
        "--pdf-dir",
        default=settings.rag_pdf_dir,
        help="Directory containing .pdf documents",
    )
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.rag_chunk_size,
        help="Chunk size in characters",
    )
    parser.add_argument(
        "--chunk-overlap",
        type=int,
        default=settings.rag_chunk_overlap,
        help="Chunk overlap in characters",
    )
    parser.add_argument(
        "--store-path",
        default=settings.rag_store_path,
        help="JSON file holding the persisted vector store",
    )
    return parser


def _build_sync_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="kb-sync",
        description="Crawl the configured website and refresh its knowledge base records",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Replace website records even when no change is detected",
    )
    parser.add_argument(
        "--store-path",
        default=settings.rag_store_path,
        help="JSON file holding the persisted vector store",
    )
    return parser


async def run_ingest(
    *,
    pdf_dir: Path,
    store_path: Path,
    chunk_size: int,
    chunk_overlap: int,
) -> IngestionSummary:
    settings = get_settings()
    store = VectorStore(store_path)
    await store.wait_ready()

    ingestor = Ingestor(
        build_embedding_client(settings),
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        min_chunk_length=settings.rag_min_chunk_length,
        concurrency=settings.rag_embed_concurrency,
        embed_timeout_seconds=settings.embed_timeout_seconds,
    )
    return await ingest_pdf_directory(store, ingestor, pdf_dir)


async def run_sync(*, store_path: Path, force_update: bool) -> SyncResult:
    settings = get_settings()
    store = VectorStore(store_path)
    await store.wait_ready()

    synchronizer = build_synchronizer(settings, store, build_embedding_client(settings))
    return await synchronizer.update_website_content(force_update=force_update)


def main() -> None:
    configure_logging()
    args = _build_parser().parse_args()

    try:
        summary = asyncio.run(
            run_ingest(
                pdf_dir=Path(args.pdf_dir),
                store_path=Path(args.store_path),
                chunk_size=args.chunk_size,
                chunk_overlap=args.chunk_overlap,
            )
        )
    except Exception as exc:
        print(f"[kb-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[kb-ingest] completed "
        f"found={summary.files_found} "
        f"processed={summary.files_processed} "
        f"skipped={summary.files_skipped} "
        f"failed={summary.files_failed} "
        f"chunks={summary.chunk_count} "
        f"store_path={args.store_path}",
        flush=True,
    )


def sync_main() -> None:
    configure_logging()
    args = _build_sync_parser().parse_args()

    try:
        result = asyncio.run(run_sync(store_path=Path(args.store_path), force_update=args.force))
    except Exception as exc:
        print(f"[kb-sync] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    if not result.success:
        print(f"[kb-sync] failed: {result.message}", file=sys.stderr, flush=True)
        raise SystemExit(1)

    print(
        "[kb-sync] completed "
        f"message={result.message!r} "
        f"pages={result.pages_processed} "
        f"added={result.added} "
        f"removed={result.removed}",
        flush=True,
    )


if __name__ == "__main__":
    main()
