from pathlib import Path
import sys

import pytest

from kbchat import ingest as ingest_cli
from kbchat.services.rag.types import IngestionSummary, SyncResult


def test_ingest_cli_reports_summary(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.delenv("RAG_CHUNK_OVERLAP", raising=False)
    captured: dict[str, object] = {}

    async def fake_run_ingest(**kwargs: object) -> IngestionSummary:
        captured.update(kwargs)
        return IngestionSummary(
            files_found=3, files_processed=2, files_skipped=1, files_failed=0, chunk_count=14
        )

    monkeypatch.setattr(ingest_cli, "run_ingest", fake_run_ingest)
    monkeypatch.setattr(
        sys,
        "argv",
        ["kb-ingest", "--pdf-dir", str(tmp_path), "--store-path", str(tmp_path / "v.json"), "--chunk-size", "500"],
    )

    ingest_cli.main()

    out = capsys.readouterr().out
    assert "[kb-ingest] completed found=3 processed=2 skipped=1 failed=0 chunks=14" in out
    assert captured["pdf_dir"] == tmp_path
    assert captured["chunk_size"] == 500
    assert captured["chunk_overlap"] == 200


def test_ingest_cli_exits_non_zero_on_failure(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("EMBED_PROVIDER", "hash")
    monkeypatch.setattr(
        sys,
        "argv",
        ["kb-ingest", "--pdf-dir", str(tmp_path / "missing"), "--store-path", str(tmp_path / "v.json")],
    )

    with pytest.raises(SystemExit) as excinfo:
        ingest_cli.main()

    assert excinfo.value.code == 1
    assert "[kb-ingest] failed: PDF directory not found" in capsys.readouterr().err


def test_sync_cli_fails_on_unsuccessful_result(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    forced: list[bool] = []

    async def fake_run_sync(*, store_path: Path, force_update: bool) -> SyncResult:
        del store_path
        forced.append(force_update)
        return SyncResult(success=False, message="No content scraped")

    monkeypatch.setattr(ingest_cli, "run_sync", fake_run_sync)
    monkeypatch.setattr(sys, "argv", ["kb-sync", "--force"])

    with pytest.raises(SystemExit) as excinfo:
        ingest_cli.sync_main()

    assert excinfo.value.code == 1
    assert forced == [True]
    assert "No content scraped" in capsys.readouterr().err
