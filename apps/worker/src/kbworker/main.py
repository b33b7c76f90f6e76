from __future__ import annotations

import argparse
import asyncio
import logging

import httpx

from kbchat.config import Settings, configure_logging, get_settings
from kbchat.scheduler import run_forever, run_sync_once
from kbchat.services.rag.types import SyncResult

logger = logging.getLogger(__name__)


class ApiSyncTrigger:
    """Asks the running API to refresh website content.

    The API process owns the vector store file, so the worker never opens it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 600.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def update_website_content(self, *, force_update: bool = False) -> SyncResult:
        url = f"{self._base_url}/content/sync"
        payload = {"force_update": force_update}

        if self._http_client is not None:
            response = await self._http_client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                response = await client.post(url, json=payload)

        if response.status_code >= 400:
            try:
                detail = response.json().get("detail", response.text)
            except ValueError:
                detail = response.text
            return SyncResult(success=False, message=f"HTTP {response.status_code}: {detail}")

        body = response.json()
        return SyncResult(
            success=bool(body.get("success", False)),
            message=str(body.get("message", "")),
            pages_processed=int(body.get("pages_processed", 0)),
            added=int(body.get("added", 0)),
            removed=int(body.get("removed", 0)),
            unchanged=bool(body.get("unchanged", False)),
        )


def _build_trigger(settings: Settings) -> ApiSyncTrigger:
    return ApiSyncTrigger(settings.worker_api_url, timeout_seconds=settings.worker_sync_timeout_seconds)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kb-worker",
        description="Periodically ask the kbchat API to refresh website content",
    )
    parser.add_argument("--once", action="store_true", help="Run a single update and exit")
    parser.add_argument("--force", action="store_true", help="Replace website records even when unchanged")
    return parser


def main() -> None:
    configure_logging()
    args = _build_parser().parse_args()
    settings = get_settings()
    trigger = _build_trigger(settings)

    if args.once:
        result = asyncio.run(run_sync_once(trigger, force_update=args.force))
        if result is None or not result.success:
            raise SystemExit(1)
        return

    logger.info(
        "Starting content sync worker api=%s interval=%ds",
        settings.worker_api_url,
        settings.sync_interval_seconds,
    )
    try:
        asyncio.run(run_forever(trigger, interval_seconds=settings.sync_interval_seconds))
    except KeyboardInterrupt:
        logger.info("Content sync worker stopped")


if __name__ == "__main__":
    main()
