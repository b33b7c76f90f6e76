from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from kbchat.services.rag.types import SyncResult

logger = logging.getLogger(__name__)


class WebsiteUpdater(Protocol):
    async def update_website_content(self, *, force_update: bool = False) -> SyncResult: ...


async def run_sync_once(updater: WebsiteUpdater, *, force_update: bool = False) -> SyncResult | None:
    try:
        result = await updater.update_website_content(force_update=force_update)
    except Exception:
        logger.exception("Scheduled website content update failed")
        return None

    if result.success:
        logger.info(
            "Scheduled update finished: %s (pages=%d added=%d removed=%d)",
            result.message,
            result.pages_processed,
            result.added,
            result.removed,
        )
    else:
        logger.warning("Scheduled update did not complete: %s", result.message)
    return result


async def run_forever(
    updater: WebsiteUpdater,
    *,
    interval_seconds: float,
    stop_event: asyncio.Event | None = None,
    run_immediately: bool = True,
) -> int:
    """Run ``update_website_content`` every ``interval_seconds`` until stopped.

    Returns the number of runs performed.
    """
    stop = stop_event or asyncio.Event()
    runs = 0

    if not run_immediately and await _wait_for_stop(stop, interval_seconds):
        return runs

    while not stop.is_set():
        await run_sync_once(updater)
        runs += 1
        if await _wait_for_stop(stop, interval_seconds):
            break
    return runs


async def _wait_for_stop(stop: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(stop.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return False
    return True
