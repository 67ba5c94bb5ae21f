"""Recurring re-validation of unavailable media and cleanup of watched media."""

from __future__ import annotations

import asyncio
import logging
import random
from contextlib import suppress
from typing import TYPE_CHECKING

from ..utils import is_stale
from .media_store import MediaStore

if TYPE_CHECKING:  # pragma: no cover - import cycle guard
    from .availability import AvailabilityService

logger = logging.getLogger(__name__)


class RecheckScheduler:
    """Background loop re-probing items whose last verdict was negative."""

    def __init__(
        self,
        service: "AvailabilityService",
        store: MediaStore,
        *,
        interval_seconds: float = 86_400,
        startup_delay_seconds: float = 60,
        pacing_seconds: float = 1.0,
        jitter_seconds: float = 0.0,
        cleanup_watched: bool = True,
    ):
        self._service = service
        self._store = store
        self._interval = interval_seconds
        self._startup_delay = startup_delay_seconds
        self._pacing = pacing_seconds
        self._jitter = jitter_seconds
        self._cleanup_watched = cleanup_watched
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()
        self._pass_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Launch the loop once; later calls while it runs do nothing."""

        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "Background checker started (%ss interval, first pass in %ss)",
            self._interval,
            self._startup_delay,
        )

    async def stop(self, *, graceful: bool = False) -> None:
        """Stop the loop.

        With ``graceful`` the item being probed is allowed to finish and the
        pass ends before the next one; otherwise the loop task is cancelled.
        """

        if self._task is None:
            return
        self._stopping.set()
        if not graceful:
            self._task.cancel()
        with suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        if await self._pause(self._startup_delay):
            return
        while not self._stopping.is_set():
            try:
                await self.run_pass()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Scheduled recheck failed: %s", exc)
            if await self._pause(self._interval):
                return

    async def run_pass(self) -> None:
        await self.recheck_unavailable()
        if self._cleanup_watched and not self._stopping.is_set():
            await self.cleanup_watched()

    async def recheck_unavailable(self) -> int:
        """Re-probe unavailable items not checked within the interval."""

        async with self._pass_lock:
            candidates = await self._store.get_by_availability(False)
            due = [
                item
                for item in candidates
                if is_stale(item.last_stream_check, self._interval)
            ]
            logger.info(
                "Starting recheck of unavailable media: %d due of %d",
                len(due),
                len(candidates),
            )

            checked = 0
            for index, item in enumerate(due):
                if self._stopping.is_set():
                    logger.info("Recheck interrupted by shutdown")
                    break
                try:
                    await self._service.check_and_record(item)
                except Exception:
                    logger.exception("Recheck failed for %s", item.title)
                else:
                    checked += 1
                if index < len(due) - 1 and await self._pause(self._pacing_delay()):
                    break

            logger.info("Recheck complete: %d items checked", checked)
            return checked

    async def cleanup_watched(self) -> int:
        """Delete watched movies and series whose episodes are all watched."""

        removed = 0
        for movie in await self._store.get_watched_by_type("movie"):
            if await self._store.delete_media(movie.id):
                removed += 1
                logger.info("Removed watched movie: %s", movie.title)

        for series in await self._store.get_by_type("series"):
            status = await self._store.episodes_watched_status(series.id)
            if not status.all_watched:
                continue
            if await self._store.delete_media(series.id):
                removed += 1
                logger.info(
                    "Removed fully watched series: %s (%d episodes)",
                    series.title,
                    status.total,
                )
        return removed

    def _pacing_delay(self) -> float:
        if self._jitter <= 0:
            return self._pacing
        return self._pacing + random.uniform(0, self._jitter)

    async def _pause(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if shutdown was requested."""

        if seconds <= 0:
            return self._stopping.is_set()
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        return self._stopping.is_set()
