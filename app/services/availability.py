"""Entry points deciding, recording and re-validating stream availability."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Iterable

from ..config import Settings
from ..db_models import MediaRecord, User
from ..exceptions import ConfigurationError
from ..models import AvailabilityVerdict
from ..utils import is_stale
from .media_store import MediaStore
from .notifications import NotificationDispatcher
from .probe import StreamProbe
from .scheduler import RecheckScheduler

logger = logging.getLogger(__name__)

NO_AUTH_KEY = "Owner has no Stremio auth key configured"


class AvailabilityService:
    """Coordinates probing, verdict persistence and background rechecks."""

    def __init__(
        self,
        settings: Settings,
        store: MediaStore,
        probe: StreamProbe,
        notifier: NotificationDispatcher | None = None,
    ):
        self._settings = settings
        self._store = store
        self._probe = probe
        self._notifier = notifier
        self._tasks: set[asyncio.Task[None]] = set()
        self._scheduler = RecheckScheduler(
            self,
            store,
            interval_seconds=settings.recheck_interval_seconds,
            startup_delay_seconds=settings.recheck_startup_delay_seconds,
            pacing_seconds=settings.recheck_pacing_seconds,
            jitter_seconds=settings.recheck_jitter_seconds,
            cleanup_watched=settings.cleanup_watched,
        )

    @property
    def scheduler(self) -> RecheckScheduler:
        return self._scheduler

    def start_background_checker(self) -> None:
        """Start the recurring recheck loop; repeated calls are no-ops."""

        self._scheduler.start()

    async def stop(self) -> None:
        """Stop the recheck loop and cancel outstanding background checks."""

        await self._scheduler.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    async def check_availability(self, item: MediaRecord) -> AvailabilityVerdict:
        """Probe the owner's addons for ``item`` without persisting anything."""

        try:
            owner = await self._load_owner(item)
        except ConfigurationError as exc:
            logger.info("%s: %s", exc.message, item.title)
            return AvailabilityVerdict.unavailable(exc.message)

        return await self._probe.probe(
            item,
            owner.stremio_auth_key or "",
            owner.selected_addons,
            owner.filter_preferences,
        )

    async def check_and_record(
        self, item: MediaRecord, *, notify: bool = False
    ) -> tuple[AvailabilityVerdict, MediaRecord]:
        """Probe ``item``, store the verdict and optionally notify on the result."""

        was_available = bool(item.streams_available)
        verdict = await self.check_availability(item)
        record = await self._store.record_verdict(item.id, verdict)

        if record.streams_available:
            logger.info(
                "Streams available for: %s (%d streams)", record.title, record.stream_count
            )
        else:
            logger.info(
                "No streams found for: %s (%s)",
                record.title,
                verdict.reason or "no matching streams",
            )

        if notify and self._notifier is not None:
            if record.streams_available and not was_available:
                await self._notifier.on_available(record)
            elif not record.streams_available:
                owner = await self._store.get_user(record.user_id) if record.user_id else None
                preferences = owner.filter_preferences if owner is not None else None
                await self._notifier.on_unavailable(record, preferences)
        return verdict, record

    def schedule_check(self, item: MediaRecord, *, notify: bool = True) -> None:
        """Run a first check for a newly registered item in the background."""

        self._spawn(
            self.check_and_record(item, notify=notify),
            f"initial check for {item.title}",
        )

    def schedule_reverify(self, items: Iterable[MediaRecord]) -> list[MediaRecord]:
        """Reprobe served items whose verdict is older than the freshness window.

        Returns the items that were queued. The caller does not wait for them.
        """

        stale = [
            item
            for item in items
            if is_stale(item.last_stream_check, self._settings.freshness_interval_seconds)
        ]
        if stale:
            logger.info("Triggering background re-verification for %d items", len(stale))
            self._spawn(self._reverify(stale), "freshness re-verification")
        return stale

    async def _reverify(self, items: list[MediaRecord]) -> None:
        for index, item in enumerate(items):
            try:
                await self.check_and_record(item)
            except Exception:  # pragma: no cover - background safety net
                logger.exception("Re-verification failed for %s", item.title)
            if index < len(items) - 1:
                await asyncio.sleep(self._settings.reverify_pacing_seconds)
        logger.info("Background re-verification complete")

    async def _load_owner(self, item: MediaRecord) -> User:
        owner = await self._store.get_user(item.user_id) if item.user_id else None
        if owner is None or not owner.stremio_auth_key:
            raise ConfigurationError(NO_AUTH_KEY)
        return owner

    def _spawn(self, coroutine: Awaitable[object], label: str) -> None:
        async def _runner() -> None:
            try:
                await coroutine
            except asyncio.CancelledError:
                raise
            except Exception:  # pragma: no cover - background safety net
                logger.exception("Background task failed: %s", label)

        task = asyncio.create_task(_runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_for_background(self) -> None:
        """Wait until every queued background check has finished."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
