"""Cleaner: dedupe the store, drop rows for vanished files, compact."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from reencoder.exceptions import FileError, NotFoundError, ReencoderError
from reencoder.services.reports import CleanReport, FileStatus, ProgressEvent, Stage

if TYPE_CHECKING:
    from reencoder.services.reports import ProgressCallback
    from reencoder.services.state_store import StateStore

__all__ = [
    "Cleaner",
]

logger = logging.getLogger(__name__)


class Cleaner:
    """Maintenance pass over a StateStore."""

    def __init__(self, store: StateStore, max_workers: int = 16) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._store = store
        self._max_workers = max_workers

    async def clean(
        self,
        *,
        cancel: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> CleanReport:
        """Dedupe, prune missing files, then VACUUM.

        Dedupe and compact failures raise StoreIOError; per-row removal
        failures are collected in the report. Compaction still runs after a
        cancelled prune.
        """
        report = CleanReport()
        report.deduplicated = await self._store.dedupe()

        paths = await self._store.all_paths()
        slots = asyncio.Semaphore(self._max_workers)
        dispatched = 0
        async with asyncio.TaskGroup() as tg:
            for path in paths:
                await slots.acquire()
                if cancel is not None and cancel.is_set():
                    slots.release()
                    break
                tg.create_task(self._prune_slot(path, report, slots, progress))
                dispatched += 1
        report.cancelled = len(paths) - dispatched

        await self._store.compact()
        report.compacted = True
        logger.info("%s", report.summary())
        return report

    async def _prune_slot(
        self,
        path: str,
        report: CleanReport,
        slots: asyncio.Semaphore,
        progress: ProgressCallback | None,
    ) -> None:
        try:
            status = await self._prune(path, report)
        finally:
            slots.release()
        if status is not None and progress is not None:
            progress(ProgressEvent(stage=Stage.CLEAN, path=path, status=status))

    async def _prune(self, path: str, report: CleanReport) -> FileStatus | None:
        if await asyncio.to_thread(os.path.exists, path):
            return None
        try:
            await self._store.remove(path)
        except NotFoundError:
            logger.debug("Row for %s already removed", path)
            return None
        except ReencoderError as exc:
            error = FileError(path=path, message=str(exc))
            report.errors.append(error)
            logger.warning("%s", error)
            return FileStatus.ERROR
        report.removed += 1
        logger.debug("Removed missing file %s from store", path)
        return FileStatus.REMOVED
