"""Scheduler: run the external transform over pending files.

Architecture:
- The pending set is snapshotted once at the start of a run; files that
  become pending mid-run are left for the next run.
- An ``asyncio.Semaphore`` with ``max_workers`` permits gates dispatch. The
  driver loop blocks on a free slot, then checks the cancel event before
  starting the next file.
- The transform runs in a worker thread. Cancellation never interrupts it;
  undispatched files simply stay pending in the store.
- A row is only written after its transform succeeded, so a cancelled or
  failed run leaves every row either processed or still pending.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from reencoder.exceptions import FileError, NotFoundError, ReencoderError
from reencoder.services.reports import FileStatus, ProgressEvent, RunReport, Stage
from reencoder.services.scan_service import file_modtime

if TYPE_CHECKING:
    from reencoder.services.reports import ProgressCallback
    from reencoder.services.state_store import StateStore

__all__ = [
    "Scheduler",
    "Transform",
    "TransformOutcome",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransformOutcome:
    """What a transform reports back for one file."""

    path: str
    size_before: int | None = None
    size_after: int | None = None


Transform = Callable[[str], TransformOutcome]


class Scheduler:
    """Bounded worker pool over the store's pending set."""

    def __init__(self, store: StateStore, transform: Transform, max_workers: int = 4) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._store = store
        self._transform = transform
        self._max_workers = max_workers

    async def run(
        self,
        *,
        cancel: asyncio.Event | None = None,
        under: str | os.PathLike[str] | None = None,
        progress: ProgressCallback | None = None,
    ) -> RunReport:
        """Process a snapshot of pending files, at most ``max_workers`` at a time.

        Returns a RunReport; transform failures and store errors are recorded
        per file and never abort the run. Only a failure to read the pending
        snapshot itself raises (StoreIOError).
        """
        # One worker per path: the snapshot has no duplicates.
        work = list(dict.fromkeys(await self._store.pending(under)))
        report = RunReport()
        logger.info("Processing %d pending files with %d workers", len(work), self._max_workers)

        slots = asyncio.Semaphore(self._max_workers)
        dispatched = 0
        async with asyncio.TaskGroup() as tg:
            for path in work:
                await slots.acquire()
                if cancel is not None and cancel.is_set():
                    slots.release()
                    break
                tg.create_task(self._process_slot(path, report, slots, progress))
                dispatched += 1

        report.cancelled = len(work) - dispatched
        if report.cancelled:
            logger.info("Run cancelled, %d files left pending", report.cancelled)
        logger.info("%s", report.summary())
        return report

    async def _process_slot(
        self,
        path: str,
        report: RunReport,
        slots: asyncio.Semaphore,
        progress: ProgressCallback | None,
    ) -> None:
        try:
            status = await self._process(path, report)
        finally:
            slots.release()
        if progress is not None:
            progress(ProgressEvent(stage=Stage.RUN, path=path, status=status))

    async def _process(self, path: str, report: RunReport) -> FileStatus:
        if not await asyncio.to_thread(os.path.isfile, path):
            await self._forget_missing(path, report)
            return FileStatus.SKIPPED_MISSING

        try:
            outcome = await asyncio.to_thread(self._transform, path)
        except Exception as exc:  # file boundary; the transform is opaque
            error = FileError(path=path, message=str(exc) or type(exc).__name__)
            report.failed += 1
            report.errors.append(error)
            logger.warning("%s", error)
            return FileStatus.FAILED

        try:
            modtime = await asyncio.to_thread(file_modtime, path)
        except FileNotFoundError:
            await self._forget_missing(path, report)
            return FileStatus.SKIPPED_MISSING
        except OSError as exc:
            report.succeeded += 1
            error = FileError(path=path, message=f"cannot stat reencoded file: {exc}")
            report.store_errors.append(error)
            logger.error("%s", error)
            return FileStatus.SUCCEEDED

        report.succeeded += 1
        try:
            await self._store.mark_processed(path, modtime)
        except ReencoderError as exc:
            # Transformed but not recorded: harmless redo on the next run.
            error = FileError(path=path, message=f"failed to record result: {exc}")
            report.store_errors.append(error)
            logger.error("%s", error)
        else:
            logger.debug(
                "Processed %s (%s -> %s bytes)", path, outcome.size_before, outcome.size_after
            )
        return FileStatus.SUCCEEDED

    async def _forget_missing(self, path: str, report: RunReport) -> None:
        report.skipped_missing += 1
        try:
            await self._store.remove(path)
        except NotFoundError:
            logger.debug("Row for vanished file %s already gone", path)
        except ReencoderError as exc:
            error = FileError(path=path, message=f"failed to drop missing file: {exc}")
            report.store_errors.append(error)
            logger.error("%s", error)
        else:
            logger.info("Dropped vanished file %s", path)
