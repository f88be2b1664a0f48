"""Scanner: reconcile a directory tree with the state store.

For each matching file the stored modtime is the sole staleness oracle: a
file whose modtime is unchanged is never re-inspected, which keeps repeated
scans cheap. New or drifted files are classified and their row written.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from reencoder.exceptions import (
    AlreadyExistsError,
    FileError,
    InvalidRootError,
)
from reencoder.services.reports import FileStatus, ProgressEvent, ScanReport, Stage
from reencoder.services.state_store import canonical_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from reencoder.services.reports import ProgressCallback
    from reencoder.services.state_store import StateStore

__all__ = [
    "Classifier",
    "Scanner",
    "discover_files",
    "file_modtime",
]

logger = logging.getLogger(__name__)

# Returns True when the file already satisfies the target signature.
Classifier = Callable[[str], bool]


def file_modtime(path: str | os.PathLike[str]) -> int:
    """Modification time in whole seconds since the epoch."""
    return int(os.stat(path).st_mtime)


def discover_files(
    root: Path, extensions: Iterable[str]
) -> tuple[list[str], list[FileError]]:
    """Walk ``root`` and return canonical paths of matching regular files.

    Directory symlinks are not followed. Files reachable under several
    spellings appear once. Directories that cannot be listed are reported
    as errors instead of being skipped silently.
    """
    wanted = frozenset(ext.lower() for ext in extensions)
    walk_errors: list[FileError] = []

    def _on_error(exc: OSError) -> None:
        walk_errors.append(FileError(path=str(exc.filename), message=str(exc)))

    seen: set[str] = set()
    found: list[str] = []
    for dirpath, _dirs, filenames in os.walk(root, onerror=_on_error):
        for filename in filenames:
            if os.path.splitext(filename)[1].lower() not in wanted:
                continue
            full = os.path.join(dirpath, filename)
            if not os.path.isfile(full):
                continue
            key = canonical_path(full)
            if key in seen:
                continue
            seen.add(key)
            found.append(key)
    found.sort()
    return found, walk_errors


class Scanner:
    """Reconciles the filesystem with a StateStore."""

    def __init__(
        self,
        store: StateStore,
        classify: Classifier,
        extensions: Iterable[str] = (".flac",),
        max_workers: int = 16,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._store = store
        self._classify = classify
        self._extensions = frozenset(ext.lower() for ext in extensions)
        self._max_workers = max_workers

    async def scan(
        self,
        root: str | os.PathLike[str],
        *,
        cancel: asyncio.Event | None = None,
        progress: ProgressCallback | None = None,
    ) -> ScanReport:
        """Insert new files, refresh drifted ones, leave unchanged ones alone.

        Raises InvalidRootError if ``root`` is not an existing directory.
        Per-file failures are collected in the report.
        """
        root_path = Path(root)
        if not await asyncio.to_thread(root_path.is_dir):
            raise InvalidRootError(f"Invalid root directory: {root_path}")
        root_path = Path(await asyncio.to_thread(canonical_path, root_path))

        candidates, walk_errors = await asyncio.to_thread(
            discover_files, root_path, self._extensions
        )
        report = ScanReport(errors=list(walk_errors))
        for error in walk_errors:
            logger.warning("%s", error)
        logger.info("Scanning %d candidate files under %s", len(candidates), root_path)

        slots = asyncio.Semaphore(self._max_workers)
        dispatched = 0
        async with asyncio.TaskGroup() as tg:
            for path in candidates:
                await slots.acquire()
                if cancel is not None and cancel.is_set():
                    slots.release()
                    break
                tg.create_task(self._reconcile_slot(path, report, slots, progress))
                dispatched += 1

        report.cancelled = len(candidates) - dispatched
        if report.cancelled:
            logger.info("Scan cancelled, %d files not visited", report.cancelled)
        logger.info("%s", report.summary())
        return report

    async def _reconcile_slot(
        self,
        path: str,
        report: ScanReport,
        slots: asyncio.Semaphore,
        progress: ProgressCallback | None,
    ) -> None:
        try:
            status = await self._reconcile(path)
        except Exception as exc:  # file boundary; the classifier is opaque
            status = FileStatus.ERROR
            _record_error(report, path, exc)
        finally:
            slots.release()

        if status is FileStatus.INSERTED:
            report.inserted += 1
        elif status is FileStatus.UPDATED:
            report.updated += 1
        elif status is FileStatus.UNCHANGED:
            report.unchanged += 1
        if progress is not None:
            progress(ProgressEvent(stage=Stage.SCAN, path=path, status=status))

    async def _reconcile(self, path: str) -> FileStatus:
        modtime = await asyncio.to_thread(file_modtime, path)
        stored = await self._store.modtime_of(path)

        if stored is None:
            conforms = await asyncio.to_thread(self._classify, path)
            try:
                await self._store.upsert_new(path, not conforms, modtime)
            except AlreadyExistsError:
                # A concurrent writer tracked it first.
                logger.debug("Row for %s appeared concurrently", path)
                return FileStatus.UNCHANGED
            return FileStatus.INSERTED

        if stored == modtime:
            return FileStatus.UNCHANGED

        conforms = await asyncio.to_thread(self._classify, path)
        await self._store.update_state(path, not conforms, modtime)
        logger.debug("Modtime drift on %s (%d -> %d)", path, stored, modtime)
        return FileStatus.UPDATED


def _record_error(report: ScanReport, path: str, exc: BaseException) -> None:
    error = FileError(path=path, message=str(exc) or type(exc).__name__)
    report.errors.append(error)
    logger.warning("%s", error)
