"""SQLite-backed per-file processing state.

One row per canonical absolute path: ``needs_processing`` flag plus the
modification time observed when the flag was last evaluated. Every public
method runs in its own short session, so each call is atomic for the row it
touches and safe to issue concurrently from many tasks.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, delete, func, or_, select, text, true, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError

from reencoder.exceptions import AlreadyExistsError, NotFoundError, StoreIOError
from reencoder.models.tracked_file import TrackedFile

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

__all__ = [
    "StateStore",
    "canonical_path",
]

logger = logging.getLogger(__name__)

# Bound on bound parameters per DELETE ... IN (...)
_DELETE_CHUNK = 500


def canonical_path(path: str | os.PathLike[str]) -> str:
    """Absolute, symlink-resolved form of ``path`` used as the row key.

    Symlink loops resolve as far as possible instead of raising.
    """
    return os.path.realpath(os.fspath(path))


class StateStore:
    """Durable mapping of canonical path -> (needs_processing, modtime)."""

    def __init__(
        self,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        self._engine = engine
        self._session_factory = session_factory

    # --- Writes ---

    async def upsert_new(
        self, path: str | os.PathLike[str], needs_processing: bool, modtime: int
    ) -> None:
        """Insert a row for a file seen for the first time.

        Raises AlreadyExistsError if the canonical path already has a row.
        """
        key = await _key(path)
        stmt = (
            sqlite_insert(TrackedFile)
            .values(
                path=key,
                needs_processing=needs_processing,
                modtime=modtime,
                updated_at=_now(),
            )
            .on_conflict_do_nothing(index_elements=["path"])
        )
        async with self._session("upsert_new") as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise AlreadyExistsError(key)

    async def mark_processed(self, path: str | os.PathLike[str], modtime: int) -> None:
        """Clear the pending flag after a successful transform.

        Raises NotFoundError if the path has no row.
        """
        await self._update(path, "mark_processed", needs_processing=False, modtime=modtime)

    async def update_state(
        self, path: str | os.PathLike[str], needs_processing: bool, modtime: int
    ) -> None:
        """Overwrite flag and modtime of an existing row (modtime drift).

        Raises NotFoundError if the path has no row.
        """
        await self._update(
            path, "update_state", needs_processing=needs_processing, modtime=modtime
        )

    async def remove(self, path: str | os.PathLike[str]) -> None:
        """Delete the row for ``path``. Raises NotFoundError if there was none."""
        key = await _key(path)
        async with self._session("remove") as session:
            result = await session.execute(delete(TrackedFile).where(TrackedFile.path == key))
            await session.commit()
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise NotFoundError(key)

    # --- Point lookups ---

    async def exists(self, path: str | os.PathLike[str]) -> bool:
        key = await _key(path)
        async with self._session("exists") as session:
            result = await session.execute(select(TrackedFile.id).where(TrackedFile.path == key))
            return result.scalar_one_or_none() is not None

    async def modtime_of(self, path: str | os.PathLike[str]) -> int | None:
        """Stored modtime, or None when the path is untracked."""
        key = await _key(path)
        async with self._session("modtime_of") as session:
            result = await session.execute(
                select(TrackedFile.modtime).where(TrackedFile.path == key)
            )
            return result.scalar_one_or_none()

    async def get(self, path: str | os.PathLike[str]) -> TrackedFile | None:
        """Full row for ``path``, detached from its session."""
        key = await _key(path)
        async with self._session("get") as session:
            result = await session.execute(select(TrackedFile).where(TrackedFile.path == key))
            return result.scalar_one_or_none()

    # --- Bulk scans ---

    async def pending(self, under: str | os.PathLike[str] | None = None) -> list[str]:
        """Paths with needs_processing set, optionally restricted to a subtree.

        No ordering is guaranteed.
        """
        stmt = select(TrackedFile.path).where(TrackedFile.needs_processing.is_(true()))
        if under is not None:
            stmt = stmt.where(_under(await _key(under)))
        async with self._session("pending") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def pending_count(self, under: str | os.PathLike[str] | None = None) -> int:
        stmt = (
            select(func.count())
            .select_from(TrackedFile)
            .where(TrackedFile.needs_processing.is_(true()))
        )
        if under is not None:
            stmt = stmt.where(_under(await _key(under)))
        async with self._session("pending_count") as session:
            result = await session.execute(stmt)
            return result.scalar() or 0

    async def all_paths(self) -> list[str]:
        async with self._session("all_paths") as session:
            result = await session.execute(select(TrackedFile.path))
            return list(result.scalars().all())

    # --- Maintenance ---

    async def dedupe(self) -> int:
        """Collapse rows whose stored paths resolve to the same canonical path.

        Keeps the most recently written row of each group (ties go to the
        later insert), rewrites its path to canonical form and deletes the
        rest. Returns the number of rows deleted.
        """
        async with self._session("dedupe") as session:
            result = await session.execute(
                select(TrackedFile.id, TrackedFile.path, TrackedFile.updated_at)
            )
            rows = result.all()
            keys = await asyncio.to_thread(_canonical_all, [row.path for row in rows])
            groups: dict[str, list[tuple[int, str, datetime]]] = {}
            for key, (row_id, stored_path, updated_at) in zip(keys, rows, strict=True):
                groups.setdefault(key, []).append((row_id, stored_path, updated_at))

            doomed: list[int] = []
            renames: list[tuple[int, str]] = []
            for key, members in groups.items():
                keep_id, keep_path, _ = max(members, key=lambda m: (m[2], m[0]))
                doomed.extend(m[0] for m in members if m[0] != keep_id)
                if keep_path != key:
                    renames.append((keep_id, key))

            for start in range(0, len(doomed), _DELETE_CHUNK):
                chunk = doomed[start : start + _DELETE_CHUNK]
                await session.execute(delete(TrackedFile).where(TrackedFile.id.in_(chunk)))
            for row_id, key in renames:
                await session.execute(
                    update(TrackedFile).where(TrackedFile.id == row_id).values(path=key)
                )
            await session.commit()

        if doomed or renames:
            logger.info(
                "Dedupe removed %d duplicate rows, canonicalized %d paths",
                len(doomed),
                len(renames),
            )
        return len(doomed)

    async def compact(self) -> None:
        """Reclaim free pages (VACUUM). No semantic effect."""
        try:
            async with self._engine.connect() as conn:
                conn = await conn.execution_options(isolation_level="AUTOCOMMIT")
                await conn.execute(text("VACUUM"))
        except DBAPIError as exc:
            logger.error("Store compact failed: %s", exc)
            raise StoreIOError(f"compact failed: {exc}") from exc

    # --- Private ---

    async def _update(self, path: str | os.PathLike[str], operation: str, **values: object) -> None:
        key = await _key(path)
        stmt = (
            update(TrackedFile)
            .where(TrackedFile.path == key)
            .values(**values, updated_at=_now())
        )
        async with self._session(operation) as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:  # type: ignore[attr-defined]
            raise NotFoundError(key)

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession]:
        """Session scope translating driver failures into StoreIOError."""
        try:
            async with self._session_factory() as session:
                yield session
        except DBAPIError as exc:
            logger.error("Store %s failed: %s", operation, exc)
            raise StoreIOError(f"{operation} failed: {exc}") from exc


def _under(prefix: str) -> ColumnElement[bool]:
    if not prefix.endswith(os.sep):
        prefix_dir = prefix + os.sep
    else:
        prefix_dir = prefix
    return or_(
        TrackedFile.path == prefix,
        TrackedFile.path.startswith(prefix_dir, autoescape=True),
    )


async def _key(path: str | os.PathLike[str]) -> str:
    return await asyncio.to_thread(canonical_path, path)


def _canonical_all(paths: list[str]) -> list[str]:
    return [canonical_path(p) for p in paths]


def _now() -> datetime:
    return datetime.now(UTC)
