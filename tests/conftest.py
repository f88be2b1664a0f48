"""Shared test fixtures for the reencoder."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from reencoder.config import Settings
from reencoder.database import create_engine, ensure_tables
from reencoder.services.scheduler_service import TransformOutcome
from reencoder.services.state_store import StateStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Content prefix that the fake classifier treats as "already reencoded".
CONFORMING = b"NEW:"
BASE_MTIME = 1_700_000_000


def write_file(path: Path, content: bytes, mtime: int = BASE_MTIME) -> Path:
    """Write ``content`` to ``path`` and pin its modification time."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    os.utime(path, (mtime, mtime))
    return path


def fake_classify(path: str) -> bool:
    """Conforms when the file content carries the CONFORMING prefix."""
    with open(path, "rb") as f:
        return f.read(len(CONFORMING)) == CONFORMING


class FakeTransform:
    """Thread-safe fake transform that rewrites files into conforming form.

    Records every call and the peak number of concurrent calls. Paths listed
    in ``fail`` raise instead of being rewritten.
    """

    def __init__(self, fail: set[str] | None = None, delay: float = 0.0) -> None:
        self.fail = fail or set()
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight: set[str] = set()
        self.max_in_flight = 0
        self.overlaps: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, path: str) -> TransformOutcome:
        with self._lock:
            if path in self.in_flight:
                self.overlaps.append(path)
            self.in_flight.add(path)
            self.calls.append(path)
            self.max_in_flight = max(self.max_in_flight, len(self.in_flight))
        try:
            if self.delay:
                time.sleep(self.delay)
            if path in self.fail:
                raise RuntimeError("encoder crashed")
            before = os.path.getsize(path)
            data = Path(path).read_bytes()
            Path(path).write_bytes(CONFORMING + data.removeprefix(CONFORMING))
            return TransformOutcome(path=path, size_before=before, size_after=os.path.getsize(path))
        finally:
            with self._lock:
                self.in_flight.discard(path)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings pointing at a temporary store."""
    return Settings(
        _env_file=None,
        database_path=tmp_path / "data" / "test.db",
        scan_workers=4,
        max_workers=3,
    )


@pytest.fixture
async def db_engine(
    test_settings: Settings,
) -> AsyncGenerator[tuple[AsyncEngine, async_sessionmaker[AsyncSession]]]:
    """Create a test database engine with the schema in place."""
    engine, session_factory = create_engine(test_settings)
    await ensure_tables(engine)
    yield engine, session_factory
    await engine.dispose()


@pytest.fixture
def store(db_engine: tuple[AsyncEngine, async_sessionmaker[AsyncSession]]) -> StateStore:
    engine, session_factory = db_engine
    return StateStore(engine, session_factory)


@pytest.fixture
def music_dir(tmp_path: Path) -> Path:
    """An empty library root."""
    root = tmp_path / "music"
    root.mkdir()
    return root
