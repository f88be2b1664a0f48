"""Operation reports and progress events shared by scan, run and clean."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from reencoder.exceptions import FileError


class Stage(StrEnum):
    SCAN = "scan"
    RUN = "run"
    CLEAN = "clean"


class FileStatus(StrEnum):
    """Per-file outcome delivered to progress callbacks."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_MISSING = "skipped_missing"
    REMOVED = "removed"
    ERROR = "error"


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    path: str
    status: FileStatus


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class ScanReport:
    """Result of reconciling one directory tree with the store."""

    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    cancelled: int = 0
    errors: list[FileError] = field(default_factory=list)

    @property
    def errored(self) -> int:
        return len(self.errors)

    @property
    def mutations(self) -> int:
        return self.inserted + self.updated

    def summary(self) -> str:
        return (
            f"Scan: {self.inserted} inserted, {self.updated} updated, "
            f"{self.unchanged} unchanged, {self.errored} errors, {self.cancelled} cancelled"
        )


@dataclass
class RunReport:
    """Result of one scheduler run.

    ``store_errors`` lists files that were transformed but whose row could not
    be marked processed; they are counted as succeeded and will be redone on
    the next run.
    """

    succeeded: int = 0
    failed: int = 0
    skipped_missing: int = 0
    cancelled: int = 0
    errors: list[FileError] = field(default_factory=list)
    store_errors: list[FileError] = field(default_factory=list)

    @property
    def was_cancelled(self) -> bool:
        return self.cancelled > 0

    def summary(self) -> str:
        return (
            f"Run: {self.succeeded} succeeded, {self.failed} failed, "
            f"{self.skipped_missing} missing, {self.cancelled} left pending by cancel"
        )


@dataclass
class CleanReport:
    """Result of one maintenance pass."""

    deduplicated: int = 0
    removed: int = 0
    cancelled: int = 0
    compacted: bool = False
    errors: list[FileError] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"Clean: {self.deduplicated} duplicates dropped, {self.removed} removed, "
            f"{len(self.errors)} errors"
        )
