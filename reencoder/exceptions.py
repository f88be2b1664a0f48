"""Application-level exception types.

Convention:
- Store operations raise ``NotFoundError``/``AlreadyExistsError`` for row-level
  contract violations and ``StoreIOError`` when the backing SQLite file fails.
  Callers decide whether a missing row is a no-op.
- Per-file failures inside scan/run/clean are caught at the file boundary and
  recorded as ``FileError`` entries in the operation's report; they never abort
  sibling files.
- Only structurally invalid input (``InvalidRootError``, ``StoreIOError`` on
  setup, ``ToolNotFoundError``) aborts a whole operation.
"""

from __future__ import annotations

from dataclasses import dataclass


class ReencoderError(Exception):
    """Base class for all reencoder errors."""


class InvalidRootError(ReencoderError):
    """Scan target does not exist or is not a directory."""


class NotFoundError(ReencoderError):
    """A store operation referenced a path with no row."""


class AlreadyExistsError(ReencoderError):
    """An insert targeted a path that already has a row."""


class StoreIOError(ReencoderError):
    """The underlying storage failed; the in-flight operation did not apply."""


class ToolNotFoundError(ReencoderError):
    """A required external executable is not on PATH."""


class TransformError(ReencoderError):
    """The external transform failed for one file."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class ClassifyError(ReencoderError):
    """The external classifier could not inspect one file."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


@dataclass(frozen=True)
class FileError:
    """A per-file failure collected into an operation report."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"error: {self.message}\ton file {self.path}"

