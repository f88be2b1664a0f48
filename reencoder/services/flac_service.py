"""FLAC collaborators: vendor classification and reencoding via the flac CLI."""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
from typing import TYPE_CHECKING

from reencoder.exceptions import ClassifyError, ToolNotFoundError, TransformError
from reencoder.services.scheduler_service import TransformOutcome

if TYPE_CHECKING:
    from reencoder.config import Settings

__all__ = [
    "FlacClassifier",
    "FlacTransformer",
    "check_tools",
    "detect_vendor",
    "read_vendor",
]

logger = logging.getLogger(__name__)

_VENDOR_RE = re.compile(r"libFLAC (\d+\.\d+\.\d+)")
_VERSION_RE = re.compile(r"^flac (\d+\.\d+\.\d+)", re.MULTILINE)


def _run(*args: str) -> subprocess.CompletedProcess[str]:
    """Run an external tool, capturing text output. Never raises on exit code."""
    return subprocess.run(
        list(args),
        check=False,
        capture_output=True,
        text=True,
    )


def check_tools(settings: Settings) -> None:
    """Raise ToolNotFoundError unless flac and metaflac are on PATH."""
    for binary in (settings.flac_binary, settings.metaflac_binary):
        if shutil.which(binary) is None:
            raise ToolNotFoundError(f"missing {binary} executable")


def detect_vendor(settings: Settings) -> str:
    """Version of the installed libFLAC encoder, e.g. ``1.4.3``."""
    try:
        result = _run(settings.flac_binary, "--version")
    except FileNotFoundError as exc:
        raise ToolNotFoundError(f"missing {settings.flac_binary} executable") from exc
    match = _VERSION_RE.search(result.stdout)
    if result.returncode != 0 or match is None:
        raise ToolNotFoundError(
            f"cannot determine encoder version from {settings.flac_binary!r}: "
            f"{(result.stdout or result.stderr).strip()!r}"
        )
    return match.group(1)


def read_vendor(path: str, settings: Settings) -> str:
    """libFLAC version recorded in the file's vendor tag, or "" if none.

    Raises ClassifyError when metaflac cannot read the file.
    """
    result = _run(settings.metaflac_binary, "--show-vendor-tag", path)
    if result.returncode != 0:
        raise ClassifyError(path, result.stderr.strip() or f"metaflac exited {result.returncode}")
    match = _VENDOR_RE.search(result.stdout)
    return match.group(1) if match else ""


class FlacClassifier:
    """A file conforms when it was written by the target libFLAC version."""

    def __init__(self, settings: Settings, vendor: str | None = None) -> None:
        self._settings = settings
        self.vendor = vendor or settings.target_vendor or detect_vendor(settings)
        logger.info("Target encoder vendor: libFLAC %s", self.vendor)

    def __call__(self, path: str) -> bool:
        return read_vendor(path, self._settings) == self.vendor


class FlacTransformer:
    """Reencode a file in place with the flac CLI.

    flac writes to a temporary file and renames it over the original only on
    success, so a failed or interrupted encode leaves the input untouched.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def __call__(self, path: str) -> TransformOutcome:
        size_before = os.path.getsize(path)
        result = _run(self._settings.flac_binary, *self._settings.flac_args, path)
        if result.returncode != 0:
            raise TransformError(
                path, result.stderr.strip() or f"flac exited {result.returncode}"
            )
        return TransformOutcome(
            path=path,
            size_before=size_before,
            size_after=os.path.getsize(path),
        )
