"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
import sys
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "reencoder"
DATABASE_FILENAME = "reencoder.db"


def user_data_dir() -> Path:
    """Return the per-user application data directory for this platform."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if not appdata:
            raise RuntimeError("Failed to locate application data folder (APPDATA unset)")
        return Path(appdata)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support"
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg)
    return Path.home() / ".local" / "share"


def default_database_path() -> Path:
    """Default store location: <data dir>/reencoder/reencoder.db."""
    return user_data_dir() / APP_NAME / DATABASE_FILENAME


class Settings(BaseSettings):
    """Reencoder settings."""

    model_config = SettingsConfigDict(
        env_prefix="REENCODER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False

    # Store
    database_path: Path | None = None
    store_busy_timeout: float = Field(default=30.0, gt=0)

    # Workers
    max_workers: int = Field(default=4, ge=1)
    scan_workers: int = Field(default=16, ge=1)

    # Selection
    extensions: list[str] = Field(default_factory=lambda: [".flac"])

    # External tools
    flac_binary: str = "flac"
    metaflac_binary: str = "metaflac"
    flac_args: list[str] = Field(default_factory=lambda: ["-8", "-f", "--silent"])
    target_vendor: str | None = None

    @property
    def resolved_database_path(self) -> Path:
        """Explicit store path if configured, else the per-user default."""
        if self.database_path is not None:
            return self.database_path.expanduser()
        return default_database_path()

    @property
    def database_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.resolved_database_path}"

    def normalized_extensions(self) -> frozenset[str]:
        """Lower-cased extensions, each with a leading dot."""
        result: set[str] = set()
        for ext in self.extensions:
            ext = ext.strip().lower()
            if not ext:
                continue
            result.add(ext if ext.startswith(".") else f".{ext}")
        return frozenset(result)
