"""Tracked file model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from reencoder.models.base import Base


class TrackedFile(Base):
    """Processing state of one file, keyed by its canonical absolute path."""

    __tablename__ = "tracked_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    needs_processing: Mapped[bool] = mapped_column(Boolean, nullable=False)
    modtime: Mapped[int] = mapped_column(Integer, nullable=False)
    # Write stamp; dedupe keeps the newest row of a collapsed group.
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_tracked_files_needs_processing", "needs_processing"),)
