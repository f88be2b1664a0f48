"""SQLAlchemy ORM models for the reencoder store."""

from reencoder.models.base import Base
from reencoder.models.tracked_file import TrackedFile

__all__ = [
    "Base",
    "TrackedFile",
]
