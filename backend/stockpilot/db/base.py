"""SQLAlchemy declarative base and common mixins."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class VersionMixin:
    """Optimistic locking via a version counter.

    The ``version`` column is registered as the mapper's ``version_id_col``,
    so every UPDATE of the row is issued as ``... WHERE version = :seen`` and
    SQLAlchemy bumps the counter itself. A write based on a stale read raises
    ``sqlalchemy.orm.exc.StaleDataError`` at flush time.

    ``check_version()`` compares a caller-held version before any mutation.
    ``touch()`` forces an UPDATE of the row when only child rows changed, so
    the counter still moves.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    @declared_attr.directive
    def __mapper_args__(cls):
        return {"version_id_col": cls.__table__.c.version}

    def check_version(self, expected: Optional[int]) -> None:
        """Raise ConcurrentModification if *expected* doesn't match the current version."""
        if expected is not None and expected != self.version:
            from stockpilot.core.exceptions import ConcurrentModification
            raise ConcurrentModification(
                self.__class__.__name__, getattr(self, "id", None),
                expected_version=expected, current_version=self.version,
            )

    def touch(self) -> None:
        """Mark the row dirty so the next flush bumps ``version``."""
        self.updated_at = datetime.now(timezone.utc)
