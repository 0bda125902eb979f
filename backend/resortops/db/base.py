"""SQLAlchemy declarative base and common utilities."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, event, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from resortops.core.errors import ImmutableRecordError


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

    Models using this mixin gain a ``version`` column that starts at 1.
    Writers must bump it with a compare-and-swap UPDATE
    (``WHERE version = :expected``) rather than a plain assignment, so a
    concurrent writer holding the same version sees zero rows updated.
    """

    version: Mapped[int] = mapped_column(Integer, default=1, server_default="1", nullable=False)

    def is_current(self, expected: Optional[int]) -> bool:
        """True when *expected* matches the loaded version."""
        return expected is not None and expected == self.version


class AppendOnlyMixin:
    """Marks a model as insert-only.

    ``register_append_only`` wires ORM listeners that refuse UPDATE and
    DELETE flushes for the model.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only and cannot be updated")


def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(f"{type(target).__name__} rows are append-only and cannot be deleted")


def register_append_only(model) -> None:
    """Attach the immutability listeners to *model*."""
    event.listen(model, "before_update", _refuse_update)
    event.listen(model, "before_delete", _refuse_delete)
