"""
SQLAlchemy declarative base and common model mixins.

Models use integer surrogate keys so that listings can break order-date ties
deterministically, plus server-managed created/updated timestamps.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import BigInteger, DateTime, func
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """
    Base class for all SQLAlchemy models with async support.
    """

    __abstract__ = True

    def __repr__(self) -> str:
        pk_values = []
        for column in self.__table__.primary_key.columns:
            value = getattr(self, column.name, None)
            if value is not None:
                pk_values.append(f"{column.name}={value!r}")

        pk_str = ", ".join(pk_values) if pk_values else "no primary key"
        return f"<{self.__class__.__name__}({pk_str})>"


class IdMixin:
    """Auto-incrementing integer primary key."""

    @declared_attr
    def id(cls) -> Mapped[int]:
        return mapped_column(
            BigInteger().with_variant(BigInteger, "postgresql"),
            primary_key=True,
            autoincrement=True,
            comment="Surrogate key for the record",
        )


class TimestampMixin:
    """
    Mixin for automatic timestamp management.

    Adds created_at and updated_at columns managed by the database.
    """

    @declared_attr
    def created_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            comment="Timestamp when record was created",
        )

    @declared_attr
    def updated_at(cls) -> Mapped[datetime]:
        return mapped_column(
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
            onupdate=func.now(),
            comment="Timestamp when record was last updated",
        )


class BaseModel(Base, IdMixin, TimestampMixin):
    """
    Base model with integer primary key and timestamps.

    Example:
        class Lead(BaseModel):
            __tablename__ = "leads"

            message_id: Mapped[str] = mapped_column(String(255), unique=True)
    """

    __abstract__ = True


def create_table_args(
    *constraints: Any,
    comment: Optional[str] = None,
) -> tuple:
    """
    Build a ``__table_args__`` tuple from constraints/indexes and a comment.

    Example:
        __table_args__ = create_table_args(
            Index("idx_orders_date", "order_date"),
            comment="Customer orders",
        )
    """
    options: Dict[str, Any] = {}
    if comment:
        options["comment"] = comment
    return (*constraints, options)
