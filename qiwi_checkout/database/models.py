"""SQLAlchemy database models for the bill store."""
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import JSON, DateTime, Integer, String, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class Bill(Base):
    """
    Bills table.

    One row per bill holding the latest known snapshot as a JSON document.
    Email and status are copied out of the document for querying.
    """

    __tablename__ = "bills"

    bill_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    document: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        """String representation of Bill."""
        return f"<Bill(bill_id={self.bill_id}, status={self.status}, version={self.version})>"
