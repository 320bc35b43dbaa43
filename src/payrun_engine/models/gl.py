"""General ledger journal models written by the ledger poster."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.models.base import Base, Money, TimestampMixin


class GLAccountMapping(Base, TimestampMixin):
    """Override of the default account code for one posting role."""

    __tablename__ = "gl_account_mapping"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    mapping_type: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    account_code: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class JournalEntry(Base, TimestampMixin):
    """Immutable balanced journal entry."""

    __tablename__ = "journal_entry"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    source: Mapped[str] = mapped_column(String, nullable=False)
    source_id: Mapped[UUID] = mapped_column(nullable=False)
    posting_date: Mapped[date] = mapped_column(Date, nullable=False)
    memo: Mapped[str | None] = mapped_column(Text, nullable=True)
    total_debits: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    total_credits: Mapped[Decimal] = mapped_column(Money(), nullable=False)
    posted_by: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("source", "source_id", name="journal_entry_source_unique"),
    )

    lines: Mapped[list[JournalLine]] = relationship(
        back_populates="entry",
        order_by="JournalLine.line_no",
    )


class JournalLine(Base):
    """Individual journal line; exactly one side is non-zero."""

    __tablename__ = "journal_line"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    entry_id: Mapped[UUID] = mapped_column(
        ForeignKey("journal_entry.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)
    account_code: Mapped[str] = mapped_column(String, nullable=False)
    debit: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    credit: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("entry_id", "line_no", name="journal_line_entry_line_unique"),
    )

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")
