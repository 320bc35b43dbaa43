"""People, compensation profiles and period inputs consumed by the calculator."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.models.base import Base, JSONType, Money, TimestampMixin


class Person(Base, TimestampMixin):
    """A compensable person (employee or contractor)."""

    __tablename__ = "person"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    person_type: Mapped[str] = mapped_column(String, nullable=False, default="employee")
    jurisdiction: Mapped[str | None] = mapped_column(String, nullable=True)
    # NULL means the person is paid on every schedule's periods
    schedule_id: Mapped[UUID | None] = mapped_column(nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_exempt_from_federal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_exempt_from_state: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_exempt_from_fica: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        CheckConstraint(
            "person_type IN ('employee', 'contractor')",
            name="person_type_check",
        ),
    )

    profiles: Mapped[list[CompensationProfile]] = relationship(back_populates="person")

    @property
    def tax_exemptions(self) -> frozenset[str]:
        """Tax rule categories that are not withheld for this person."""
        flags = {
            "federal": self.is_exempt_from_federal,
            "state": self.is_exempt_from_state,
            "fica": self.is_exempt_from_fica,
        }
        return frozenset(category for category, exempt in flags.items() if exempt)


class CompensationProfile(Base, TimestampMixin):
    """Effective-dated pay configuration for one person.

    ``recurring_earnings``, ``deductions`` and ``employer_contributions`` are
    ordered lists of dicts. Amounts are decimal strings; see
    ``payrun_engine.sources.sql`` for the accepted keys.
    """

    __tablename__ = "compensation_profile"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    person_id: Mapped[UUID] = mapped_column(
        ForeignKey("person.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pay_type: Mapped[str] = mapped_column(String, nullable=False)
    pay_rate: Mapped[Decimal | None] = mapped_column(Money(14, 4), nullable=True)
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False, default="semimonthly")
    standard_weekly_hours: Mapped[Decimal] = mapped_column(
        Money(10, 2), nullable=False, default=Decimal("40")
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurring_earnings: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    employer_contributions: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    __table_args__ = (
        CheckConstraint(
            "pay_type IN ('salary', 'hourly', 'commission')",
            name="compensation_profile_pay_type_check",
        ),
        CheckConstraint(
            "pay_frequency IN ('weekly', 'biweekly', 'semimonthly', 'monthly')",
            name="compensation_profile_frequency_check",
        ),
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="compensation_profile_dates_check",
        ),
    )

    person: Mapped[Person] = relationship(back_populates="profiles")

    def covers(self, start: date, end: date) -> bool:
        """True when the profile is in effect at some point of [start, end]."""
        if self.effective_from > end:
            return False
        return self.effective_to is None or self.effective_to >= start


class PayAdjustment(Base, TimestampMixin):
    """One-off earning for a person in a specific period."""

    __tablename__ = "pay_adjustment"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    person_id: Mapped[UUID] = mapped_column(
        ForeignKey("person.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money(), nullable=False)


class PeriodHours(Base, TimestampMixin):
    """Hours worked by an hourly person in a period."""

    __tablename__ = "period_hours"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    person_id: Mapped[UUID] = mapped_column(
        ForeignKey("person.id", ondelete="CASCADE"),
        nullable=False,
    )
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.id", ondelete="CASCADE"),
        nullable=False,
    )
    hours: Mapped[Decimal] = mapped_column(Money(10, 4), nullable=False)

    __table_args__ = (
        UniqueConstraint("person_id", "period_id", name="period_hours_person_period_unique"),
        CheckConstraint("hours >= 0", name="period_hours_nonnegative"),
    )


class JurisdictionTaxRule(Base, TimestampMixin):
    """Per-period withholding rule for a jurisdiction.

    ``method`` is ``flat`` (``rate`` applied to gross) or ``bracket``
    (``brackets`` is a list of ``{"min", "max", "rate", "flat"}`` dicts).
    ``wage_cap`` limits the gross subject to the rule in one period.
    ``category`` (``federal``, ``state``, ``fica``) ties the rule to the
    matching per-person exemption flag.
    """

    __tablename__ = "jurisdiction_tax_rule"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    jurisdiction: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    side: Mapped[str] = mapped_column(String, nullable=False, default="employee")
    method: Mapped[str] = mapped_column(String, nullable=False, default="flat")
    rate: Mapped[Decimal | None] = mapped_column(Money(10, 6), nullable=True)
    brackets: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    wage_cap: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("side IN ('employee', 'employer')", name="tax_rule_side_check"),
        CheckConstraint("method IN ('flat', 'bracket')", name="tax_rule_method_check"),
        CheckConstraint(
            "category IS NULL OR category IN ('federal', 'state', 'fica')",
            name="tax_rule_category_check",
        ),
        UniqueConstraint(
            "jurisdiction", "name", "side", "effective_from",
            name="tax_rule_jurisdiction_name_unique",
        ),
    )
