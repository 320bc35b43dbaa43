"""Pay period, payroll run, line and run history models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payrun_engine.models.base import Base, JSONType, Money, TimestampMixin

RUN_TYPES = ("regular", "bonus", "offcycle", "correction")


# ===== Pay Periods =====


class PayPeriod(Base, TimestampMixin):
    """Pay period generated by the pay-schedule owner; read-only here."""

    __tablename__ = "pay_period"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    schedule_id: Mapped[UUID] = mapped_column(nullable=False)
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="pay_period_dates_check"),
    )

    runs: Mapped[list[PayrollRun]] = relationship(back_populates="period")


# ===== Payroll Runs =====


class PayrollRun(Base, TimestampMixin):
    """One calculate/approve/post cycle for a pay period."""

    __tablename__ = "payroll_run"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.id", ondelete="RESTRICT"),
        nullable=False,
    )
    run_type: Mapped[str] = mapped_column(String, nullable=False, default="regular")
    run_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    # Totals stay NULL until the first calculation
    total_gross_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    total_net_pay: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    total_employee_taxes: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    total_employee_deductions: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    total_employer_taxes: Mapped[Decimal | None] = mapped_column(Money(), nullable=True)
    total_employer_contributions: Mapped[Decimal | None] = mapped_column(
        Money(), nullable=True
    )
    employee_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    anomaly_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    anomalies_acknowledged: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    calculation_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    calculated_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    posted_by: Mapped[str | None] = mapped_column(String, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_by: Mapped[str | None] = mapped_column(String, nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    voided_by: Mapped[str | None] = mapped_column(String, nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    journal_entry_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("journal_entry.id"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint(
            "run_type IN ('regular', 'bonus', 'offcycle', 'correction')",
            name="payroll_run_type_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'calculating', 'calculated', 'reviewing', "
            "'approved', 'posting', 'posted', 'paid', 'void')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("run_number >= 1", name="payroll_run_number_check"),
        # Void runs drop out of the (period, type, number) uniqueness
        Index(
            "uq_payroll_run_period_type_number",
            "period_id",
            "run_type",
            "run_number",
            unique=True,
            postgresql_where=text("status <> 'void'"),
            sqlite_where=text("status <> 'void'"),
        ),
        # At most one posted run per period
        Index(
            "uq_payroll_run_period_posted",
            "period_id",
            unique=True,
            postgresql_where=text("status IN ('posted', 'paid')"),
            sqlite_where=text("status IN ('posted', 'paid')"),
        ),
    )

    period: Mapped[PayPeriod] = relationship(back_populates="runs")
    lines: Mapped[list[PayrollLine]] = relationship(
        back_populates="run",
        order_by="PayrollLine.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_totals(self) -> bool:
        return self.total_gross_pay is not None


class PayrollLine(Base, TimestampMixin):
    """One person's computed pay within a run."""

    __tablename__ = "payroll_line"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    person_id: Mapped[UUID] = mapped_column(nullable=False)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    person_type: Mapped[str] = mapped_column(String, nullable=False, default="employee")
    jurisdiction: Mapped[str | None] = mapped_column(String, nullable=True)
    is_included: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    exclude_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    pay_type: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_rate: Mapped[Decimal | None] = mapped_column(Money(14, 4), nullable=True)
    hours: Mapped[Decimal | None] = mapped_column(Money(10, 4), nullable=True)
    base_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))

    # Ordered component lists; amounts stored as decimal strings
    earnings: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    employee_taxes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    deductions: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    employer_tax_items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    employer_contribution_items: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    gross_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_taxes: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0")
    )
    net_pay: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    employer_taxes: Mapped[Decimal] = mapped_column(Money(), nullable=False, default=Decimal("0"))
    employer_contributions: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0")
    )
    total_employer_cost: Mapped[Decimal] = mapped_column(
        Money(), nullable=False, default=Decimal("0")
    )
    row_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "person_type IN ('employee', 'contractor')",
            name="payroll_line_person_type_check",
        ),
        Index("uq_payroll_line_run_person", "run_id", "person_id", unique=True),
    )

    run: Mapped[PayrollRun] = relationship(back_populates="lines")


# ===== History =====


class PayrollRunAudit(Base, TimestampMixin):
    """Append-only record of every run transition."""

    __tablename__ = "payroll_run_audit"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String, nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)


class AnomalyLog(Base):
    """Optional durable anomaly history, keyed by (run, person, detected_at)."""

    __tablename__ = "anomaly_log"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.id", ondelete="CASCADE"),
        nullable=False,
    )
    person_id: Mapped[UUID] = mapped_column(nullable=False)
    detected_at: Mapped[datetime] = mapped_column(nullable=False)
    calculation_version: Mapped[int] = mapped_column(Integer, nullable=False)
    anomaly_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (
        Index("ix_anomaly_log_run_person_detected", "run_id", "person_id", "detected_at"),
    )
