"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Requests
# ============================================================================


class RunCreate(BaseModel):
    """Schema for creating a payroll run."""

    period_id: UUID
    run_type: str = "regular"
    run_number: int | None = Field(default=None, ge=1)
    notes: str | None = None


class ApproveRequest(BaseModel):
    """Approval options; anomalies must be acknowledged explicitly."""

    acknowledge_anomalies: bool = False
    comment: str | None = None
    expected_calculation_version: int | None = Field(default=None, ge=0)


class VoidRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


# ============================================================================
# Payroll run schemas
# ============================================================================


class RunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    period_id: UUID
    run_type: str
    run_number: int
    status: str
    total_gross_pay: Decimal | None = None
    total_net_pay: Decimal | None = None
    total_employee_taxes: Decimal | None = None
    total_employee_deductions: Decimal | None = None
    total_employer_taxes: Decimal | None = None
    total_employer_contributions: Decimal | None = None
    employee_count: int | None = None
    anomaly_count: int
    anomalies_acknowledged: bool
    calculation_version: int
    calculated_at: datetime | None = None
    calculated_by: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    posted_at: datetime | None = None
    posted_by: str | None = None
    paid_at: datetime | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None
    journal_entry_id: UUID | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime


class LineResponse(BaseModel):
    """One person's computed line."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    person_id: UUID
    full_name: str
    person_type: str
    jurisdiction: str | None = None
    is_included: bool
    exclude_reason: str | None = None
    pay_type: str | None = None
    pay_rate: Decimal | None = None
    hours: Decimal | None = None
    base_pay: Decimal
    earnings: list[dict[str, Any]] = Field(default_factory=list)
    employee_taxes: list[dict[str, Any]] = Field(default_factory=list)
    deductions: list[dict[str, Any]] = Field(default_factory=list)
    employer_tax_items: list[dict[str, Any]] = Field(default_factory=list)
    employer_contribution_items: list[dict[str, Any]] = Field(default_factory=list)
    gross_pay: Decimal
    total_taxes: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    employer_taxes: Decimal
    employer_contributions: Decimal
    total_employer_cost: Decimal
    row_notes: str | None = None


class RunDetailResponse(RunResponse):
    lines: list[LineResponse] = Field(default_factory=list)


class RunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[RunResponse]
    total: int
    limit: int
    offset: int


class LineListResponse(BaseModel):
    items: list[LineResponse]
    total: int


class AnomalyResponse(BaseModel):
    """An advisory finding from the last calculation."""

    type: str
    severity: str
    message: str
    employee_id: UUID
    full_name: str
    previous_value: Decimal | None = None
    current_value: Decimal | None = None


class CalculationResponse(BaseModel):
    """Result of a calculate call: the updated run, its anomalies and lines."""

    run: RunResponse
    anomalies: list[AnomalyResponse]
    lines: list[LineResponse]


# ============================================================================
# Errors
# ============================================================================


class ErrorResponse(BaseModel):
    """Structured error body returned for every engine error."""

    detail: str
    code: str
    reason: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
