"""Advisory anomaly rules applied to computed lines."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from payrun_engine.calculators.types import ZERO

HUNDRED = Decimal("100")


class AnomalyType(str, Enum):
    MISSING_RATE = "missing-rate"
    LARGE_DELTA = "large-delta"
    NEGATIVE_NET = "negative-net"
    ZERO_HOURS_PAID = "zero-hours-paid"


class AnomalySeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True)
class Anomaly:
    """A non-blocking finding for one person's line."""

    type: AnomalyType
    severity: AnomalySeverity
    message: str
    employee_id: UUID
    full_name: str
    previous_value: Decimal | None = None
    current_value: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "message": self.message,
            "employee_id": str(self.employee_id),
            "full_name": self.full_name,
            "previous_value": str(self.previous_value) if self.previous_value is not None else None,
            "current_value": str(self.current_value) if self.current_value is not None else None,
        }


class AnomalyDetector:
    """Evaluates each rule independently; a line may trip several.

    Works on anything shaped like a line (calculator results or stored
    ``PayrollLine`` rows). Excluded lines never produce anomalies. Results
    depend only on the line and the prior net pay passed in.
    """

    def __init__(self, large_delta_percent: Decimal = Decimal("25")):
        self.large_delta_percent = large_delta_percent

    def detect(self, line: Any, previous_net_pay: Decimal | None = None) -> list[Anomaly]:
        if not line.is_included:
            return []

        anomalies: list[Anomaly] = []
        for check in (
            self._missing_rate,
            self._large_delta,
            self._negative_net,
            self._zero_hours_paid,
        ):
            anomaly = check(line, previous_net_pay)
            if anomaly is not None:
                anomalies.append(anomaly)
        return anomalies

    def _anomaly(self, line: Any, kind: AnomalyType, severity: AnomalySeverity,
                 message: str, previous: Decimal | None = None,
                 current: Decimal | None = None) -> Anomaly:
        return Anomaly(
            type=kind,
            severity=severity,
            message=message,
            employee_id=line.person_id,
            full_name=line.full_name,
            previous_value=previous,
            current_value=current,
        )

    def _missing_rate(self, line: Any, previous_net_pay: Decimal | None) -> Anomaly | None:
        if line.pay_rate:
            return None
        return self._anomaly(
            line,
            AnomalyType.MISSING_RATE,
            AnomalySeverity.WARNING,
            f"{line.full_name} has no pay rate",
        )

    def _large_delta(self, line: Any, previous_net_pay: Decimal | None) -> Anomaly | None:
        # No comparison without a non-zero prior figure
        if previous_net_pay is None or previous_net_pay == ZERO:
            return None

        net_pay = line.net_pay
        change = abs(net_pay - previous_net_pay) / abs(previous_net_pay) * HUNDRED
        if change <= self.large_delta_percent:
            return None

        direction = "increased" if net_pay > previous_net_pay else "decreased"
        return self._anomaly(
            line,
            AnomalyType.LARGE_DELTA,
            AnomalySeverity.WARNING,
            f"Net pay {direction} by {change.quantize(Decimal('0.1'))}% "
            f"(from {previous_net_pay} to {net_pay})",
            previous=previous_net_pay,
            current=net_pay,
        )

    def _negative_net(self, line: Any, previous_net_pay: Decimal | None) -> Anomaly | None:
        if line.net_pay >= ZERO:
            return None
        return self._anomaly(
            line,
            AnomalyType.NEGATIVE_NET,
            AnomalySeverity.ERROR,
            f"Net pay is negative: {line.net_pay}",
            current=line.net_pay,
        )

    def _zero_hours_paid(self, line: Any, previous_net_pay: Decimal | None) -> Anomaly | None:
        if line.gross_pay <= ZERO:
            return None

        no_components = line.base_pay == ZERO and not line.earnings
        hourly_without_hours = line.pay_type == "hourly" and not line.hours
        if not (no_components or hourly_without_hours):
            return None

        return self._anomaly(
            line,
            AnomalyType.ZERO_HOURS_PAID,
            AnomalySeverity.ERROR,
            f"Gross pay {line.gross_pay} with no earnings or hours recorded",
            current=line.gross_pay,
        )
