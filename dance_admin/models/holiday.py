import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class HolidayKind(str, Enum):
    FIXED = "fixed"
    MOVING = "moving"
    MANUAL = "manual"


class HolidayOut(BaseModel):
    date: datetime.date
    name: str
    kind: HolidayKind


class HolidayDeclareRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    date: datetime.date
    name: Optional[str] = None
    confirmed: bool = False


class AdjustmentKind(str, Enum):
    ATTENDANCE = "attendance"
    PAYMENT = "payment"


class AdjustmentState(str, Enum):
    APPLIED = "applied"
    SKIPPED_DUPLICATE = "skippedDuplicate"
    FAILED = "failed"


class FeeAdjustmentPreview(BaseModel):
    is_holiday: bool
    original_fee: int
    adjusted_fee: int
    adjustment: int
    holiday_name: Optional[str] = None


class ImpactRow(BaseModel):
    """A student who would receive a credit if the date became a holiday."""

    student_id: str
    student_name: str = ""
    kind: AdjustmentKind
    origin_tag: str
    credit_amount: int
    current_status: Optional[str] = None
    current_attributes: list[str] = Field(default_factory=list)
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    already_credited: bool = False
    # False when declaring would skip the row as a duplicate
    will_apply: bool = True


class HolidayImpact(BaseModel):
    date: datetime.date
    holiday_name: str
    rows: list[ImpactRow] = Field(default_factory=list)
    total_attendance_credit: int = 0
    total_payment_credit: int = 0
    message: str = ""

    @property
    def has_impact(self) -> bool:
        return bool(self.rows)

    @property
    def total_credit(self) -> int:
        return self.total_attendance_credit + self.total_payment_credit

    @property
    def pending(self) -> list[ImpactRow]:
        return [r for r in self.rows if r.will_apply]

    @property
    def student_count(self) -> int:
        return len({r.student_id for r in self.pending})


class HolidayAdjustment(BaseModel):
    """Per-candidate line of a holiday declaration report."""

    student_id: str
    kind: AdjustmentKind
    origin_tag: str
    amount: int = 0
    state: AdjustmentState
    reprocessed: bool = False
    # Credit was recorded by an earlier run that failed before switching the row to holiday
    resumed: bool = False
    credit_id: Optional[str] = None
    payment_id: Optional[str] = None
    cause: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.state == AdjustmentState.APPLIED


class HolidayReport(BaseModel):
    date: datetime.date
    holiday_name: str
    calendar_change: str  # added | renamed | unchanged
    adjustments: list[HolidayAdjustment] = Field(default_factory=list)

    def _total(self, kind: AdjustmentKind) -> int:
        return sum(a.amount for a in self.adjustments if a.kind == kind and a.applied)

    @property
    def total_attendance_credit(self) -> int:
        return self._total(AdjustmentKind.ATTENDANCE)

    @property
    def total_payment_credit(self) -> int:
        return self._total(AdjustmentKind.PAYMENT)

    @property
    def failed(self) -> list[HolidayAdjustment]:
        return [a for a in self.adjustments if a.state == AdjustmentState.FAILED]

    @property
    def skipped(self) -> list[HolidayAdjustment]:
        return [a for a in self.adjustments if a.state == AdjustmentState.SKIPPED_DUPLICATE]

    def summary(self) -> str:
        applied = [a for a in self.adjustments if a.applied]
        total = self.total_attendance_credit + self.total_payment_credit
        return (
            f"Marked {self.date.isoformat()} as {self.holiday_name}. "
            f"Issued ${total} in holiday credits across {len(applied)} adjustments "
            f"(attendance: ${self.total_attendance_credit}, payments: ${self.total_payment_credit}); "
            f"{len(self.skipped)} skipped, {len(self.failed)} failed."
        )
