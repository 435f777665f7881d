"""Pydantic models for attendance, students, payments and holidays."""
from dance_admin.models.attendance import (
    AttendanceStatus,
    AttendanceAttribute,
    AttendanceRecord,
    AttendanceTombstone,
    AttendanceDay,
    AttendanceSnapshot,
    AttendanceOutcome,
    BulkAttendanceReport,
    AttendanceSetRequest,
    AttendanceBulkRequest,
    StudentAttendanceRow,
)
from dance_admin.models.student import (
    EnrollmentStatus,
    ELIGIBLE_STATUSES,
    PostingKind,
    LedgerPosting,
    HolidayCredit,
    Student,
    StudentBalanceOut,
    ApplyCreditBody,
    ApplyCreditResult,
)
from dance_admin.models.payment import Payment
from dance_admin.models.holiday import (
    HolidayKind,
    HolidayOut,
    HolidayDeclareRequest,
    AdjustmentKind,
    AdjustmentState,
    FeeAdjustmentPreview,
    ImpactRow,
    HolidayImpact,
    HolidayAdjustment,
    HolidayReport,
)

__all__ = [
    "AttendanceStatus",
    "AttendanceAttribute",
    "AttendanceRecord",
    "AttendanceTombstone",
    "AttendanceDay",
    "AttendanceSnapshot",
    "AttendanceOutcome",
    "BulkAttendanceReport",
    "AttendanceSetRequest",
    "AttendanceBulkRequest",
    "StudentAttendanceRow",
    "EnrollmentStatus",
    "ELIGIBLE_STATUSES",
    "PostingKind",
    "LedgerPosting",
    "HolidayCredit",
    "Student",
    "StudentBalanceOut",
    "ApplyCreditBody",
    "ApplyCreditResult",
    "Payment",
    "HolidayKind",
    "HolidayOut",
    "HolidayDeclareRequest",
    "AdjustmentKind",
    "AdjustmentState",
    "FeeAdjustmentPreview",
    "ImpactRow",
    "HolidayImpact",
    "HolidayAdjustment",
    "HolidayReport",
]
