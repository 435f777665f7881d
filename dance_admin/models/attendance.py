from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    MEDICAL_ABSENCE = "medicalAbsence"
    HOLIDAY = "holiday"


class AttendanceAttribute(str, Enum):
    LATE = "late"
    NO_SHOES = "noShoes"
    NOT_IN_UNIFORM = "notInUniform"


class AttendanceRecord(BaseModel):
    """One student's attendance on one date (stored under attendance/{yyyy-mm-dd})."""

    status: AttendanceStatus
    attributes: list[AttendanceAttribute] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    # Revision of the date document produced by the write that stored this record
    revision: int = 0
    # Ledger posting that accompanies this write; replayed until it is known to be applied
    origin_tag: Optional[str] = None
    fee_delta: int = 0

    def attribute_map(self) -> dict[str, bool]:
        return {a.value: True for a in self.attributes}


class AttendanceTombstone(BaseModel):
    """Left behind by a removal so the refund posting can be replayed."""

    revision: int
    origin_tag: Optional[str] = None
    fee_delta: int = 0
    removed_at: datetime = Field(default_factory=datetime.utcnow)


class AttendanceDay(BaseModel):
    """Value of the attendance/{yyyy-mm-dd} document."""

    records: dict[str, AttendanceRecord] = Field(default_factory=dict)
    removed: dict[str, AttendanceTombstone] = Field(default_factory=dict)


class AttendanceSnapshot(BaseModel):
    """Emitted by the attendance change feed for one date."""

    date: date
    revision: int
    records: dict[str, AttendanceRecord] = Field(default_factory=dict)
    deleted: bool = False


class AttendanceOutcome(BaseModel):
    """Result of one set/remove for a single student."""

    student_id: str
    date: date
    previous_status: Optional[AttendanceStatus] = None
    new_status: Optional[AttendanceStatus] = None
    previous_fee: int = 0
    new_fee: int = 0
    fee_delta: int = 0
    origin_tag: Optional[str] = None
    balance: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class BulkAttendanceReport(BaseModel):
    date: date
    status: AttendanceStatus
    outcomes: list[AttendanceOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[str]:
        return [o.student_id for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> dict[str, str]:
        return {o.student_id: o.error for o in self.outcomes if not o.succeeded}


class AttendanceSetRequest(BaseModel):
    status: str
    attributes: dict[str, bool] | list[str] = Field(default_factory=dict)


class AttendanceBulkRequest(BaseModel):
    student_ids: list[str]
    status: str
    attributes: dict[str, bool] | list[str] = Field(default_factory=dict)


class StudentAttendanceRow(BaseModel):
    """Eligible student joined with their record for one date (None when unmarked)."""

    student_id: str
    first_name: str = ""
    last_name: str = ""
    enrollment_status: str
    balance: int = 0
    attendance: Optional[AttendanceRecord] = None
