"""Student roster entry with balance, holiday credits and ledger postings."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class EnrollmentStatus(str, Enum):
    ENROLLED = "Enrolled"
    PENDING_PAYMENT = "Pending Payment"
    INACTIVE = "Inactive"
    REMOVED = "Removed"


ELIGIBLE_STATUSES = (EnrollmentStatus.ENROLLED, EnrollmentStatus.PENDING_PAYMENT)


class PostingKind(str, Enum):
    CHARGE = "charge"
    REFUND = "refund"
    CREDIT_CONSUMPTION = "creditConsumption"


class LedgerPosting(BaseModel):
    """A single balance-changing event, keyed by its origin tag."""

    origin_tag: str
    kind: PostingKind
    amount: int  # always positive; the kind gives the sign
    balance_after: int
    posted_at: datetime = Field(default_factory=datetime.utcnow)
    note: Optional[str] = None

    @property
    def signed_amount(self) -> int:
        return self.amount if self.kind == PostingKind.CHARGE else -self.amount


class HolidayCredit(BaseModel):
    """
    Append-only audit entry for money given back because a date became a holiday.

    Invariants:
    - used_amount <= amount
    - used iff used_amount == amount
    """

    credit_id: str
    amount: int
    date: date
    holiday_name: str
    origin_tag: str  # attendance:(date,studentId) or payment:paymentId
    reason: str = ""
    used: bool = False
    used_amount: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    reissue_of: Optional[str] = None  # credit_id this entry re-issues
    payment_id: Optional[str] = None
    original_status: Optional[str] = None

    @model_validator(mode="after")
    def _check_usage(self):
        if self.amount < 0 or not 0 <= self.used_amount <= self.amount:
            raise ValueError("used_amount must lie between 0 and a non-negative amount")
        self.used = self.used_amount == self.amount
        return self

    @property
    def remaining(self) -> int:
        return self.amount - self.used_amount


class Student(BaseModel):
    """Student document (students/{studentId})."""

    student_id: str
    first_name: str = ""
    last_name: str = ""
    enrollment_status: EnrollmentStatus = EnrollmentStatus.PENDING_PAYMENT
    balance: int = 0  # positive owes, negative is credit
    holiday_credits: list[HolidayCredit] = Field(default_factory=list)
    postings: dict[str, LedgerPosting] = Field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_eligible(self) -> bool:
        return self.enrollment_status in ELIGIBLE_STATUSES

    def available_credit(self) -> int:
        return sum(c.remaining for c in self.holiday_credits if not c.used)

    def credits_for_origin(self, origin_tag: str) -> list[HolidayCredit]:
        return [c for c in self.holiday_credits if c.origin_tag == origin_tag]

    def posted_total(self) -> int:
        """Sum of all postings; equals balance for a student only ever touched by the ledger."""
        return sum(p.signed_amount for p in self.postings.values())


class StudentBalanceOut(BaseModel):
    student_id: str
    full_name: str
    balance: int
    available_credit: int


class ApplyCreditBody(BaseModel):
    amount: int


class ApplyCreditResult(BaseModel):
    student_id: str
    student_name: str
    applied_amount: int
    remaining_credit: int
    balance: int
