"""
Holiday reconciliation: turning a date into a holiday after the fact.

Declaring a holiday refunds every attendance fee charged on that date and
credits payments made for it, recording a holiday credit per student as the
audit trail. Each candidate carries an origin tag (``attendance:(date,id)`` or
``payment:id``); a candidate that already has a credit is skipped, so running
the same declaration twice changes nothing. An attendance row that has a credit
but still charges a fee was left behind by a failed run and is switched to
holiday without issuing another credit.
"""
from __future__ import annotations

import asyncio
import datetime
import logging
import re
import uuid
from typing import Awaitable, Optional, Union

from dance_admin.errors import ConfirmationRequired, DuplicateOrigin, LedgerError
from dance_admin.models.attendance import AttendanceRecord, AttendanceStatus
from dance_admin.models.holiday import (
    AdjustmentKind,
    AdjustmentState,
    FeeAdjustmentPreview,
    HolidayAdjustment,
    HolidayImpact,
    HolidayReport,
    ImpactRow,
)
from dance_admin.models.payment import Payment
from dance_admin.models.student import HolidayCredit, Student
from dance_admin.persistence.gateway import PersistenceGateway
from dance_admin.services import fees
from dance_admin.services.attendance import AttendanceLedger, DateLike, as_date
from dance_admin.services.balances import StudentBalanceLedger
from dance_admin.services.calendar import HolidayCalendar
from dance_admin.services.fees import AttributeInput
from dance_admin.services.retry import check_cancelled

logger = logging.getLogger(__name__)

PAYMENTS = "payments"
DEFAULT_HOLIDAY_NAME = "Manual Holiday"


def attendance_origin(day: datetime.date, student_id: str) -> str:
    return f"attendance:({day.isoformat()},{student_id})"


def payment_origin(payment_id: str) -> str:
    return f"payment:{payment_id}"


def date_renderings(day: datetime.date) -> list[str]:
    return [
        f"{day.month}/{day.day}/{day.year}",
        f"{day.month:02d}/{day.day:02d}/{day.year}",
        day.isoformat(),
    ]


def notes_mention_date(notes: Optional[str], day: datetime.date) -> bool:
    """Legacy association: "payment for 3/8/2025", "3/8/2025 payment", "fee for 2025-03-08"."""
    if not notes:
        return False
    for rendering in dict.fromkeys(date_renderings(day)):
        r = re.escape(rendering)
        pattern = rf"(?:payment for {r}|(?<![\d/-]){r} payment|fee for {r})(?![\d/-])"
        if re.search(pattern, notes, re.IGNORECASE):
            return True
    return False


def payment_applies_to(payment: Payment, day: datetime.date) -> bool:
    if payment.applies_to_date is not None:
        return payment.applies_to_date == day
    if payment.date.date() == day:
        return True
    return notes_mention_date(payment.notes, day)


def _reissue_due(student: Optional[Student], amount: int) -> bool:
    """A credited candidate is credited again only after the balance was reset to zero."""
    return student is not None and student.balance == 0 and amount > 0


class HolidayReconciliationService:
    def __init__(
        self,
        gateway: PersistenceGateway,
        ledger: StudentBalanceLedger,
        attendance: AttendanceLedger,
        calendar: HolidayCalendar,
        default_name: str = DEFAULT_HOLIDAY_NAME,
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.attendance = attendance
        self.calendar = calendar
        self.default_name = default_name

    def _fee(self, record: AttendanceRecord) -> int:
        return fees.fee(record.status, record.attributes, self.attendance.fee_table)

    async def payments_for_date(self, day: DateLike) -> list[Payment]:
        day = as_date(day)
        docs = await self.gateway.query(PAYMENTS)
        payments = [Payment.model_validate({**d.data, "payment_id": d.id}) for d in docs]
        return sorted(
            (p for p in payments if payment_applies_to(p, day)),
            key=lambda p: (p.date, p.payment_id),
        )

    # -------------------------------------------------------------- analysis

    def preview_fee_adjustment(
        self,
        day: DateLike,
        status: Union[str, AttendanceStatus],
        attributes: AttributeInput = None,
    ) -> FeeAdjustmentPreview:
        """Fee a record would carry on ``day`` and what a holiday takes off it."""
        day = as_date(day)
        original = fees.fee(status, attributes, self.attendance.fee_table)
        if not self.calendar.is_holiday(day):
            return FeeAdjustmentPreview(is_holiday=False, original_fee=original, adjusted_fee=original, adjustment=0)
        return FeeAdjustmentPreview(
            is_holiday=True,
            original_fee=original,
            adjusted_fee=0,
            adjustment=-original,
            holiday_name=self.calendar.name_of(day),
        )

    async def analyze_holiday_impact(self, day: DateLike, name: Optional[str] = None) -> HolidayImpact:
        """Dry run of ``declare_holiday``: who would be credited and how much. Writes nothing."""
        day = as_date(day)
        name = name or self.default_name
        students = {s.student_id: s for s in await self.ledger.list_students()}
        rows: list[ImpactRow] = []

        records = await self.attendance.get_attendance_by_date(day)
        for student_id, record in sorted(records.items()):
            amount = self._fee(record)
            if amount == 0:
                continue
            student = students.get(student_id)
            origin = attendance_origin(day, student_id)
            rows.append(
                ImpactRow(
                    student_id=student_id,
                    student_name=student.full_name if student else "",
                    kind=AdjustmentKind.ATTENDANCE,
                    origin_tag=origin,
                    credit_amount=amount,
                    current_status=record.status.value,
                    current_attributes=[a.value for a in record.attributes],
                    # A credited row that still charges a fee is finished by the declaration
                    already_credited=bool(student and student.credits_for_origin(origin)),
                )
            )

        for payment in await self.payments_for_date(day):
            student = students.get(payment.student_id)
            origin = payment_origin(payment.payment_id)
            credited = bool(student and student.credits_for_origin(origin))
            rows.append(
                ImpactRow(
                    student_id=payment.student_id,
                    student_name=payment.student_name or (student.full_name if student else ""),
                    kind=AdjustmentKind.PAYMENT,
                    origin_tag=origin,
                    credit_amount=payment.amount,
                    payment_id=payment.payment_id,
                    payment_method=payment.method,
                    notes=payment.notes,
                    already_credited=credited,
                    will_apply=not credited or _reissue_due(student, payment.amount),
                )
            )

        pending = [r for r in rows if r.will_apply]
        impact = HolidayImpact(
            date=day,
            holiday_name=name,
            rows=rows,
            total_attendance_credit=sum(r.credit_amount for r in pending if r.kind == AdjustmentKind.ATTENDANCE),
            total_payment_credit=sum(r.credit_amount for r in pending if r.kind == AdjustmentKind.PAYMENT),
        )
        if not rows:
            impact.message = f"No attendance records or payments found for {day.isoformat()}. Safe to mark as holiday."
        elif not pending:
            impact.message = (
                f"Holiday credits for {day.isoformat()} were already issued to {len(rows)} candidates. "
                "Safe to mark as holiday."
            )
        else:
            impact.message = (
                f"Warning: {impact.student_count} students will receive holiday credits totaling ${impact.total_credit}"
            )
            if impact.total_attendance_credit:
                impact.message += f" (Attendance fees: ${impact.total_attendance_credit})"
            if impact.total_payment_credit:
                impact.message += f" (Payments: ${impact.total_payment_credit})"
        return impact

    # ------------------------------------------------------------ declaring

    async def declare_holiday(
        self,
        day: DateLike,
        name: Optional[str] = None,
        *,
        confirmed: bool = False,
        signal: Optional[asyncio.Event] = None,
    ) -> HolidayReport:
        """
        Mark ``day`` as a holiday and credit every affected student.

        Refuses to run unless ``confirmed``. The calendar entry is committed
        first; after that each student is processed independently and failures
        are reported per entry rather than raised.
        """
        day = as_date(day)
        name = name or self.default_name
        if not confirmed:
            raise ConfirmationRequired(
                f"Declaring {day.isoformat()} a holiday must be confirmed",
                {"date": day.isoformat()},
            )
        check_cancelled(signal, f"Holiday declaration for {day.isoformat()}")

        change = self.calendar.add_specific_holiday(day, name)
        report = HolidayReport(date=day, holiday_name=name, calendar_change=change)

        records = await self.attendance.get_attendance_by_date(day)
        for student_id, record in sorted(records.items()):
            adjustment = await self._isolated(
                self._credit_attendance(day, student_id, record, name),
                student_id,
                AdjustmentKind.ATTENDANCE,
                attendance_origin(day, student_id),
            )
            report.adjustments.append(adjustment)
        report.adjustments.extend(await self._payment_sweep(day, name))

        logger.info(report.summary())
        return report

    async def retroactively_process_holiday(
        self,
        day: DateLike,
        name: Optional[str] = None,
        *,
        confirmed: bool = False,
    ) -> HolidayReport:
        """
        Credit payments for a date whose attendance was already switched to
        holiday row by row. Adds the date to the calendar if it is not a holiday yet.
        """
        day = as_date(day)
        if not confirmed:
            raise ConfirmationRequired(
                f"Reprocessing {day.isoformat()} as a holiday must be confirmed",
                {"date": day.isoformat()},
            )
        name = name or self.calendar.name_of(day) or self.default_name
        change = "unchanged"
        if not self.calendar.is_holiday(day):
            change = self.calendar.add_specific_holiday(day, name)
        report = HolidayReport(date=day, holiday_name=name, calendar_change=change)
        report.adjustments.extend(await self._payment_sweep(day, name))
        logger.info(report.summary())
        return report

    async def _payment_sweep(self, day: datetime.date, name: str) -> list[HolidayAdjustment]:
        adjustments = []
        for payment in await self.payments_for_date(day):
            adjustments.append(
                await self._isolated(
                    self._credit_payment(day, payment, name),
                    payment.student_id,
                    AdjustmentKind.PAYMENT,
                    payment_origin(payment.payment_id),
                    payment_id=payment.payment_id,
                )
            )
        return adjustments

    async def _isolated(
        self,
        work: Awaitable[HolidayAdjustment],
        student_id: str,
        kind: AdjustmentKind,
        origin: str,
        **extra,
    ) -> HolidayAdjustment:
        try:
            return await work
        except DuplicateOrigin:
            logger.info(f"Holiday credit {origin} for {student_id} recorded concurrently; skipping")
            return HolidayAdjustment(
                student_id=student_id, kind=kind, origin_tag=origin, state=AdjustmentState.SKIPPED_DUPLICATE, **extra
            )
        except LedgerError as e:
            logger.error(f"Holiday adjustment {origin} for {student_id} failed: {e}")
            cause = str(e)
        except Exception as e:
            logger.exception(f"Holiday adjustment {origin} for {student_id} failed unexpectedly")
            cause = f"{e.__class__.__name__}: {e}"
        return HolidayAdjustment(
            student_id=student_id, kind=kind, origin_tag=origin, state=AdjustmentState.FAILED, cause=cause, **extra
        )

    def _should_reissue(self, student: Student, origin: str, amount: int) -> bool:
        if _reissue_due(student, amount):
            logger.info(f"Re-issuing holiday credit {origin} for {student.student_id}: balance was reset to 0")
            return True
        logger.info(f"Holiday credit {origin} already issued to {student.student_id}; skipping")
        return False

    async def _credit_attendance(
        self,
        day: datetime.date,
        student_id: str,
        record: AttendanceRecord,
        name: str,
    ) -> HolidayAdjustment:
        origin = attendance_origin(day, student_id)
        student = await self.ledger.require_student(student_id)
        amount = self._fee(record)
        issued = student.credits_for_origin(origin)
        if issued and record.status != AttendanceStatus.HOLIDAY:
            # Credit recorded but the row was never switched; finish the step without a new credit
            logger.warning(f"Holiday credit {origin} for {student_id} exists but attendance is not holiday; completing")
            await self.attendance.set_attendance(day, student_id, AttendanceStatus.HOLIDAY, {}, reason=f"Holiday: {name}")
            return HolidayAdjustment(
                student_id=student_id,
                kind=AdjustmentKind.ATTENDANCE,
                origin_tag=origin,
                amount=amount,
                state=AdjustmentState.APPLIED,
                resumed=True,
                credit_id=issued[-1].credit_id,
            )

        reprocessed = False
        if issued:
            if not self._should_reissue(student, origin, amount):
                return HolidayAdjustment(
                    student_id=student_id,
                    kind=AdjustmentKind.ATTENDANCE,
                    origin_tag=origin,
                    state=AdjustmentState.SKIPPED_DUPLICATE,
                )
            reprocessed = True

        credit = await self.ledger.record_holiday_credit(
            student_id,
            HolidayCredit(
                credit_id=uuid.uuid4().hex,
                amount=amount,
                date=day,
                holiday_name=name,
                origin_tag=origin,
                reason=f"{name}: {record.status.value} fee of ${amount} refunded",
                original_status=record.status.value,
            ),
            allow_reissue=reprocessed,
        )
        if record.status != AttendanceStatus.HOLIDAY:
            # The status change posts the refund of the original fee
            await self.attendance.set_attendance(day, student_id, AttendanceStatus.HOLIDAY, {}, reason=f"Holiday: {name}")
        return HolidayAdjustment(
            student_id=student_id,
            kind=AdjustmentKind.ATTENDANCE,
            origin_tag=origin,
            amount=amount,
            state=AdjustmentState.APPLIED,
            reprocessed=reprocessed,
            credit_id=credit.credit_id,
        )

    async def _credit_payment(self, day: datetime.date, payment: Payment, name: str) -> HolidayAdjustment:
        origin = payment_origin(payment.payment_id)
        student = await self.ledger.require_student(payment.student_id)
        reprocessed = False
        if student.credits_for_origin(origin):
            if not self._should_reissue(student, origin, payment.amount):
                return HolidayAdjustment(
                    student_id=payment.student_id,
                    kind=AdjustmentKind.PAYMENT,
                    origin_tag=origin,
                    state=AdjustmentState.SKIPPED_DUPLICATE,
                    payment_id=payment.payment_id,
                )
            reprocessed = True

        credit = await self.ledger.record_holiday_credit(
            payment.student_id,
            HolidayCredit(
                credit_id=uuid.uuid4().hex,
                amount=payment.amount,
                date=day,
                holiday_name=name,
                origin_tag=origin,
                reason=f"{name}: payment of ${payment.amount} made for a holiday",
                payment_id=payment.payment_id,
            ),
            reduce_balance=True,
            allow_reissue=reprocessed,
        )
        return HolidayAdjustment(
            student_id=payment.student_id,
            kind=AdjustmentKind.PAYMENT,
            origin_tag=origin,
            amount=payment.amount,
            state=AdjustmentState.APPLIED,
            reprocessed=reprocessed,
            credit_id=credit.credit_id,
            payment_id=payment.payment_id,
        )
