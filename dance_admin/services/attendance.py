"""
Attendance ledger.

Attendance for one date lives in a single ``attendance/{yyyy-mm-dd}`` document.
Every write stores the new record together with the ledger posting it implies
(``origin_tag`` and ``fee_delta``), commits the date document with a
conditional write, then posts to the student balance ledger. Because the
posting is recorded on the record first, a posting that never reached the
ledger is replayed by the next write on that record or by ``reconcile_date``;
the origin tag keeps the replay idempotent.
"""
from __future__ import annotations

import asyncio
import datetime
import locale
import logging
from collections import Counter
from typing import Any, Optional, Sequence, Union

from dance_admin.errors import EmptySelection, LedgerError, NotFound
from dance_admin.models.attendance import (
    AttendanceDay,
    AttendanceOutcome,
    AttendanceRecord,
    AttendanceSnapshot,
    AttendanceStatus,
    AttendanceTombstone,
    BulkAttendanceReport,
    StudentAttendanceRow,
)
from dance_admin.models.student import ELIGIBLE_STATUSES, Student
from dance_admin.persistence.gateway import PersistenceGateway, Predicate, StoredDocument, Subscription
from dance_admin.services import fees
from dance_admin.services.balances import STUDENTS, StudentBalanceLedger
from dance_admin.services.fees import DEFAULT_FEES, AttributeInput, FeeTable
from dance_admin.services.retry import RetryPolicy, check_cancelled, run_with_retries

logger = logging.getLogger(__name__)

ATTENDANCE = "attendance"
DIRECT_HOLIDAY_NOTE = "holiday status set outside a holiday declaration"

DateLike = Union[datetime.date, str]


def as_date(value: DateLike) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(value)


def origin_tag(day: datetime.date, student_id: str, revision: int) -> str:
    return f"attendance:({day.isoformat()},{student_id}):rev{revision}"


def _load_day(doc: Optional[StoredDocument]) -> AttendanceDay:
    return AttendanceDay.model_validate(doc.data) if doc else AttendanceDay()


def _name_key(student: Student) -> str:
    return locale.strxfrm(student.first_name.casefold())


class AttendanceWatch:
    """
    Change feed for one date, yielding ``AttendanceSnapshot`` objects.

    Wraps a store ``Subscription``; the listener is released when the
    ``async with`` block exits, on ``close()``, or when the watch is dropped.
    """

    def __init__(self, day: datetime.date, subscription: Subscription):
        self.day = day
        self._subscription = subscription

    @property
    def closed(self) -> bool:
        return self._subscription.closed

    def close(self) -> None:
        self._subscription.close()

    async def __aenter__(self) -> "AttendanceWatch":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> "AttendanceWatch":
        return self

    async def __anext__(self) -> AttendanceSnapshot:
        event = await self._subscription.__anext__()
        if event.deleted or event.data is None:
            return AttendanceSnapshot(date=self.day, revision=event.revision, deleted=True)
        records = AttendanceDay.model_validate(event.data).records
        return AttendanceSnapshot(date=self.day, revision=event.revision, records=records)


class AttendanceLedger:
    """Sole writer of attendance records; keeps student balances in step with them."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        ledger: StudentBalanceLedger,
        fee_table: FeeTable = DEFAULT_FEES,
        retry_policy: RetryPolicy = RetryPolicy(),
    ):
        self.gateway = gateway
        self.ledger = ledger
        self.fee_table = fee_table
        self.retry_policy = retry_policy

    def _fee(self, record: Optional[AttendanceRecord]) -> int:
        if record is None:
            return 0
        return fees.fee(record.status, record.attributes, self.fee_table)

    async def _settle(
        self,
        student_id: str,
        tag: Optional[str],
        delta: int,
        note: Optional[str] = None,
        retry: bool = True,
    ) -> Optional[int]:
        if not tag or delta == 0:
            return None
        return await self.ledger.post_delta(student_id, delta, tag, note, retry=retry)

    # ------------------------------------------------------------------ reads

    async def get_attendance_by_date(self, day: DateLike) -> dict[str, AttendanceRecord]:
        day = as_date(day)
        doc = await self.gateway.get(ATTENDANCE, day.isoformat())
        return _load_day(doc).records

    async def get_record(self, day: DateLike, student_id: str) -> Optional[AttendanceRecord]:
        return (await self.get_attendance_by_date(day)).get(student_id)

    async def list_eligible_students(self) -> list[Student]:
        students = await self.ledger.list_students(
            [Predicate("enrollment_status", "in", [s.value for s in ELIGIBLE_STATUSES])]
        )
        return sorted(students, key=_name_key)

    async def summary_for(self, day: DateLike) -> list[StudentAttendanceRow]:
        """Eligible roster joined with the day's attendance map."""
        records = await self.get_attendance_by_date(day)
        return [
            StudentAttendanceRow(
                student_id=s.student_id,
                first_name=s.first_name,
                last_name=s.last_name,
                enrollment_status=s.enrollment_status.value,
                balance=s.balance,
                attendance=records.get(s.student_id),
            )
            for s in await self.list_eligible_students()
        ]

    async def attendance_between(self, start: DateLike, end: DateLike) -> list[dict[str, Any]]:
        """Flat rows (date, student, status, attributes, fee) for dates in [start, end]."""
        start_key, end_key = as_date(start).isoformat(), as_date(end).isoformat()
        docs = await self.gateway.query(ATTENDANCE)
        names = {s.student_id: s.full_name for s in await self.ledger.list_students()}
        rows = []
        for doc in sorted(docs, key=lambda d: d.id):
            if not start_key <= doc.id <= end_key:
                continue
            for student_id, record in sorted(_load_day(doc).records.items()):
                rows.append(
                    {
                        "date": doc.id,
                        "student_id": student_id,
                        "student_name": names.get(student_id, ""),
                        "status": record.status.value,
                        "attributes": ", ".join(a.value for a in record.attributes),
                        "fee": self._fee(record),
                        "timestamp": record.timestamp,
                    }
                )
        return rows

    def watch_date(self, day: DateLike) -> AttendanceWatch:
        day = as_date(day)
        return AttendanceWatch(day, self.gateway.watch(ATTENDANCE, day.isoformat()))

    # ---------------------------------------------------------------- writes

    async def set_attendance(
        self,
        day: DateLike,
        student_id: str,
        status: Union[str, AttendanceStatus],
        attributes: AttributeInput = None,
        *,
        signal: Optional[asyncio.Event] = None,
        reason: Optional[str] = None,
    ) -> AttendanceOutcome:
        """
        Record a student's attendance and post the fee difference.

        ``reason`` annotates the posting. A ``holiday`` status written without
        one did not come from a holiday declaration and is flagged as such.
        """
        day = as_date(day)
        new_status = fees.parse_status(status)
        new_attributes = fees.normalize_attributes(attributes)
        key = day.isoformat()
        note = reason

        async def attempt() -> tuple[AttendanceOutcome, Optional[str]]:
            check_cancelled(signal, f"Attendance update for {student_id} on {key}")
            if await self.gateway.get(STUDENTS, student_id) is None:
                raise NotFound(f"Student {student_id} not found", {"student_id": student_id})

            doc = await self.gateway.get(ATTENDANCE, key)
            attendance = _load_day(doc)
            prev = attendance.records.get(student_id)
            if prev is not None:
                await self._settle(student_id, prev.origin_tag, prev.fee_delta, retry=False)
            tombstone = attendance.removed.pop(student_id, None)
            if tombstone is not None:
                await self._settle(student_id, tombstone.origin_tag, tombstone.fee_delta, retry=False)

            prev_fee = self._fee(prev)
            new_fee = fees.fee(new_status, new_attributes, self.fee_table)
            d = new_fee - prev_fee
            revision = (doc.revision if doc else 0) + 1
            tag = origin_tag(day, student_id, revision) if d else None
            attendance.records[student_id] = AttendanceRecord(
                status=new_status,
                attributes=new_attributes,
                revision=revision,
                origin_tag=tag,
                fee_delta=d,
            )

            check_cancelled(signal, f"Attendance update for {student_id} on {key}")
            await self.gateway.set_if_revision(
                ATTENDANCE,
                key,
                attendance.model_dump(mode="json"),
                doc.revision if doc else None,
            )
            outcome = AttendanceOutcome(
                student_id=student_id,
                date=day,
                previous_status=prev.status if prev else None,
                new_status=new_status,
                previous_fee=prev_fee,
                new_fee=new_fee,
                fee_delta=d,
                origin_tag=tag,
            )
            posting_note = note
            if (
                new_status == AttendanceStatus.HOLIDAY
                and reason is None
                and prev is not None
                and prev.status != AttendanceStatus.HOLIDAY
            ):
                logger.warning(
                    f"{student_id} on {key} set to holiday outside a holiday declaration; "
                    f"fee of {prev_fee} dropped without a holiday credit"
                )
                posting_note = DIRECT_HOLIDAY_NOTE
            return outcome, posting_note

        outcome, posting_note = await run_with_retries(
            attempt, self.retry_policy, f"Set attendance {student_id} on {key}"
        )
        logger.info(
            f"Attendance {student_id} on {key}: {outcome.previous_status and outcome.previous_status.value} -> "
            f"{new_status.value} (fee {outcome.previous_fee} -> {outcome.new_fee})"
        )
        # The record is committed; the posting must follow it even if the caller goes away
        outcome.balance = await asyncio.shield(
            self._settle(student_id, outcome.origin_tag, outcome.fee_delta, posting_note)
        )
        return outcome

    async def remove_attendance(
        self,
        day: DateLike,
        student_id: str,
        *,
        signal: Optional[asyncio.Event] = None,
    ) -> AttendanceOutcome:
        """Delete the record and refund its full fee."""
        day = as_date(day)
        key = day.isoformat()

        async def attempt() -> AttendanceOutcome:
            check_cancelled(signal, f"Attendance removal for {student_id} on {key}")
            doc = await self.gateway.get(ATTENDANCE, key)
            attendance = _load_day(doc)
            prev = attendance.records.pop(student_id, None)
            if prev is None:
                raise NotFound(
                    f"No attendance for {student_id} on {key}",
                    {"student_id": student_id, "date": key},
                )
            await self._settle(student_id, prev.origin_tag, prev.fee_delta, retry=False)

            prev_fee = self._fee(prev)
            revision = doc.revision + 1
            tag = origin_tag(day, student_id, revision) if prev_fee else None
            attendance.removed[student_id] = AttendanceTombstone(
                revision=revision,
                origin_tag=tag,
                fee_delta=-prev_fee,
            )

            check_cancelled(signal, f"Attendance removal for {student_id} on {key}")
            await self.gateway.set_if_revision(
                ATTENDANCE, key, attendance.model_dump(mode="json"), doc.revision
            )
            return AttendanceOutcome(
                student_id=student_id,
                date=day,
                previous_status=prev.status,
                previous_fee=prev_fee,
                fee_delta=-prev_fee,
                origin_tag=tag,
            )

        outcome = await run_with_retries(attempt, self.retry_policy, f"Remove attendance {student_id} on {key}")
        logger.info(f"Removed attendance for {student_id} on {key} (refund {outcome.previous_fee})")
        outcome.balance = await asyncio.shield(
            self._settle(student_id, outcome.origin_tag, outcome.fee_delta)
        )
        return outcome

    async def set_attendance_bulk(
        self,
        day: DateLike,
        student_ids: Sequence[str],
        status: Union[str, AttendanceStatus],
        attributes: AttributeInput = None,
        *,
        signal: Optional[asyncio.Event] = None,
    ) -> BulkAttendanceReport:
        """
        Apply the same attendance to many students, one student at a time.

        Returns a report with an outcome per student. If no student succeeded,
        the most frequent failure is raised with the report attached as
        ``error.report``.
        """
        day = as_date(day)
        if not student_ids:
            raise EmptySelection("No students selected")
        new_status = fees.parse_status(status)
        new_attributes = fees.normalize_attributes(attributes)

        report = BulkAttendanceReport(date=day, status=new_status)
        errors: dict[str, LedgerError] = {}
        for student_id in dict.fromkeys(student_ids):
            try:
                outcome = await self.set_attendance(
                    day, student_id, new_status, new_attributes, signal=signal
                )
            except LedgerError as e:
                logger.error(f"Bulk attendance for {student_id} on {day.isoformat()} failed: {e}")
                errors[student_id] = e
                outcome = AttendanceOutcome(
                    student_id=student_id,
                    date=day,
                    new_status=new_status,
                    error=e.message,
                    error_code=e.code.value,
                )
            report.outcomes.append(outcome)

        logger.info(
            f"Bulk attendance on {day.isoformat()}: {len(report.succeeded)} succeeded, {len(errors)} failed"
        )
        if errors and not report.succeeded:
            dominant, _ = Counter(type(e) for e in errors.values()).most_common(1)[0]
            error = next(e for e in errors.values() if type(e) is dominant)
            error.report = report
            raise error
        return report

    async def reconcile_date(self, day: DateLike) -> list[str]:
        """Replay postings recorded on a date that never reached the ledger. Returns their tags."""
        day = as_date(day)
        attendance = _load_day(await self.gateway.get(ATTENDANCE, day.isoformat()))
        pending = [(sid, r.origin_tag, r.fee_delta) for sid, r in attendance.records.items()]
        pending += [(sid, t.origin_tag, t.fee_delta) for sid, t in attendance.removed.items()]

        applied = []
        for student_id, tag, delta in pending:
            if not tag or delta == 0:
                continue
            if await self.ledger.get_student(student_id) is None:
                logger.warning(f"Skipping posting {tag}: student {student_id} no longer exists")
                continue
            if await self.ledger.has_posting(student_id, tag):
                continue
            await self.ledger.post_delta(student_id, delta, tag)
            applied.append(tag)
        if applied:
            logger.info(f"Reconciled {len(applied)} pending postings on {day.isoformat()}")
        return applied
