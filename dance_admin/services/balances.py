"""
Student balance ledger: balance postings and holiday credits.

Balance, credits and the posting log live in the same student document, so
every operation here is one conditional write: it is either fully applied or
not applied at all. Postings are keyed by origin tag; replaying a tag is a
no-op, which makes redelivered change notifications and retries harmless.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Optional, Sequence, TypeVar

from dance_admin.errors import DuplicateOrigin, InsufficientCredit, InvalidAmount, NotFound
from dance_admin.models.student import (
    ApplyCreditResult,
    HolidayCredit,
    LedgerPosting,
    PostingKind,
    Student,
)
from dance_admin.persistence.gateway import Ordering, PersistenceGateway, Predicate, StoredDocument
from dance_admin.services.retry import RetryPolicy, run_with_retries

logger = logging.getLogger(__name__)

STUDENTS = "students"

T = TypeVar("T")


def _validate_amount(amount: Any) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmount(f"Amount must be a positive whole number of dollars, got {amount!r}")
    return amount


def load_student(doc: StoredDocument) -> Student:
    return Student.model_validate({**doc.data, "student_id": doc.id})


def dump_student(student: Student) -> dict[str, Any]:
    return student.model_dump(mode="json", exclude={"student_id"})


class StudentBalanceLedger:
    """Owns ``balance`` and ``holiday_credits`` of every student."""

    def __init__(self, gateway: PersistenceGateway, retry_policy: RetryPolicy = RetryPolicy()):
        self.gateway = gateway
        self.retry_policy = retry_policy

    # ------------------------------------------------------------------ reads

    async def get_student(self, student_id: str) -> Optional[Student]:
        doc = await self.gateway.get(STUDENTS, student_id)
        return load_student(doc) if doc else None

    async def require_student(self, student_id: str) -> Student:
        student = await self.get_student(student_id)
        if student is None:
            raise NotFound(f"Student {student_id} not found", {"student_id": student_id})
        return student

    async def list_students(
        self,
        predicates: Sequence[Predicate] = (),
        ordering: Ordering = (),
    ) -> list[Student]:
        docs = await self.gateway.query(STUDENTS, predicates, ordering)
        return [load_student(d) for d in docs]

    async def get_balance(self, student_id: str) -> int:
        return (await self.require_student(student_id)).balance

    async def get_holiday_credits(self, student_id: str) -> list[HolidayCredit]:
        return list((await self.require_student(student_id)).holiday_credits)

    async def available_credit(self, student_id: str) -> int:
        return (await self.require_student(student_id)).available_credit()

    async def postings(self, student_id: str) -> list[LedgerPosting]:
        student = await self.require_student(student_id)
        return sorted(student.postings.values(), key=lambda p: p.posted_at)

    async def has_posting(self, student_id: str, origin_tag: str) -> bool:
        return origin_tag in (await self.require_student(student_id)).postings

    async def holiday_credits_report(self) -> list[dict[str, Any]]:
        """Every holiday credit of every student, newest date first."""
        rows = []
        for student in await self.list_students():
            for credit in student.holiday_credits:
                rows.append(
                    {
                        "student_id": student.student_id,
                        "student_name": student.full_name,
                        **credit.model_dump(),
                        "remaining": credit.remaining,
                    }
                )
        rows.sort(key=lambda r: (r["date"], r["created_at"]), reverse=True)
        return rows

    # ---------------------------------------------------------------- writes

    async def _mutate(
        self,
        student_id: str,
        mutate: Callable[[Student], tuple[bool, T]],
        description: str,
        retry: bool = True,
    ) -> T:
        """
        Read-modify-conditional-write of one student, retried on conflicts.

        With ``retry=False`` a single attempt is made and conflicts propagate,
        for callers that already run inside their own retry loop.
        """

        async def attempt() -> T:
            doc = await self.gateway.get(STUDENTS, student_id)
            if doc is None:
                raise NotFound(f"Student {student_id} not found", {"student_id": student_id})
            student = load_student(doc)
            changed, result = mutate(student)
            if changed:
                await self.gateway.set_if_revision(STUDENTS, student_id, dump_student(student), doc.revision)
            return result

        if not retry:
            return await attempt()
        return await run_with_retries(attempt, self.retry_policy, description)

    async def _post(
        self,
        student_id: str,
        amount: int,
        origin_tag: str,
        kind: PostingKind,
        note: Optional[str],
        retry: bool = True,
    ) -> int:
        amount = _validate_amount(amount)

        def apply(student: Student) -> tuple[bool, int]:
            if origin_tag in student.postings:
                logger.info(f"Posting {origin_tag} already applied to {student_id}; skipping")
                return False, student.balance
            student.balance += amount if kind == PostingKind.CHARGE else -amount
            student.postings[origin_tag] = LedgerPosting(
                origin_tag=origin_tag,
                kind=kind,
                amount=amount,
                balance_after=student.balance,
                note=note,
            )
            return True, student.balance

        balance = await self._mutate(student_id, apply, f"{kind.value} {origin_tag}", retry)
        logger.info(f"Posted {kind.value} of {amount} to {student_id} ({origin_tag}); balance {balance}")
        return balance

    async def add_balance(
        self, student_id: str, amount: int, origin_tag: str, note: Optional[str] = None, *, retry: bool = True
    ) -> int:
        """Charge ``amount``. Returns the new balance; a repeated origin tag changes nothing."""
        return await self._post(student_id, amount, origin_tag, PostingKind.CHARGE, note, retry)

    async def reduce_balance(
        self, student_id: str, amount: int, origin_tag: str, note: Optional[str] = None, *, retry: bool = True
    ) -> int:
        """Refund ``amount``; the balance may go negative (credit)."""
        return await self._post(student_id, amount, origin_tag, PostingKind.REFUND, note, retry)

    async def post_delta(
        self, student_id: str, delta: int, origin_tag: str, note: Optional[str] = None, *, retry: bool = True
    ) -> Optional[int]:
        """Charge a positive delta, refund a negative one, do nothing for zero."""
        if delta > 0:
            return await self.add_balance(student_id, delta, origin_tag, note, retry=retry)
        if delta < 0:
            return await self.reduce_balance(student_id, -delta, origin_tag, note, retry=retry)
        return None

    async def record_holiday_credit(
        self,
        student_id: str,
        credit: HolidayCredit,
        *,
        reduce_balance: bool = False,
        allow_reissue: bool = False,
    ) -> HolidayCredit:
        """
        Append a holiday credit.

        With ``reduce_balance`` the matching refund is posted in the same write.
        A credit whose origin tag already exists raises DuplicateOrigin unless
        ``allow_reissue`` is set, in which case it is stored as a re-issue of
        the latest credit with that origin.
        """
        if credit.amount < 0:
            raise InvalidAmount(f"Credit amount cannot be negative, got {credit.amount}")

        def apply(student: Student) -> tuple[bool, HolidayCredit]:
            existing = student.credits_for_origin(credit.origin_tag)
            stored = credit
            if existing:
                if not allow_reissue:
                    raise DuplicateOrigin(
                        f"Holiday credit for {credit.origin_tag} already recorded for {student_id}",
                        {"student_id": student_id, "origin_tag": credit.origin_tag},
                    )
                stored = credit.model_copy(
                    update={
                        "credit_id": f"{credit.credit_id}-r{len(existing)}",
                        "reissue_of": existing[-1].credit_id,
                    }
                )
            student.holiday_credits.append(stored)
            if reduce_balance and stored.amount > 0:
                tag = f"holiday-credit:{stored.credit_id}"
                student.balance -= stored.amount
                student.postings[tag] = LedgerPosting(
                    origin_tag=tag,
                    kind=PostingKind.REFUND,
                    amount=stored.amount,
                    balance_after=student.balance,
                    note=stored.reason,
                )
            return True, stored

        stored = await self._mutate(student_id, apply, f"holiday credit {credit.origin_tag}")
        logger.info(
            f"Recorded holiday credit {stored.credit_id} of {stored.amount} for {student_id} "
            f"({stored.origin_tag}{', re-issue' if stored.reissue_of else ''})"
        )
        return stored

    async def consume_credits(
        self,
        student_id: str,
        amount: int,
        origin_tag: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        """
        Use ``amount`` dollars of holiday credit, oldest credit first, and lower
        the balance by the same amount. Returns the allocations made.
        """
        amount = _validate_amount(amount)
        tag = origin_tag or f"credit-use:{uuid.uuid4().hex}"

        def apply(student: Student) -> tuple[bool, list[dict[str, Any]]]:
            if tag in student.postings:
                return False, []
            available = student.available_credit()
            if available < amount:
                raise InsufficientCredit(
                    f"Cannot apply credit of ${amount} for {student.full_name or student_id}. "
                    f"Available holiday credit: ${available}",
                    {"student_id": student_id, "requested": amount, "available": available},
                )
            allocations = []
            remaining = amount
            open_credits = [c for c in student.holiday_credits if not c.used and c.remaining > 0]
            for credit in sorted(open_credits, key=lambda c: (c.date, c.created_at)):
                take = min(credit.remaining, remaining)
                credit.used_amount += take
                credit.used = credit.used_amount == credit.amount
                allocations.append({"credit_id": credit.credit_id, "amount": take})
                remaining -= take
                if remaining == 0:
                    break
            student.balance -= amount
            student.postings[tag] = LedgerPosting(
                origin_tag=tag,
                kind=PostingKind.CREDIT_CONSUMPTION,
                amount=amount,
                balance_after=student.balance,
            )
            return True, allocations

        allocations = await self._mutate(student_id, apply, f"consume credit {tag}")
        logger.info(f"Consumed {amount} of holiday credit for {student_id} across {len(allocations)} credits")
        return allocations

    async def apply_holiday_credit(self, student_id: str, amount: int) -> ApplyCreditResult:
        """Admin action: spend available holiday credit against the balance."""
        await self.consume_credits(student_id, amount)
        student = await self.require_student(student_id)
        return ApplyCreditResult(
            student_id=student_id,
            student_name=student.full_name,
            applied_amount=amount,
            remaining_credit=student.available_credit(),
            balance=student.balance,
        )
