import asyncio
import datetime

import pytest
from conftest import DAY, add_payment

from dance_admin.errors import Cancelled, ConfirmationRequired, Unavailable
from dance_admin.models.attendance import AttendanceStatus
from dance_admin.models.holiday import AdjustmentKind, AdjustmentState
from dance_admin.models.payment import Payment
from dance_admin.services.holidays import notes_mention_date, payment_applies_to

PAID_AT = datetime.datetime(2025, 3, 8, 17, 30)


@pytest.fixture
async def s4_state(attendance):
    await attendance.set_attendance(DAY, "u1", "absent", {})
    await attendance.set_attendance(DAY, "u2", "present", {"late": True})
    await attendance.set_attendance(DAY, "u3", "present", {})


async def balances(ledger, *ids):
    return {sid: await ledger.get_balance(sid) for sid in ids}


class TestDeclareHoliday:
    async def test_requires_confirmation(self, holidays, s4_state, ledger):
        with pytest.raises(ConfirmationRequired):
            await holidays.declare_holiday(DAY, "Local")
        assert not holidays.calendar.is_holiday(DAY)
        assert await ledger.get_balance("u1") == 5

    async def test_cancelled_before_start(self, holidays, s4_state):
        signal = asyncio.Event()
        signal.set()
        with pytest.raises(Cancelled):
            await holidays.declare_holiday(DAY, "Local", confirmed=True, signal=signal)
        assert not holidays.calendar.is_holiday(DAY)

    async def test_attendance_sweep(self, holidays, attendance, ledger, s4_state):
        assert await balances(ledger, "u1", "u2", "u3") == {"u1": 5, "u2": 1, "u3": 0}

        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)

        assert await balances(ledger, "u1", "u2", "u3") == {"u1": 0, "u2": 0, "u3": 0}
        expected = {"u1": 5, "u2": 1, "u3": 0}
        for student_id, amount in expected.items():
            (credit,) = await ledger.get_holiday_credits(student_id)
            assert credit.amount == amount
            assert credit.origin_tag == f"attendance:(2025-03-08,{student_id})"
            assert credit.holiday_name == "Local"
        records = await attendance.get_attendance_by_date(DAY)
        assert {r.status for r in records.values()} == {AttendanceStatus.HOLIDAY}
        assert report.calendar_change == "added"
        assert report.total_attendance_credit == 6
        assert all(a.state == AdjustmentState.APPLIED for a in report.adjustments)
        assert holidays.calendar.name_of(DAY) == "Local"

    async def test_rerun_is_a_no_op(self, holidays, ledger, s4_state):
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        before = await balances(ledger, "u1", "u2", "u3")

        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)

        assert await balances(ledger, "u1", "u2", "u3") == before
        assert report.calendar_change == "unchanged"
        assert {a.state for a in report.adjustments} == {AdjustmentState.SKIPPED_DUPLICATE}
        for student_id in ("u1", "u2", "u3"):
            assert len(await ledger.get_holiday_credits(student_id)) == 1

    async def test_rerun_after_payment_skips(self, holidays, ledger, s4_state):
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        await ledger.reduce_balance("u1", 3, "payment-recorded:p-later")
        assert await ledger.get_balance("u1") == -3

        await holidays.declare_holiday(DAY, "Local", confirmed=True)

        assert await ledger.get_balance("u1") == -3
        assert len(await ledger.get_holiday_credits("u1")) == 1

    async def test_payment_on_holiday_date(self, holidays, ledger, gateway):
        await add_payment(gateway, "pay-1", "u4", 10, PAID_AT)

        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)

        (credit,) = await ledger.get_holiday_credits("u4")
        assert credit.amount == 10
        assert credit.origin_tag == "payment:pay-1"
        assert credit.payment_id == "pay-1"
        assert await ledger.get_balance("u4") == -10
        assert report.total_payment_credit == 10

    async def test_payment_credit_not_issued_twice(self, holidays, ledger, gateway):
        await add_payment(gateway, "pay-1", "u4", 10, PAID_AT)
        await ledger.add_balance("u4", 10, "monthly-fee")
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert await ledger.get_balance("u4") == 0

        # Balance is back at zero, so a re-run re-issues the payment credit
        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        (adjustment,) = report.adjustments
        assert adjustment.reprocessed
        assert await ledger.get_balance("u4") == -10
        credits = await ledger.get_holiday_credits("u4")
        assert len(credits) == 2
        assert credits[1].reissue_of == credits[0].credit_id

        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert report.adjustments[0].state == AdjustmentState.SKIPPED_DUPLICATE
        assert await ledger.get_balance("u4") == -10

    async def test_failures_are_isolated_per_student(self, holidays, ledger, gateway, s4_state):
        original = gateway.set_if_revision

        async def u2_down(collection, id, *args, **kwargs):
            if collection == "students" and id == "u2":
                raise Unavailable("u2 shard down")
            return await original(collection, id, *args, **kwargs)

        gateway.set_if_revision = u2_down
        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        gateway.set_if_revision = original

        states = {a.student_id: a.state for a in report.adjustments}
        assert states == {
            "u1": AdjustmentState.APPLIED,
            "u2": AdjustmentState.FAILED,
            "u3": AdjustmentState.APPLIED,
        }
        assert "u2 shard down" in report.failed[0].cause
        assert await ledger.get_balance("u1") == 0
        assert await ledger.get_balance("u2") == 1

    async def test_rerun_finishes_row_left_charged_by_failed_run(self, holidays, attendance, ledger, gateway):
        await attendance.set_attendance(DAY, "u1", "absent")
        original = gateway.set_if_revision

        async def attendance_down(collection, *args, **kwargs):
            if collection == "attendance":
                raise Unavailable("attendance store unreachable")
            return await original(collection, *args, **kwargs)

        gateway.set_if_revision = attendance_down
        first = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        gateway.set_if_revision = original

        assert [(a.student_id, a.state) for a in first.adjustments] == [("u1", AdjustmentState.FAILED)]
        assert await ledger.get_balance("u1") == 5
        impact = await holidays.analyze_holiday_impact(DAY, "Local")
        assert impact.total_attendance_credit == 5

        second = await holidays.declare_holiday(DAY, "Local", confirmed=True)

        (adjustment,) = second.adjustments
        assert adjustment.state == AdjustmentState.APPLIED
        assert adjustment.resumed
        assert (await attendance.get_record(DAY, "u1")).status == AttendanceStatus.HOLIDAY
        assert await ledger.get_balance("u1") == 0
        (credit,) = await ledger.get_holiday_credits("u1")
        assert credit.amount == 5
        assert adjustment.credit_id == credit.credit_id

        third = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert third.adjustments[0].state == AdjustmentState.SKIPPED_DUPLICATE

    async def test_missing_student_is_reported(self, holidays, attendance, gateway):
        await attendance.set_attendance(DAY, "u1", "absent")
        await gateway.delete("students", "u1")
        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert report.failed[0].student_id == "u1"

    async def test_redeclare_with_new_name(self, holidays, ledger, attendance, s4_state):
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        await attendance.set_attendance(DAY, "u4", "absent")

        report = await holidays.declare_holiday(DAY, "Storm", confirmed=True)

        assert report.calendar_change == "renamed"
        assert holidays.calendar.name_of(DAY) == "Storm"
        (old,) = await ledger.get_holiday_credits("u1")
        assert old.holiday_name == "Local"
        (new,) = await ledger.get_holiday_credits("u4")
        assert new.holiday_name == "Storm"
        assert await ledger.get_balance("u4") == 0


class TestImpactAnalysis:
    async def test_dry_run_changes_nothing(self, holidays, ledger, gateway, s4_state):
        await add_payment(gateway, "pay-1", "u4", 10, PAID_AT)

        impact = await holidays.analyze_holiday_impact(DAY, "Local")

        assert impact.total_attendance_credit == 6
        assert impact.total_payment_credit == 10
        assert impact.total_credit == 16
        assert impact.student_count == 3
        assert {r.kind for r in impact.rows} == {AdjustmentKind.ATTENDANCE, AdjustmentKind.PAYMENT}
        assert "$16" in impact.message
        assert not holidays.calendar.is_holiday(DAY)
        assert await ledger.get_balance("u1") == 5
        assert await ledger.get_holiday_credits("u4") == []

    async def test_nothing_to_credit(self, holidays):
        impact = await holidays.analyze_holiday_impact(DAY)
        assert not impact.has_impact
        assert "Safe to mark as holiday" in impact.message

    async def test_already_credited_rows_are_flagged(self, holidays, s4_state):
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        impact = await holidays.analyze_holiday_impact(DAY, "Local")
        assert impact.total_credit == 0

    async def test_reissue_is_counted_like_the_declaration(self, holidays, ledger, gateway):
        await add_payment(gateway, "pay-1", "u4", 10, PAID_AT)
        await ledger.add_balance("u4", 10, "monthly-fee")
        await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert await ledger.get_balance("u4") == 0

        impact = await holidays.analyze_holiday_impact(DAY, "Local")
        (row,) = impact.rows
        assert row.already_credited and row.will_apply
        assert impact.total_payment_credit == 10
        report = await holidays.declare_holiday(DAY, "Local", confirmed=True)
        assert report.total_payment_credit == impact.total_payment_credit

        impact = await holidays.analyze_holiday_impact(DAY, "Local")
        (row,) = impact.rows
        assert not row.will_apply
        assert impact.total_credit == 0
        assert impact.student_count == 0
        assert "already issued" in impact.message


class TestPaymentAssociation:
    def make(self, **kwargs):
        data = {"payment_id": "p", "student_id": "u1", "amount": 5, "date": datetime.datetime(2025, 3, 1, 9)}
        data.update(kwargs)
        return Payment(**data)

    @pytest.mark.parametrize(
        "notes",
        [
            "Payment for 3/8/2025",
            "payment for 03/08/2025 - cash",
            "3/8/2025 payment",
            "Fee for 2025-03-08",
        ],
    )
    def test_legacy_notes_match(self, notes):
        assert notes_mention_date(notes, DAY)
        assert payment_applies_to(self.make(notes=notes), DAY)

    @pytest.mark.parametrize(
        "notes",
        [None, "", "Payment for 3/18/2025", "13/8/2025 payment", "monthly payment", "3/8/2025"],
    )
    def test_unrelated_notes(self, notes):
        assert not notes_mention_date(notes, DAY)

    def test_explicit_date_beats_notes(self):
        payment = self.make(notes="Payment for 3/8/2025", applies_to_date=datetime.date(2025, 3, 15))
        assert not payment_applies_to(payment, DAY)
        assert payment_applies_to(payment, datetime.date(2025, 3, 15))

    def test_payment_made_on_the_day(self):
        assert payment_applies_to(self.make(date=PAID_AT), DAY)

    async def test_sweep_uses_notes_for_legacy_rows(self, holidays, gateway, ledger):
        await add_payment(gateway, "legacy", "u4", 7, datetime.datetime(2025, 3, 1, 9), notes="Payment for 3/8/2025")
        await add_payment(gateway, "explicit", "u2", 4, datetime.datetime(2025, 3, 1, 9), applies_to_date=DAY)
        await add_payment(gateway, "other", "u1", 9, datetime.datetime(2025, 3, 1, 9), notes="March tuition")

        payments = await holidays.payments_for_date(DAY)

        assert {p.payment_id for p in payments} == {"legacy", "explicit"}


class TestRetroactive:
    async def test_credits_payments_only(self, holidays, attendance, ledger, gateway):
        await attendance.set_attendance(DAY, "u1", "holiday", reason="marked by hand")
        await add_payment(gateway, "pay-1", "u4", 10, PAID_AT)

        with pytest.raises(ConfirmationRequired):
            await holidays.retroactively_process_holiday(DAY, "Local")
        report = await holidays.retroactively_process_holiday(DAY, "Local", confirmed=True)

        assert report.calendar_change == "added"
        assert [a.kind for a in report.adjustments] == [AdjustmentKind.PAYMENT]
        assert await ledger.get_balance("u4") == -10
        assert await ledger.get_holiday_credits("u1") == []


async def test_preview_fee_adjustment(holidays):
    preview = holidays.preview_fee_adjustment(DAY, "absent")
    assert not preview.is_holiday
    assert preview.adjusted_fee == 5

    holidays.calendar.add_specific_holiday(DAY, "Local")
    preview = holidays.preview_fee_adjustment(DAY, "present", {"late": True, "noShoes": True})
    assert preview.is_holiday
    assert preview.original_fee == 2
    assert preview.adjusted_fee == 0
    assert preview.adjustment == -2
    assert preview.holiday_name == "Local"
