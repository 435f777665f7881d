import datetime

import pytest

from dance_admin.errors import DuplicateOrigin, InsufficientCredit, InvalidAmount, NotFound, Unavailable
from dance_admin.models.student import HolidayCredit, PostingKind


def make_credit(credit_id, amount, day, origin=None):
    return HolidayCredit(
        credit_id=credit_id,
        amount=amount,
        date=day,
        holiday_name="Local",
        origin_tag=origin or f"attendance:({day.isoformat()},u1)",
    )


class TestPostings:
    async def test_add_and_reduce(self, ledger):
        assert await ledger.add_balance("u1", 5, "t1") == 5
        assert await ledger.reduce_balance("u1", 8, "t2") == -3
        assert await ledger.get_balance("u1") == -3

    async def test_repeated_origin_tag_is_a_no_op(self, ledger):
        await ledger.add_balance("u1", 5, "t1")
        assert await ledger.add_balance("u1", 5, "t1") == 5
        postings = await ledger.postings("u1")
        assert [p.origin_tag for p in postings] == ["t1"]

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    async def test_rejects_non_positive_amounts(self, ledger, amount):
        with pytest.raises(InvalidAmount):
            await ledger.add_balance("u1", amount, "t")

    async def test_unknown_student(self, ledger):
        with pytest.raises(NotFound):
            await ledger.add_balance("nobody", 1, "t")

    async def test_post_delta_zero_does_nothing(self, ledger):
        assert await ledger.post_delta("u1", 0, "t") is None
        assert await ledger.postings("u1") == []

    async def test_balance_equals_sum_of_postings(self, ledger):
        await ledger.add_balance("u1", 5, "a")
        await ledger.reduce_balance("u1", 2, "b")
        await ledger.record_holiday_credit("u1", make_credit("c1", 4, datetime.date(2025, 1, 2)))
        await ledger.consume_credits("u1", 3)
        student = await ledger.require_student("u1")
        assert student.balance == student.posted_total() == 0

    async def test_transient_outage_is_retried(self, ledger, gateway):
        gateway.fail_next("set_if_revision", Unavailable("timeout"), times=2)
        assert await ledger.add_balance("u1", 5, "t1") == 5

    async def test_outage_past_retry_budget_surfaces(self, ledger, gateway):
        gateway.fail_next("set_if_revision", Unavailable("timeout"), times=10)
        with pytest.raises(Unavailable):
            await ledger.add_balance("u1", 5, "t1")
        assert await ledger.get_balance("u1") == 0


class TestHolidayCredits:
    async def test_record_and_reject_duplicate_origin(self, ledger):
        day = datetime.date(2025, 3, 8)
        await ledger.record_holiday_credit("u1", make_credit("c1", 5, day))
        with pytest.raises(DuplicateOrigin):
            await ledger.record_holiday_credit("u1", make_credit("c2", 5, day))
        assert len(await ledger.get_holiday_credits("u1")) == 1

    async def test_reissue_links_previous_credit(self, ledger):
        day = datetime.date(2025, 3, 8)
        await ledger.record_holiday_credit("u1", make_credit("c1", 5, day))
        reissued = await ledger.record_holiday_credit("u1", make_credit("c2", 5, day), allow_reissue=True)
        assert reissued.reissue_of == "c1"
        assert reissued.credit_id != "c1"

    async def test_reduce_balance_posts_refund_in_same_write(self, ledger, gateway):
        writes = gateway.calls["set_if_revision"]
        credit = await ledger.record_holiday_credit(
            "u4", make_credit("p1", 10, datetime.date(2025, 3, 8), "payment:p1"), reduce_balance=True
        )
        assert gateway.calls["set_if_revision"] == writes + 1
        assert await ledger.get_balance("u4") == -10
        assert await ledger.has_posting("u4", f"holiday-credit:{credit.credit_id}")

    async def test_consume_is_fifo_by_date(self, ledger):
        await ledger.record_holiday_credit("u1", make_credit("late", 5, datetime.date(2025, 4, 1)))
        await ledger.record_holiday_credit("u1", make_credit("early", 3, datetime.date(2025, 2, 1)))

        allocations = await ledger.consume_credits("u1", 4)

        assert allocations == [{"credit_id": "early", "amount": 3}, {"credit_id": "late", "amount": 1}]
        credits = {c.credit_id: c for c in await ledger.get_holiday_credits("u1")}
        assert credits["early"].used and credits["early"].used_amount == 3
        assert not credits["late"].used and credits["late"].used_amount == 1
        assert await ledger.available_credit("u1") == 4
        assert await ledger.get_balance("u1") == -4
        postings = await ledger.postings("u1")
        assert postings[-1].kind == PostingKind.CREDIT_CONSUMPTION

    async def test_consume_more_than_available(self, ledger):
        await ledger.record_holiday_credit("u1", make_credit("c1", 2, datetime.date(2025, 2, 1)))
        with pytest.raises(InsufficientCredit):
            await ledger.consume_credits("u1", 3)
        assert await ledger.available_credit("u1") == 2

    async def test_consume_with_origin_tag_is_idempotent(self, ledger):
        await ledger.record_holiday_credit("u1", make_credit("c1", 5, datetime.date(2025, 2, 1)))
        await ledger.consume_credits("u1", 2, origin_tag="use-1")
        assert await ledger.consume_credits("u1", 2, origin_tag="use-1") == []
        assert await ledger.available_credit("u1") == 3

    async def test_apply_holiday_credit(self, ledger):
        await ledger.record_holiday_credit("u1", make_credit("c1", 5, datetime.date(2025, 2, 1)))
        result = await ledger.apply_holiday_credit("u1", 2)
        assert result.applied_amount == 2
        assert result.remaining_credit == 3
        assert result.balance == -2
        assert result.student_name == "alice Adams"

    async def test_credit_usage_invariant(self):
        with pytest.raises(ValueError):
            HolidayCredit(
                credit_id="c", amount=2, used_amount=3, date=datetime.date(2025, 1, 1),
                holiday_name="x", origin_tag="payment:p",
            )

    async def test_credits_report_lists_newest_first(self, ledger):
        await ledger.record_holiday_credit("u1", make_credit("a", 1, datetime.date(2025, 1, 2)))
        await ledger.record_holiday_credit("u2", make_credit("b", 2, datetime.date(2025, 5, 2), "payment:x"))
        rows = await ledger.holiday_credits_report()
        assert [r["credit_id"] for r in rows] == ["b", "a"]
        assert rows[0]["student_name"] == "Bob Brown"
        assert rows[0]["remaining"] == 2
