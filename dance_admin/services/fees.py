"""Fee rules: attendance status and attributes to whole dollars."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Union

from dance_admin.errors import InvalidStatus
from dance_admin.models.attendance import AttendanceAttribute, AttendanceStatus

AttributeInput = Union[Mapping[str, bool], Iterable[Union[str, AttendanceAttribute]], None]

_STATUS_VALUES = ", ".join(s.value for s in AttendanceStatus)


@dataclass(frozen=True)
class FeeTable:
    absent: int = 5
    medical_absence: int = 0
    holiday: int = 0
    late: int = 1
    no_shoes: int = 1
    not_in_uniform: int = 1

    def attribute_fee(self, attribute: AttendanceAttribute) -> int:
        if attribute == AttendanceAttribute.LATE:
            return self.late
        if attribute == AttendanceAttribute.NO_SHOES:
            return self.no_shoes
        return self.not_in_uniform


DEFAULT_FEES = FeeTable()


def parse_status(status: Union[str, AttendanceStatus]) -> AttendanceStatus:
    """Validate a status from the UI. Lateness is an attribute, so "late" is rejected."""
    if isinstance(status, AttendanceStatus):
        return status
    if status == AttendanceAttribute.LATE.value:
        raise InvalidStatus(
            '"late" is an attribute, not a status; mark the student present with the late attribute',
            {"status": status},
        )
    try:
        return AttendanceStatus(status)
    except ValueError:
        raise InvalidStatus(
            f"Invalid attendance status. Must be one of: {_STATUS_VALUES}",
            {"status": status},
        )


def normalize_attributes(attributes: AttributeInput) -> list[AttendanceAttribute]:
    """Accept {"late": True, ...} or ["late", ...]; return a sorted, de-duplicated list."""
    if not attributes:
        return []
    if isinstance(attributes, Mapping):
        names = [name for name, enabled in attributes.items() if enabled]
    else:
        names = list(attributes)

    result: set[AttendanceAttribute] = set()
    for name in names:
        try:
            result.add(AttendanceAttribute(name))
        except ValueError:
            raise InvalidStatus(f"Unknown attendance attribute: {name}", {"attribute": name})
    return sorted(result, key=lambda a: a.value)


def fee(
    status: Optional[Union[str, AttendanceStatus]],
    attributes: AttributeInput = None,
    table: FeeTable = DEFAULT_FEES,
) -> int:
    """Fee for one attendance record. ``status=None`` means no record."""
    if status is None:
        return 0
    status = parse_status(status)
    if status == AttendanceStatus.ABSENT:
        return table.absent
    if status == AttendanceStatus.MEDICAL_ABSENCE:
        return table.medical_absence
    if status == AttendanceStatus.HOLIDAY:
        return table.holiday
    return sum(table.attribute_fee(a) for a in normalize_attributes(attributes))


def delta(
    prev_status: Optional[Union[str, AttendanceStatus]] = None,
    prev_attributes: AttributeInput = None,
    new_status: Optional[Union[str, AttendanceStatus]] = None,
    new_attributes: AttributeInput = None,
    table: FeeTable = DEFAULT_FEES,
) -> int:
    """Positive is a charge, negative a refund."""
    return fee(new_status, new_attributes, table) - fee(prev_status, prev_attributes, table)
