"""Wires the ledger services over one gateway."""
from dataclasses import dataclass

from dance_admin.config import Settings
from dance_admin.persistence.gateway import PersistenceGateway
from dance_admin.services.attendance import AttendanceLedger
from dance_admin.services.balances import StudentBalanceLedger
from dance_admin.services.calendar import HolidayCalendar
from dance_admin.services.holidays import HolidayReconciliationService


@dataclass
class Services:
    gateway: PersistenceGateway
    calendar: HolidayCalendar
    ledger: StudentBalanceLedger
    attendance: AttendanceLedger
    holidays: HolidayReconciliationService


def build_services(gateway: PersistenceGateway, settings: Settings) -> Services:
    retry_policy = settings.retry_policy()
    calendar = HolidayCalendar.from_settings(settings)
    ledger = StudentBalanceLedger(gateway, retry_policy)
    attendance = AttendanceLedger(gateway, ledger, settings.fee_table(), retry_policy)
    holidays = HolidayReconciliationService(
        gateway, ledger, attendance, calendar, default_name=settings.holiday_default_name
    )
    return Services(gateway, calendar, ledger, attendance, holidays)
