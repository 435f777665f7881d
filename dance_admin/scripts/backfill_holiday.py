"""
Mark a past date as a holiday and credit affected students.

    python -m dance_admin.scripts.backfill_holiday --date 2025-03-08 --name "Snow day"
    python -m dance_admin.scripts.backfill_holiday --date 2025-03-08 --dry-run
"""
import argparse
import asyncio
import datetime
import logging
from typing import Optional

from dance_admin.config import get_settings
from dance_admin.db import db_shutdown, db_startup
from dance_admin.main import configure_logging
from dance_admin.models.holiday import HolidayImpact, HolidayReport
from dance_admin.services.container import Services, build_services

logger = logging.getLogger(__name__)


async def backfill_holiday(
    day: datetime.date,
    name: Optional[str],
    services: Services,
    dry_run: bool = False,
) -> tuple[HolidayImpact, Optional[HolidayReport]]:
    """Print the impact of declaring ``day``; unless ``dry_run``, declare it."""
    impact = await services.holidays.analyze_holiday_impact(day, name)
    print(impact.message)
    for row in impact.rows:
        flag = ""
        if not row.will_apply:
            flag = " (already credited)"
        elif row.already_credited:
            flag = " (credited before)"
        print(f"  {row.kind.value:<10} {row.student_name or row.student_id:<30} ${row.credit_amount}{flag}")
    if dry_run:
        return impact, None

    report = await services.holidays.declare_holiday(day, name, confirmed=True)
    print(report.summary())
    for adjustment in report.failed:
        print(f"  FAILED {adjustment.student_id} {adjustment.origin_tag}: {adjustment.cause}")
    return impact, report


async def _run(day: datetime.date, name: Optional[str], dry_run: bool) -> int:
    settings = get_settings()
    gateway = await db_startup(settings)
    try:
        _, report = await backfill_holiday(day, name, build_services(gateway, settings), dry_run)
    finally:
        await db_shutdown(gateway)
    return 1 if report is not None and report.failed else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Declare a holiday retroactively and issue holiday credits.")
    parser.add_argument("--date", required=True, type=datetime.date.fromisoformat, help="YYYY-MM-DD")
    parser.add_argument("--name", default=None, help="Holiday name (defaults to HOLIDAY_DEFAULT_NAME)")
    parser.add_argument("--dry-run", action="store_true", help="Only show who would be credited")
    args = parser.parse_args(argv)

    configure_logging(get_settings())
    return asyncio.run(_run(args.date, args.name, args.dry_run))


if __name__ == "__main__":
    raise SystemExit(main())
