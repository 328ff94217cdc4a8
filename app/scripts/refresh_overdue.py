"""
Mark unpaid student fees and instalments past their due date as OVERDUE.

Safe to rerun (idempotent): rows already OVERDUE, PAID or WAIVED are left alone.
Usage: python -m app.scripts.refresh_overdue [--as-of 2026-11-01] [--academic-year-id <uuid>]
"""

import argparse
import asyncio
import sys
from datetime import date
from typing import Optional
from uuid import UUID

from app.api.v1.fees.ledger import refresh_overdue_statuses
from app.core.exceptions import ServiceError
from app.db.session import AsyncSessionLocal, create_tables


async def refresh_overdue(as_of: date, academic_year_id: Optional[UUID]) -> None:
    await create_tables()
    async with AsyncSessionLocal() as session:
        result = await refresh_overdue_statuses(session, as_of, academic_year_id=academic_year_id)
    print(
        f"Overdue as of {result.as_of}: {result.student_fees_marked} student fee(s), "
        f"{result.monthly_dues_marked} instalment(s) marked."
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Mark past-due fees as OVERDUE")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Cut-off date (default: today)")
    parser.add_argument("--academic-year-id", type=UUID, default=None, help="Limit to one academic year")
    args = parser.parse_args()
    try:
        asyncio.run(refresh_overdue(args.as_of or date.today(), args.academic_year_id))
    except ServiceError as e:
        print(f"Overdue refresh failed: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
