"""
Mark unpaid student fees past their due date as OVERDUE (and move fees whose due date was
pushed forward back to PENDING). Meant for a daily cron; safe to run any number of times.

Usage:
  python -m app.scripts.refresh_overdue
  python -m app.scripts.refresh_overdue --school-id 5b0e...
  python -m app.scripts.refresh_overdue --as-of 2025-06-01
"""

import argparse
import asyncio
from datetime import date
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy import select

from app.api.v1.student_fees.service import refresh_overdue
from app.api.v1.student_fees.schemas import RefreshOverdueResponse
from app.core.models import School
from app.db.session import AsyncSessionLocal, engine


async def run(
    school_id: Optional[UUID] = None,
    as_of: Optional[date] = None,
    session_factory=AsyncSessionLocal,
) -> Dict[UUID, RefreshOverdueResponse]:
    results = {}
    async with session_factory() as session:
        if school_id is not None:
            school_ids = [school_id]
        else:
            school_ids = list((await session.execute(select(School.id).order_by(School.name))).scalars().all())
        for sid in school_ids:
            result = await refresh_overdue(session, sid, today=as_of)
            results[sid] = result
            print(f"school {sid}: {result.marked_overdue} marked overdue, {result.restored_pending} back to pending")
    return results


async def _main(school_id: Optional[UUID], as_of: Optional[date]) -> None:
    await run(school_id, as_of)
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description="Refresh OVERDUE status of student fees")
    parser.add_argument("--school-id", type=UUID, default=None, help="Only this school (default: all)")
    parser.add_argument("--as-of", type=date.fromisoformat, default=None, help="Evaluate as of this date (default: today UTC)")
    args = parser.parse_args()
    asyncio.run(_main(args.school_id, args.as_of))


if __name__ == "__main__":
    main()
