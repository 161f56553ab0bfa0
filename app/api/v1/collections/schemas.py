"""Collection summary schemas (dashboard fee rollups)."""

from datetime import date
from typing import List

from pydantic import BaseModel, Field

from app.core.money import Money


class MonthlyCollection(BaseModel):
    month: str = Field(..., description="Calendar month as YYYY-MM")
    amount: Money


class CollectionSummary(BaseModel):
    start_date: date
    end_date: date
    total_paid: Money
    payments_this_month: Money
    total_pending: Money
    pending_count: int
    overdue_count: int
    overdue_amount: Money
    collection_rate: float = Field(..., description="Percent of billed amount collected, 0-100")
    monthly_collection: List[MonthlyCollection]
