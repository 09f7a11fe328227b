from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from app.crm.constants import CLOSED_STAGES


@dataclass(frozen=True)
class DashboardStats:
    total_customers: int = 0
    total_deals: int = 0
    open_deals: int = 0
    total_revenue: Decimal = Decimal("0")


def compute_stats(customer_count: int | None, deals: Iterable[dict[str, Any]]) -> DashboardStats:
    """Revenue sums every deal amount regardless of stage; open = not closed_*."""
    deals = list(deals)
    revenue = sum((Decimal(str(d.get("amount") or 0)) for d in deals), Decimal("0"))
    open_deals = sum(1 for d in deals if d.get("stage") not in CLOSED_STAGES)
    return DashboardStats(
        total_customers=customer_count or 0,
        total_deals=len(deals),
        open_deals=open_deals,
        total_revenue=revenue,
    )
