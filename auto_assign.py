import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from months import Month
from services import (
    CategoryMonth,
    LedgerService,
    NothingToAssign,
    get_active_budget_id,
    unit_of_work,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    category_id: int
    amount_cents: int
    reason: str  # "overspent" or "goal"


@dataclass(frozen=True)
class AutoAssignResult:
    total_cents: int
    category_count: int
    allocations: list[Allocation] = field(default_factory=list)


def plan_auto_assign(
    pool_cents: int, categories: Sequence[CategoryMonth]
) -> list[Allocation]:
    """Distribute ``pool_cents`` over ``categories`` without touching storage.

    Overspent categories are covered first, most negative first. Whatever is
    left funds goals, least funded (assigned / goal) first. Both sorts are
    stable, so ties keep the order of ``categories``.
    """
    pool = pool_cents
    assigned = {c.category_id: c.assigned_cents for c in categories}
    allocations: list[Allocation] = []

    def available(c: CategoryMonth) -> int:
        return assigned[c.category_id] + c.activity_cents

    overspent = sorted(
        (c for c in categories if available(c) < 0),
        key=available,
    )
    for c in overspent:
        if pool <= 0:
            break
        amount = min(-available(c), pool)
        assigned[c.category_id] += amount
        pool -= amount
        allocations.append(Allocation(c.category_id, amount, "overspent"))

    underfunded = sorted(
        (
            c
            for c in categories
            if c.goal_cents
            and c.goal_cents > 0
            and available(c) >= 0
            and assigned[c.category_id] < c.goal_cents
        ),
        key=lambda c: assigned[c.category_id] / c.goal_cents,
    )
    for c in underfunded:
        if pool <= 0:
            break
        amount = min(c.goal_cents - assigned[c.category_id], pool)
        assigned[c.category_id] += amount
        pool -= amount
        allocations.append(Allocation(c.category_id, amount, "goal"))

    return allocations


class AutoAssignService:
    def __init__(self, session: Session, budget_id: Optional[int] = None) -> None:
        self.session = session
        self.budget_id = budget_id or get_active_budget_id(session)
        self.ledger = LedgerService(session, self.budget_id)

    def preview(self, month: Month) -> list[Allocation]:
        pool = self.ledger.ready_to_assign(month)
        if pool <= 0:
            return []
        return plan_auto_assign(pool, self.ledger.month_summary(month))

    def run(self, month: Month) -> AutoAssignResult:
        pool = self.ledger.ready_to_assign(month)
        if pool <= 0:
            raise NothingToAssign("Nothing to assign")

        summary = self.ledger.month_summary(month)
        allocations = plan_auto_assign(pool, summary)
        current = {row.category_id: row.assigned_cents for row in summary}
        totals: dict[int, int] = {}
        for allocation in allocations:
            totals[allocation.category_id] = (
                totals.get(allocation.category_id, 0) + allocation.amount_cents
            )

        with unit_of_work(self.session):
            for category_id, amount in totals.items():
                self.ledger._put_assignment(
                    month, category_id, current[category_id] + amount
                )

        result = AutoAssignResult(
            total_cents=sum(totals.values()),
            category_count=len(totals),
            allocations=allocations,
        )
        logger.info(
            f"auto_assign: month={month} pool_cents={pool} "
            f"assigned_cents={result.total_cents} categories={result.category_count}"
        )
        return result
