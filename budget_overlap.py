"""Proportional spend attribution for budgets with overlapping windows.

A single expense can fall inside several budgets of the same category bucket
(a monthly and a yearly "Food" budget, say). Counting it fully against each
of them would double-count spending, so when more than one budget covers the
expense date the amount is split in proportion to the budgets' caps.

Everything here is pure: callers fetch budgets and expenses from the store
and pass them in.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Iterable, Optional, Sequence

CENT = Decimal("0.01")


@dataclass(frozen=True)
class BudgetWindow:
    id: int
    amount_cents: int
    start_date: date
    end_date: date
    category_id: Optional[int] = None


@dataclass(frozen=True)
class ExpensePoint:
    amount_cents: int
    date: date


class AlertSeverity(str, Enum):
    info = "info"
    warning = "warning"
    critical = "critical"


def same_category_bucket(a: BudgetWindow, b: BudgetWindow) -> bool:
    # None is its own bucket; it does not match every category.
    if a.category_id is None or b.category_id is None:
        return a.category_id is None and b.category_id is None
    return a.category_id == b.category_id


def is_valid_range(budget: BudgetWindow) -> bool:
    return budget.start_date <= budget.end_date


def ranges_intersect(a: BudgetWindow, b: BudgetWindow) -> bool:
    """Closed-interval intersection; ranges touching on one day overlap."""
    if not (is_valid_range(a) and is_valid_range(b)):
        return False
    return a.start_date <= b.end_date and a.end_date >= b.start_date


def covers_date(budget: BudgetWindow, day: date) -> bool:
    return budget.start_date <= day <= budget.end_date


def overlap_group(
    target: BudgetWindow, budgets: Iterable[BudgetWindow]
) -> list[BudgetWindow]:
    return [
        other
        for other in budgets
        if other.id != target.id
        and same_category_bucket(other, target)
        and ranges_intersect(other, target)
    ]


def covering_set(
    target: BudgetWindow, group: Sequence[BudgetWindow], day: date
) -> list[BudgetWindow]:
    """Budgets from ``target`` plus its overlap group that contain ``day``.

    Candidate expenses are prefiltered against the target's own range, so the
    target is always a member.
    """
    return [target] + [b for b in group if covers_date(b, day)]


def round_amount(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_spent(
    target: BudgetWindow,
    budgets: Iterable[BudgetWindow],
    expenses: Iterable[ExpensePoint],
) -> Decimal:
    """Amount of ``expenses`` attributable to ``target``, in major units.

    ``expenses`` must already be restricted to the target's date range and
    category bucket. The result is rounded half-up to two decimal places.
    """
    group = overlap_group(target, budgets)
    if not group:
        total_cents = Decimal(sum(e.amount_cents for e in expenses))
        return round_amount(total_cents / 100)

    total_cents = Decimal(0)
    for expense in expenses:
        covering = covering_set(target, group, expense.date)
        if len(covering) == 1:
            total_cents += expense.amount_cents
            continue
        cap_total = sum(b.amount_cents for b in covering)
        if cap_total == 0:
            continue
        share = Decimal(target.amount_cents) / Decimal(cap_total)
        total_cents += Decimal(expense.amount_cents) * share
    return round_amount(total_cents / 100)


def _usage_ratio(spent: Decimal, amount: Decimal) -> Decimal:
    if amount == 0:
        return Decimal(0)
    return spent / amount * 100


def percentage_used(spent: Decimal, amount: Decimal) -> Decimal:
    return round_amount(_usage_ratio(spent, amount))


def alert_severity(spent: Decimal, amount: Decimal) -> Optional[AlertSeverity]:
    # Tiers compare the unrounded ratio.
    if spent > amount:
        return AlertSeverity.critical
    used = _usage_ratio(spent, amount)
    if used >= 90:
        return AlertSeverity.warning
    if used >= 80:
        return AlertSeverity.info
    return None
