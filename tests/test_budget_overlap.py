from datetime import date
from decimal import Decimal

from budget_overlap import (
    AlertSeverity,
    BudgetWindow,
    ExpensePoint,
    alert_severity,
    compute_spent,
    overlap_group,
    percentage_used,
    ranges_intersect,
)


def window(id, amount, start, end, category_id=7) -> BudgetWindow:
    return BudgetWindow(
        id=id,
        amount_cents=amount * 100,
        start_date=start,
        end_date=end,
        category_id=category_id,
    )


def in_range(budget: BudgetWindow, expenses: list[ExpensePoint]) -> list[ExpensePoint]:
    return [e for e in expenses if budget.start_date <= e.date <= budget.end_date]


JAN = window(1, 100, date(2025, 1, 1), date(2025, 1, 31))
MID = window(2, 300, date(2025, 1, 15), date(2025, 2, 15))


def test_single_budget_sums_expenses_in_full() -> None:
    expenses = [
        ExpensePoint(1250, date(2025, 1, 3)),
        ExpensePoint(750, date(2025, 1, 31)),
    ]
    assert compute_spent(JAN, [JAN], expenses) == Decimal("20.00")


def test_overlapping_budgets_split_expense_by_cap() -> None:
    expenses = [ExpensePoint(4000, date(2025, 1, 20))]
    budgets = [JAN, MID]

    assert compute_spent(JAN, budgets, in_range(JAN, expenses)) == Decimal("10.00")
    assert compute_spent(MID, budgets, in_range(MID, expenses)) == Decimal("30.00")


def test_expense_outside_the_overlap_stays_with_its_budget() -> None:
    expenses = [ExpensePoint(4000, date(2025, 1, 5))]
    budgets = [JAN, MID]

    assert compute_spent(JAN, budgets, in_range(JAN, expenses)) == Decimal("40.00")
    assert compute_spent(MID, budgets, in_range(MID, expenses)) == Decimal("0.00")


def test_proration_conserves_the_expense_amount() -> None:
    yearly = window(3, 1200, date(2025, 1, 1), date(2025, 12, 31))
    budgets = [JAN, MID, yearly]
    expenses = [ExpensePoint(8000, date(2025, 1, 25))]

    shares = [compute_spent(b, budgets, in_range(b, expenses)) for b in budgets]

    assert shares == [Decimal("5.00"), Decimal("15.00"), Decimal("60.00")]
    assert sum(shares) == Decimal("80.00")


def test_shared_boundary_day_counts_as_overlap() -> None:
    first = window(1, 100, date(2025, 1, 1), date(2025, 1, 31))
    second = window(2, 100, date(2025, 1, 31), date(2025, 2, 28))
    expenses = [ExpensePoint(5000, date(2025, 1, 31))]

    assert ranges_intersect(first, second)
    assert compute_spent(first, [first, second], expenses) == Decimal("25.00")
    assert compute_spent(second, [first, second], expenses) == Decimal("25.00")


def test_different_category_buckets_never_overlap() -> None:
    food = window(1, 100, date(2025, 1, 1), date(2025, 1, 31), category_id=1)
    travel = window(2, 100, date(2025, 1, 1), date(2025, 1, 31), category_id=2)
    overall = window(3, 100, date(2025, 1, 1), date(2025, 1, 31), category_id=None)

    assert overlap_group(food, [food, travel, overall]) == []
    assert overlap_group(overall, [food, travel, overall]) == []


def test_uncategorized_budgets_overlap_each_other() -> None:
    a = window(1, 100, date(2025, 1, 1), date(2025, 1, 31), category_id=None)
    b = window(2, 100, date(2025, 1, 10), date(2025, 1, 20), category_id=None)

    assert overlap_group(a, [a, b]) == [b]


def test_inverted_range_overlaps_nothing() -> None:
    inverted = window(9, 100, date(2025, 1, 31), date(2025, 1, 1))

    assert not ranges_intersect(JAN, inverted)
    assert overlap_group(JAN, [JAN, inverted]) == []


def test_budget_is_not_in_its_own_overlap_group() -> None:
    assert overlap_group(JAN, [JAN]) == []


def test_zero_cap_total_contributes_nothing() -> None:
    a = BudgetWindow(1, 0, date(2025, 1, 1), date(2025, 1, 31), 7)
    b = BudgetWindow(2, 0, date(2025, 1, 1), date(2025, 1, 31), 7)

    assert compute_spent(a, [a, b], [ExpensePoint(1000, date(2025, 1, 2))]) == Decimal(
        "0.00"
    )


def test_shares_round_half_up_to_cents() -> None:
    a = window(1, 100, date(2025, 1, 1), date(2025, 1, 31))
    b = window(2, 200, date(2025, 1, 1), date(2025, 1, 31))
    expenses = [ExpensePoint(1000, date(2025, 1, 10))]

    assert compute_spent(a, [a, b], expenses) == Decimal("3.33")
    assert compute_spent(b, [a, b], expenses) == Decimal("6.67")

    even = window(2, 100, date(2025, 1, 1), date(2025, 1, 31))
    one_cent = [ExpensePoint(1, date(2025, 1, 10))]
    assert compute_spent(a, [a, even], one_cent) == Decimal("0.01")


def test_compute_spent_is_idempotent() -> None:
    budgets = [JAN, MID]
    expenses = in_range(JAN, [ExpensePoint(3333, date(2025, 1, 16))])

    assert compute_spent(JAN, budgets, expenses) == compute_spent(
        JAN, budgets, expenses
    )


def test_percentage_used_rounds_and_handles_zero_amount() -> None:
    assert percentage_used(Decimal("1"), Decimal("3")) == Decimal("33.33")
    assert percentage_used(Decimal("5"), Decimal("0")) == Decimal("0.00")


def test_alert_severity_tiers() -> None:
    amount = Decimal("100.00")

    assert alert_severity(Decimal("79.99"), amount) is None
    assert alert_severity(Decimal("80.00"), amount) is AlertSeverity.info
    assert alert_severity(Decimal("95.00"), amount) is AlertSeverity.warning
    assert alert_severity(Decimal("100.00"), amount) is AlertSeverity.warning
    assert alert_severity(Decimal("110.00"), amount) is AlertSeverity.critical


def test_alert_severity_uses_unrounded_ratio() -> None:
    # 89.996 % would round to 90.00 but is still below the warning tier.
    assert alert_severity(Decimal("899.96"), Decimal("1000.00")) is AlertSeverity.info
