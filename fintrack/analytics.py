"""Aggregations behind the dashboard and budget screens.

Every function here is pure: inputs are domain objects that already went
through `fintrack.transforms`, outputs are new immutable summaries.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from fintrack.domain import (
    EXPENSE,
    INCOME,
    BudgetComparisonSummary,
    BudgetItem,
    CategorySummary,
    MonthlyBucket,
    SavingsGoal,
    SavingsProgress,
    TopCategories,
    Transaction,
)
from fintrack.transforms import expense_transactions, transactions_frame

OTHER_LABEL = "Other"


def _percentage(amount: float, total: float) -> float:
    if total <= 0:
        return 0.0
    return amount / total * 100


def category_breakdown(
    items: Iterable[Tuple[str, float]], total_override: Optional[float] = None
) -> Tuple[CategorySummary, ...]:
    """Roll (category, amount) pairs up into summaries, largest first.

    The percentage base is the sum of all amounts unless `total_override` is
    given, e.g. when the caller knows overall spending beyond the visible
    items. A zero total yields 0% everywhere.
    """
    totals: Dict[str, float] = {}
    for category, amount in items:
        totals[category] = totals.get(category, 0.0) + float(amount)

    total = sum(totals.values()) if total_override is None else float(total_override)

    # sorted() is stable, ties keep first-seen order
    ordered = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    return tuple(
        CategorySummary(category=name, amount=amount, percentage=_percentage(amount, total))
        for name, amount in ordered
    )


def expense_breakdown(
    trans: Iterable[Transaction], total_override: Optional[float] = None
) -> Tuple[CategorySummary, ...]:
    return category_breakdown(
        ((t.category, t.amount) for t in expense_transactions(trans)), total_override
    )


def budget_breakdown(
    items: Iterable[BudgetItem], total_override: Optional[float] = None
) -> Tuple[CategorySummary, ...]:
    return category_breakdown(((i.label, i.actual) for i in items), total_override)


def top_n(breakdown: Sequence[CategorySummary], n: int) -> TopCategories:
    n = max(0, n)
    entries = tuple(breakdown[:n])
    return TopCategories(entries=entries, remaining=len(breakdown) - len(entries))


def fold_other(
    breakdown: Sequence[CategorySummary], n: int, label: str = OTHER_LABEL
) -> Tuple[CategorySummary, ...]:
    """Top n entries followed by one entry summing the rest (chart legends)."""
    head = top_n(breakdown, n)
    if not head.remaining:
        return head.entries
    tail = breakdown[len(head.entries):]
    other = CategorySummary(
        category=label,
        amount=sum(c.amount for c in tail),
        percentage=sum(c.percentage for c in tail),
    )
    return head.entries + (other,)


def savings_progress(goals: Iterable[SavingsGoal]) -> SavingsProgress:
    goals = tuple(goals)
    total_target = sum(g.target for g in goals)
    total_saved = sum(g.saved for g in goals)
    raw = total_saved / total_target * 100 if total_target > 0 else 0.0
    completed = sum(1 for g in goals if g.target > 0 and g.saved >= g.target)

    return SavingsProgress(
        total_target=total_target,
        total_saved=total_saved,
        total_remaining=total_target - total_saved,
        progress_percent=min(max(raw, 0.0), 100.0),
        raw_progress=raw,
        total_goals=len(goals),
        completed=completed,
    )


def _budget_amounts(item: Any) -> Tuple[float, float]:
    if isinstance(item, dict):
        return float(item["budgeted"]), float(item["actual"])
    return float(item.budgeted), float(item.actual)


def budget_difference(item: Any, kind: Optional[str] = None) -> float:
    """Signed budget gap where positive is always the good direction.

    expense: budgeted - actual (positive = under budget)
    income:  actual - budgeted (positive = target beaten)
    """
    if kind is None:
        kind = item.get("kind") if isinstance(item, dict) else getattr(item, "kind", None)
    budgeted, actual = _budget_amounts(item)
    if kind == EXPENSE:
        return budgeted - actual
    if kind == INCOME:
        return actual - budgeted
    raise ValueError(f"unknown budget kind {kind!r}")


def budget_comparison(items: Iterable[Any], kind: str) -> BudgetComparisonSummary:
    budgeted = 0.0
    actual = 0.0
    for item in items:
        b, a = _budget_amounts(item)
        budgeted += b
        actual += a

    return BudgetComparisonSummary(
        kind=kind,
        budgeted=budgeted,
        actual=actual,
        difference=budget_difference({"budgeted": budgeted, "actual": actual}, kind),
        performance=actual / budgeted if budgeted else 0.0,
    )


def net_budget(income_items: Iterable[Any], expense_items: Iterable[Any]) -> Dict[str, float]:
    income = budget_comparison(income_items, INCOME)
    expenses = budget_comparison(expense_items, EXPENSE)
    return {
        "budgeted": income.budgeted - expenses.budgeted,
        "actual": income.actual - expenses.actual,
    }


def savings_rate(total_income: float, total_expense: float) -> float:
    if total_income <= 0:
        return 0.0
    return (total_income - total_expense) / total_income * 100


def monthly_trend(
    trans: Iterable[Transaction], month_count: int, today: Optional[date] = None
) -> List[MonthlyBucket]:
    """Income and expense per calendar month for the last `month_count` months.

    Always returns `month_count` buckets, oldest first, ending with the month
    of `today`. Empty months are kept with zero totals.
    """
    if month_count <= 0:
        return []
    today = today or date.today()

    periods = pd.period_range(
        end=pd.Period(year=today.year, month=today.month, freq="M"),
        periods=month_count,
        freq="M",
    )
    keys = [str(p) for p in periods]

    df = transactions_frame(trans)
    df["key"] = df["month"].astype(str)
    window = df[df["key"].isin(keys)]
    sums = window.groupby(["key", "type"])["amount"].sum()
    totals = {k: float(v) for k, v in sums.items()}

    return [
        MonthlyBucket(
            key=key,
            label=period.strftime("%b"),
            income=totals.get((key, INCOME), 0.0),
            expense=totals.get((key, EXPENSE), 0.0),
        )
        for key, period in zip(keys, periods)
    ]
