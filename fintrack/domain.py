from dataclasses import dataclass
from datetime import date
from typing import Optional, Tuple

INCOME = "income"
EXPENSE = "expense"
KINDS = (INCOME, EXPENSE)


@dataclass(frozen=True)
class Transaction:
    id: str
    date: date
    amount: float    # always positive, direction is carried by type
    category: str
    description: str = ""
    type: str = EXPENSE  # "income" or "expense"


@dataclass(frozen=True)
class BudgetItem:
    id: str
    label: str       # category for expenses, source for income
    budgeted: float
    actual: float
    kind: str = EXPENSE

    @property
    def difference(self) -> float:
        from fintrack.analytics import budget_difference
        return budget_difference(self, self.kind)


@dataclass(frozen=True)
class SavingsGoal:
    id: str
    category: str
    target: float
    saved: float

    @property
    def remaining(self) -> float:
        return self.target - self.saved

    @property
    def progress(self) -> float:
        if self.target <= 0:
            return 0.0
        return self.saved / self.target * 100


@dataclass(frozen=True)
class CategorySummary:
    category: str
    amount: float
    percentage: float


@dataclass(frozen=True)
class TopCategories:
    entries: Tuple[CategorySummary, ...]
    remaining: int   # for "+K more" labels


@dataclass(frozen=True)
class SavingsProgress:
    total_target: float
    total_saved: float
    total_remaining: float
    progress_percent: float  # clamped to [0, 100] for display
    raw_progress: float      # unclamped
    total_goals: int = 0
    completed: int = 0

    @property
    def exceeded(self) -> bool:
        return self.raw_progress > 100


@dataclass(frozen=True)
class BudgetComparisonSummary:
    kind: str
    budgeted: float
    actual: float
    difference: float
    performance: float  # actual / budgeted


@dataclass(frozen=True)
class MonthlyBucket:
    key: str     # "2025-01"
    label: str   # "Jan"
    income: float = 0.0
    expense: float = 0.0

    @property
    def balance(self) -> float:
        return self.income - self.expense


@dataclass(frozen=True)
class TransactionPage:
    transactions: Tuple[Transaction, ...]
    page: int
    page_size: int
    total_count: Optional[int] = None
    has_more: bool = False
