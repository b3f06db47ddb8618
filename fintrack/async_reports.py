import asyncio
from datetime import date
from typing import Any, Dict, List, Optional

from fintrack.analytics import expense_breakdown, fold_other, monthly_trend, savings_rate
from fintrack.domain import Transaction
from fintrack.filters import TransactionFilter
from fintrack.services import StatisticsService, TransactionService
from fintrack.transforms import expense_transactions, income_transactions


async def collect_transactions(
    service: TransactionService,
    filters: Optional[TransactionFilter] = None,
    page_size: int = 50,
    max_pages: int = 20,
) -> List[Transaction]:
    """Walk the paginated listing until the server reports no more pages."""
    out: List[Transaction] = []
    for page in range(1, max_pages + 1):
        result = await service.list_transactions(filters, page=page, page_size=page_size)
        out.extend(result.transactions)
        if not result.has_more:
            break
    return out


async def dashboard_snapshot(statistics: StatisticsService, months: int = 6) -> Dict[str, Any]:
    """Fetch all statistics endpoints concurrently."""
    summary, comparison, spending, trends, savings = await asyncio.gather(
        statistics.summary(),
        statistics.budget_comparison(),
        statistics.spending_by_category(),
        statistics.monthly_trends(months),
        statistics.savings_progress(),
    )
    return {
        "summary": summary,
        "budget_comparison": comparison,
        "spending_by_category": spending,
        "monthly_trends": trends,
        "savings_progress": savings,
    }


def local_dashboard(trans: List[Transaction], months: int = 6, today: Optional[date] = None,
                    top: int = 5) -> Dict[str, Any]:
    """Dashboard figures computed from already fetched transactions."""
    total_income = sum(t.amount for t in income_transactions(trans))
    total_expense = sum(t.amount for t in expense_transactions(trans))
    return {
        "total_income": total_income,
        "total_expense": total_expense,
        "balance": total_income - total_expense,
        "savings_rate": savings_rate(total_income, total_expense),
        "categories": fold_other(expense_breakdown(trans), top),
        "trend": monthly_trend(trans, months, today=today),
    }
