from dataclasses import dataclass
from datetime import date
from typing import Callable, Dict, Iterable, Optional, Tuple

from fintrack.domain import Transaction

ALL = "all"
SORT_FIELDS = ("date", "amount")


@dataclass(frozen=True)
class TransactionFilter:
    type: str = ALL                     # "all", "income" or "expense"
    sort_by: Optional[str] = None       # "date" or "amount"
    sort_order: Optional[str] = None    # "asc" or "desc"
    from_date: Optional[date] = None
    to_date: Optional[date] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    category: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        """Query parameters for GET /api/v1/transactions; unset filters are left out."""
        params: Dict[str, str] = {}
        if self.type and self.type != ALL:
            params["type"] = self.type
        if self.sort_by:
            params["sortBy"] = self.sort_by
        if self.sort_order:
            params["sortOrder"] = self.sort_order
        if self.from_date:
            params["fromDate"] = self.from_date.isoformat()
        if self.to_date:
            params["toDate"] = self.to_date.isoformat()
        if self.min_amount is not None:
            params["minAmount"] = f"{self.min_amount:g}"
        if self.max_amount is not None:
            params["maxAmount"] = f"{self.max_amount:g}"
        if self.category:
            params["category"] = self.category
        return params


def by_type(kind: str):
    def _filter(t: Transaction) -> bool:
        return kind == ALL or t.type == kind

    return _filter


def by_category(category: str):
    def _filter(t: Transaction) -> bool:
        return t.category == category

    return _filter


def by_date_range(start: Optional[date], end: Optional[date]):
    def _filter(t: Transaction) -> bool:
        return (start is None or start <= t.date) and (end is None or t.date <= end)

    return _filter


def by_amount_range(low: Optional[float], high: Optional[float]):
    def _filter(t: Transaction) -> bool:
        return (low is None or low <= t.amount) and (high is None or t.amount <= high)

    return _filter


def predicates(f: TransactionFilter) -> Tuple[Callable[[Transaction], bool], ...]:
    preds = [by_type(f.type), by_date_range(f.from_date, f.to_date), by_amount_range(f.min_amount, f.max_amount)]
    if f.category:
        preds.append(by_category(f.category))
    return tuple(preds)


def apply_filter(trans: Iterable[Transaction], f: TransactionFilter) -> Tuple[Transaction, ...]:
    """Filter and sort already fetched transactions the way the server would."""
    preds = predicates(f)
    selected = [t for t in trans if all(p(t) for p in preds)]
    if f.sort_by:
        if f.sort_by not in SORT_FIELDS:
            raise ValueError(f"cannot sort by {f.sort_by!r}")
        selected.sort(key=lambda t: getattr(t, f.sort_by), reverse=(f.sort_order == "desc"))
    return tuple(selected)
