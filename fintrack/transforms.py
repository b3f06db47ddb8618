import json
import logging
from dataclasses import replace
from typing import Any, Iterable, Mapping, Tuple

import pandas as pd
from pydantic import ValidationError

from fintrack.domain import EXPENSE, INCOME, KINDS, BudgetItem, SavingsGoal, Transaction
from fintrack.errors import TransactionFormatError
from fintrack.schemas import TransactionRecord, parse_amount

logger = logging.getLogger(__name__)


def to_transaction(raw: Mapping[str, Any]) -> Transaction:
    """Turn one server record into a Transaction or raise TransactionFormatError."""
    if isinstance(raw, Transaction):
        return raw
    try:
        record = TransactionRecord.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or "record"
        record_id = raw.get("id") if isinstance(raw, Mapping) else None
        raise TransactionFormatError(record_id, field, first.get("msg", "invalid value")) from e
    return Transaction(
        id=record.id,
        date=record.date,
        amount=record.amount,
        category=record.category,
        description=record.description,
        type=record.type,
    )


def to_transactions(raws: Iterable[Mapping[str, Any]], skip_invalid: bool = False) -> Tuple[Transaction, ...]:
    out = []
    for raw in raws:
        try:
            out.append(to_transaction(raw))
        except TransactionFormatError as e:
            if not skip_invalid:
                raise
            logger.warning(f"Dropping malformed transaction: {e}")
    return tuple(out)


def _amount(raw: Mapping[str, Any], field: str) -> float:
    try:
        return parse_amount(raw.get(field, 0))
    except ValueError as e:
        raise TransactionFormatError(raw.get("id"), field, str(e)) from e


def to_budget_item(raw: Mapping[str, Any], kind: str) -> BudgetItem:
    if kind not in KINDS:
        raise ValueError(f"unknown budget kind {kind!r}")
    label = raw.get("source") if kind == INCOME else raw.get("category")
    label = label or raw.get("label") or raw.get("categoryName") or ""
    return BudgetItem(
        id=str(raw.get("id", raw.get("categoryId", ""))),
        label=str(label),
        budgeted=_amount(raw, "budgeted"),
        actual=_amount(raw, "actual"),
        kind=kind,
    )


def to_savings_goal(raw: Mapping[str, Any]) -> SavingsGoal:
    return SavingsGoal(
        id=str(raw.get("id", "")),
        category=str(raw.get("category") or raw.get("categoryName") or ""),
        target=_amount(raw, "target"),
        saved=_amount(raw, "saved"),
    )


def load_seed(path: str) -> Tuple[
    Tuple[Transaction, ...],
    Tuple[BudgetItem, ...],
    Tuple[BudgetItem, ...],
    Tuple[SavingsGoal, ...],
]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    transactions = to_transactions(data.get("transactions", []))
    income_items = tuple(to_budget_item(i, INCOME) for i in data.get("income", []))
    expense_items = tuple(to_budget_item(i, EXPENSE) for i in data.get("expenses", []))
    goals = tuple(to_savings_goal(g) for g in data.get("savings", []))

    return transactions, income_items, expense_items, goals


def add_budget_item(items: Tuple[BudgetItem, ...], item: BudgetItem) -> Tuple[BudgetItem, ...]:
    return items + (item,)


def update_budget_item(items: Tuple[BudgetItem, ...], item_id: str, **changes) -> Tuple[BudgetItem, ...]:
    # difference is a derived property, so it follows budgeted/actual automatically
    return tuple(replace(i, **changes) if i.id == item_id else i for i in items)


def remove_budget_item(items: Tuple[BudgetItem, ...], item_id: str) -> Tuple[BudgetItem, ...]:
    return tuple(filter(lambda i: i.id != item_id, items))


def add_savings_goal(goals: Tuple[SavingsGoal, ...], goal: SavingsGoal) -> Tuple[SavingsGoal, ...]:
    return goals + (goal,)


def update_savings_goal(goals: Tuple[SavingsGoal, ...], goal_id: str, **changes) -> Tuple[SavingsGoal, ...]:
    return tuple(replace(g, **changes) if g.id == goal_id else g for g in goals)


def remove_savings_goal(goals: Tuple[SavingsGoal, ...], goal_id: str) -> Tuple[SavingsGoal, ...]:
    return tuple(filter(lambda g: g.id != goal_id, goals))


def income_transactions(trans: Iterable[Transaction]) -> Tuple[Transaction, ...]:
    return tuple(filter(lambda t: t.type == INCOME, trans))


def expense_transactions(trans: Iterable[Transaction]) -> Tuple[Transaction, ...]:
    return tuple(filter(lambda t: t.type == EXPENSE, trans))


def transactions_frame(trans: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            "id": t.id,
            "date": pd.Timestamp(t.date),
            "amount": float(t.amount),
            "category": t.category,
            "type": t.type,
        }
        for t in trans
    ]
    df = pd.DataFrame(rows, columns=["id", "date", "amount", "category", "type"])
    df["date"] = pd.to_datetime(df["date"])
    df["month"] = df["date"].dt.to_period("M")
    return df
