"""Wire models for the REST API.

Everything the server sends passes through these before it reaches the
domain layer, so type coercion happens once, here.
"""

import datetime as dt
import math
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

UNCATEGORIZED = "Uncategorized"


class ErrorBody(BaseModel):
    code: Optional[str] = None
    message: Optional[str] = None
    details: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def _code_to_str(cls, value):
        # some endpoints send 401 as a number
        return None if value is None else str(value)


class Meta(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    count: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = Field(default=None, alias="pageSize")
    total_count: Optional[int] = Field(default=None, alias="totalCount")
    has_more: Optional[bool] = Field(default=None, alias="hasMore")


class Envelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    data: Any = None
    error: Optional[ErrorBody] = None
    meta: Optional[Meta] = None


def parse_amount(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError("boolean is not an amount")
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        cleaned = value.replace(",", "").replace("$", "").strip()
        if not cleaned:
            raise ValueError("empty amount")
        result = float(cleaned)
    else:
        raise ValueError(f"unsupported amount type {type(value).__name__}")
    if not math.isfinite(result):
        raise ValueError("amount must be a finite number")
    return result


def parse_date(value: Any) -> dt.date:
    """Accept ISO strings, datetimes, epoch milliseconds and {year, month, day} objects."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a date")
    if isinstance(value, (int, float)):
        return dt.datetime.fromtimestamp(value / 1000, tz=dt.timezone.utc).date()
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("empty date")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return dt.datetime.fromisoformat(text).date()
        except ValueError:
            return dt.date.fromisoformat(text[:10])
    if isinstance(value, dict) and value.get("year"):
        return dt.date(int(value["year"]), int(value.get("month") or 1), int(value.get("day") or 1))
    raise ValueError(f"unsupported date value {value!r}")


def category_name(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("name")
    if value is None or (isinstance(value, str) and not value.strip()):
        return UNCATEGORIZED
    return str(value)


class TransactionRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    date: dt.date
    amount: float
    category: str = UNCATEGORIZED
    description: str = ""
    type: str

    @field_validator("id", mode="before")
    @classmethod
    def _id(cls, value):
        return str(value)

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value):
        return parse_date(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value):
        return parse_amount(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value):
        return category_name(value)

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value):
        return "" if value is None else str(value)

    @field_validator("type")
    @classmethod
    def _type(cls, value):
        lowered = value.lower()
        if lowered not in ("income", "expense"):
            raise ValueError("type must be 'income' or 'expense'")
        return lowered


class TransactionPayload(BaseModel):
    """Body for creating or updating a transaction; unset fields are not sent."""

    date: Optional[Union[dt.date, str]] = None
    amount: Optional[float] = None
    category: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None

    def to_json(self) -> dict:
        body = self.model_dump(exclude_none=True)
        if isinstance(body.get("date"), dt.date):
            body["date"] = body["date"].isoformat()
        return body
