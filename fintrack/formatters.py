"""Display formatting for amounts, percentages and dates."""

from datetime import date, datetime
from typing import Union

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "KZT": "₸"}


def format_currency(amount: Union[float, int], currency: str = "USD") -> str:
    """Format an amount with two decimals and thousands separators.

    Example:
        >>> format_currency(1234.5)
        '$1,234.50'
        >>> format_currency(-20)
        '-$20.00'
    """
    symbol = CURRENCY_SYMBOLS.get(currency, currency + " ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def format_signed(amount: Union[float, int], currency: str = "USD") -> str:
    """Budget differences always show a sign: '+$20.00' or '-$50.00'."""
    prefix = "+" if amount >= 0 else ""
    return prefix + format_currency(amount, currency)


def format_percentage(value: float, decimals: int = 1) -> str:
    return f"{value:.{decimals}f}%"


def format_date(value: Union[str, date, datetime], style: str = "medium") -> str:
    """Human readable date; unparseable strings are returned unchanged."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return value
    if style == "short":
        return f"{value:%b} {value.day}, {value.year}"
    if style == "long":
        return f"{value:%A}, {value:%B} {value.day}, {value.year}"
    return f"{value:%B} {value.day}, {value.year}"
