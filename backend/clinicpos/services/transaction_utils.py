"""
Transaction helpers: payment normalization, invoice filenames, money math.
"""

import re
from collections.abc import MutableMapping
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, Tuple, Union
from zoneinfo import ZoneInfo

from clinicpos.core.config import settings

TWO_PLACES = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Lossless conversion of floats/ints/strings to Decimal; None -> 0"""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Not a number: {value!r}")


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def calculate_item_total(unit_price: Any, quantity: Any, discount_amount: Any = 0) -> Decimal:
    """unit_price * quantity - discount, never below zero"""
    total = to_decimal(unit_price) * to_decimal(quantity) - to_decimal(discount_amount)
    return quantize_money(max(total, Decimal("0")))


def calculate_transaction_totals(items: Iterable[Any], bill_discount: Any = 0) -> Tuple[Decimal, Decimal, Decimal]:
    """
    Totals for a list of items (objects or dicts with unit_price,
    quantity and discount_amount).

    Returns:
        (subtotal, item_discounts, total_amount) where
        subtotal = sum(unit_price * quantity) and
        total_amount = subtotal - item_discounts - bill_discount (not below 0)
    """
    subtotal = Decimal("0")
    item_discounts = Decimal("0")
    for item in items:
        subtotal += to_decimal(_get(item, "unit_price")) * to_decimal(_get(item, "quantity"))
        item_discounts += to_decimal(_get(item, "discount_amount"))
    total = subtotal - item_discounts - to_decimal(bill_discount)
    return quantize_money(subtotal), quantize_money(item_discounts), quantize_money(max(total, Decimal("0")))


def _get(data: Any, key: str) -> Any:
    if isinstance(data, MutableMapping):
        return data.get(key)
    return getattr(data, key, None)


def _set(data: Any, key: str, value: Any) -> None:
    if isinstance(data, MutableMapping):
        data[key] = value
    else:
        setattr(data, key, value)


def normalize_transaction_for_payment(data: Any) -> None:
    """
    A paid transaction is never a draft.

    When payment_status is "paid", type DRAFT becomes COMPLETED and status
    "draft" becomes "completed". Works on dicts (update payloads) and model
    instances, mutating in place; keys that are absent are never added.
    """
    if _get(data, "payment_status") != "paid":
        return
    if _get(data, "type") == "DRAFT":
        _set(data, "type", "COMPLETED")
    if _get(data, "status") == "draft":
        _set(data, "status", "completed")


def sanitize_customer_name(customer_name: str) -> str:
    name = re.sub(r"\s+", "_", customer_name or "")
    name = re.sub(r"[^a-zA-Z0-9_]", "", name)
    name = name.strip("_")
    name = re.sub(r"_+", "_", name)
    return name or "Customer"


def _parse_transaction_date(value: Union[datetime, date, str]) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError("Invalid transaction date provided for invoice filename")
    else:
        raise ValueError("Invalid transaction date provided for invoice filename")

    # Naive values are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_invoice_filename(
    transaction_number: str,
    customer_name: str,
    transaction_date: Union[datetime, date, str]) -> str:
    """
    TXN_CustomerName_DDMMYYYY.pdf

    The date is rendered in the business timezone (Asia/Singapore by default).

    >>> format_invoice_filename("TXN-001", "John Smith", "2026-01-22T10:30:00.000Z")
    'TXN-001_John_Smith_22012026.pdf'
    """
    local = _parse_transaction_date(transaction_date).astimezone(ZoneInfo(settings.BUSINESS_TIMEZONE))
    return f"{transaction_number}_{sanitize_customer_name(customer_name)}_{local.strftime('%d%m%Y')}.pdf"


def to_utc_naive(value: Any) -> Any:
    """Aware datetimes -> naive UTC, as stored in the database; other values unchanged"""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
