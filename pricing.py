"""
Order pricing for the Colombian store.

Totals are derived from the line items only: VAT at `settings.TAX_RATE`
rounded to whole pesos, and a flat shipping fee waived above
`settings.FREE_SHIPPING_MIN`.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel

import settings

Item = Union[BaseModel, Mapping[str, Any]]


def _field(item: Item, name: str):
    if isinstance(item, BaseModel):
        return getattr(item, name)
    return item[name]


def round_currency(amount: float) -> int:
    """Round half-up to the nearest whole currency unit."""
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_tax(items_price: float, rate: Optional[float] = None) -> int:
    if rate is None:
        rate = settings.TAX_RATE
    return round_currency(Decimal(str(items_price)) * Decimal(str(rate)))


def calculate_shipping(items_price: float) -> float:
    if items_price > settings.FREE_SHIPPING_MIN:
        return 0
    return settings.STANDARD_SHIPPING_COST


def calculate_totals(items: Iterable[Item]) -> Dict[str, float]:
    items_price = sum(_field(i, "price") * _field(i, "quantity") for i in items)
    tax_price = calculate_tax(items_price)
    shipping_price = calculate_shipping(items_price)
    return {
        "items_price": items_price,
        "tax_price": tax_price,
        "shipping_price": shipping_price,
        "total_price": items_price + tax_price + shipping_price,
    }
