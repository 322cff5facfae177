"""Money arithmetic for orders: rounding, tax, shipping and totals."""
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Iterable, Mapping, Union

TAX_RATE = Decimal("0.08")

SHIPPING_RATES = {
    "standard": Decimal("0"),
    "express": Decimal("14.99"),
    "overnight": Decimal("29.99"),
}

Number = Union[int, float, Decimal]

_CENT = Decimal("0.01")


def _dec(value: Number) -> Decimal:
    # str() keeps 0.1 as 0.1 instead of its binary expansion
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_up(value: Number, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(_dec(value).quantize(quantum, rounding=ROUND_HALF_UP))


def to_money(value: Number) -> float:
    return round_half_up(value, 2)


def shipping_cost(method: str = "standard") -> float:
    if method not in SHIPPING_RATES:
        raise ValueError(f"Unknown shipping method: {method}")
    return float(SHIPPING_RATES[method])


def calculate_totals(items: Iterable[Mapping[str, Any]], shipping: Number = 0, discount: Number = 0) -> Dict[str, float]:
    """Compute subtotal, 8% tax and total for a list of `{price, quantity}` lines.

    Each component is rounded to cents and the total is the sum of the rounded
    components, so `total == subtotal + tax + shipping - discount` holds exactly.
    """
    subtotal = sum((_dec(i["price"]) * int(i["quantity"]) for i in items), Decimal("0"))
    subtotal = subtotal.quantize(_CENT, rounding=ROUND_HALF_UP)
    tax = (subtotal * TAX_RATE).quantize(_CENT, rounding=ROUND_HALF_UP)
    ship = _dec(shipping).quantize(_CENT, rounding=ROUND_HALF_UP)
    disc = _dec(discount).quantize(_CENT, rounding=ROUND_HALF_UP)
    total = subtotal + tax + ship - disc
    return {
        "subtotal": float(subtotal),
        "tax": float(tax),
        "shipping": float(ship),
        "discount": float(disc),
        "total": float(total),
    }


def format_order_number(sequence: int) -> str:
    return f"ORD-{sequence:08d}"
