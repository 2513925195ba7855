"""Money arithmetic for the sale cart.

All amounts are ``Decimal``. Values are rounded (half-up, two places) only when
they are stored as a subtotal, a discount amount or a total; intermediate
products keep full precision.

Line pricing always follows the same order:

    base unit price -> + variant adjustment -> + manual per-unit adjustment
    -> x quantity = pre-discount subtotal -> - line discount = subtotal

and the order-level discount is applied once to the sum of line subtotals.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional

from pdv.domain.errors import ValidationError
from pdv.domain.models import (
    WHOLESALE,
    ZERO,
    AmountDiscount,
    Discount,
    PercentDiscount,
    Product,
    ProductVariant,
)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
CASH_STEPS = (5, 10, 20, 50, 100)
MAX_QUANTITY = 999
BARCODE_LENGTH = (8, 20)


def to_money(value: object) -> Decimal:
    if isinstance(value, Decimal):
        result = value
    else:
        if isinstance(value, bool) or value is None:
            raise ValidationError(f"Invalid amount: {value!r}")
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError(f"Invalid amount: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"Invalid amount: {value!r}")
    return result


def round2(value: object) -> Decimal:
    return to_money(value).quantize(CENT, rounding=ROUND_HALF_UP)


def whole_quantity(value: object) -> int:
    """Return ``value`` as an int, rejecting fractional or non-numeric input."""
    if isinstance(value, bool):
        raise ValidationError("Qty must be a whole number.")
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        try:
            as_decimal = to_money(value)
        except ValidationError as e:
            raise ValidationError("Qty must be a whole number.") from e
        if as_decimal == as_decimal.to_integral_value():
            return int(as_decimal)
    raise ValidationError("Qty must be a whole number.")


def validate_quantity(value: object) -> int:
    qty = whole_quantity(value)
    if qty <= 0:
        raise ValidationError("Qty must be >= 1.")
    if qty > MAX_QUANTITY:
        raise ValidationError(f"Qty must be <= {MAX_QUANTITY}.")
    return qty


def validate_barcode(value: object) -> str:
    code = str(value or "").strip()
    shortest, longest = BARCODE_LENGTH
    if not code:
        raise ValidationError("Barcode is required.")
    if not code.isdigit() or not code.isascii():
        raise ValidationError("Barcode must contain only digits.")
    if not shortest <= len(code) <= longest:
        raise ValidationError(f"Barcode must have {shortest} to {longest} digits.")
    return code


def apply_variant_adjustment(base: Decimal, adjustment: Optional[Decimal]) -> Decimal:
    # > 100 is a multiplier (150 -> x1.5), anything else a percentage increase
    if not adjustment:
        return base
    adj = to_money(adjustment)
    if adj > HUNDRED:
        return base * adj / HUNDRED
    return base + base * adj / HUNDRED


def resolve_unit_price(product: Product, customer_type: str, variant: Optional[ProductVariant] = None) -> Decimal:
    base = product.wholesale_price if customer_type == WHOLESALE else product.retail_price
    adjustment = variant.price_adjustment if variant else None
    return round2(apply_variant_adjustment(to_money(base), adjustment))


def manual_per_unit(amount: Decimal, quantity: int) -> Decimal:
    if quantity <= 0:
        return ZERO
    return to_money(amount) / quantity


def clamp_percent(value: object) -> Decimal:
    return round2(min(HUNDRED, max(ZERO, to_money(value))))


def clamp_amount(value: object, base: Decimal) -> Decimal:
    return round2(min(to_money(base), max(ZERO, to_money(value))))


def percent_to_amount(base: Decimal, percent: Decimal) -> Decimal:
    return round2(to_money(base) * to_money(percent) / HUNDRED)


def amount_to_percent(base: Decimal, amount: Decimal) -> Decimal:
    base = to_money(base)
    if base <= 0:
        return ZERO
    return round2(to_money(amount) / base * HUNDRED)


def make_discount(kind: str, value: object, base: Decimal) -> Optional[Discount]:
    """Build a clamped discount of ``kind`` ('percent' or 'amount') against ``base``.

    A discount that clamps to zero is no discount at all.
    """
    if kind == "percent":
        percent = clamp_percent(value)
        return PercentDiscount(percent) if percent > 0 else None
    if kind == "amount":
        amount = clamp_amount(value, base)
        return AmountDiscount(amount) if amount > 0 else None
    raise ValidationError(f"Unknown discount type: {kind!r}")


def rebase_discount(discount: Optional[Discount], base: Decimal) -> Optional[Discount]:
    """Clamp an existing discount against a new base, keeping its kind."""
    if discount is None:
        return None
    if isinstance(discount, PercentDiscount):
        return make_discount("percent", discount.percent, base)
    return make_discount("amount", discount.amount, base)


def discount_values(base: Decimal, discount: Optional[Discount]) -> tuple[Decimal, Decimal]:
    """Return ``(amount, percent)`` of ``discount`` evaluated against ``base``."""
    if discount is None:
        return ZERO, ZERO
    if isinstance(discount, PercentDiscount):
        return percent_to_amount(base, discount.percent), discount.percent
    amount = clamp_amount(discount.amount, base)
    return amount, amount_to_percent(base, amount)


@dataclass(frozen=True)
class LineTotals:
    pre_discount_subtotal: Decimal
    discount_amount: Decimal
    discount_percent: Decimal
    subtotal: Decimal


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    total: Decimal


def line_totals(unit_price: Decimal, per_unit_adjustment: Decimal, quantity: int, discount: Optional[Discount]) -> LineTotals:
    pre = round2((unit_price + per_unit_adjustment) * quantity)
    amount, percent = discount_values(pre, discount)
    return LineTotals(
        pre_discount_subtotal=pre,
        discount_amount=amount,
        discount_percent=percent,
        subtotal=max(ZERO, round2(pre - amount)),
    )


def order_totals(line_subtotals: Iterable[Decimal], discount: Optional[Discount]) -> OrderTotals:
    subtotal = round2(sum(line_subtotals, ZERO))
    amount, percent = discount_values(subtotal, discount)
    return OrderTotals(
        subtotal=subtotal,
        discount_percent=percent,
        discount_amount=amount,
        total=max(ZERO, round2(subtotal - amount)),
    )


def calculate_change(amount_paid: object, total: object) -> Decimal:
    return max(ZERO, round2(to_money(amount_paid) - to_money(total)))


def cash_suggestions(total: object) -> list[Decimal]:
    """Suggested cash amounts: the total itself and the next round notes above it."""
    total = round2(total)
    suggestions = {total}
    for step in CASH_STEPS:
        step_value = Decimal(step)
        suggestions.add(round2((total / step_value).to_integral_value(rounding=ROUND_CEILING) * step_value))
    return sorted(suggestions)
