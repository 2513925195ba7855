"""Pure state transitions over ``SaleData``.

Every function takes the current cart and returns a new one with its derived
totals recomputed; nothing here performs I/O. Stock and catalog data are
passed in by the caller.
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Mapping, Optional

from pdv.domain.errors import NotFoundError, ValidationError
from pdv.domain.models import (
    ZERO,
    AmountDiscount,
    Customer,
    Discount,
    LineKey,
    PersistedCartSnapshot,
    Product,
    ProductVariant,
    SaleData,
    SaleLineItem,
)
from pdv.domain.pricing import (
    MAX_QUANTITY,
    line_totals,
    make_discount,
    manual_per_unit,
    order_totals,
    rebase_discount,
    resolve_unit_price,
    to_money,
)

_KEEP = object()


def empty_cart(customer: Customer) -> SaleData:
    return SaleData(customer=customer)


def _clamped(discount: Optional[Discount], amount: Decimal) -> Optional[Discount]:
    # fixed amounts shrink with their base and are stored shrunk
    if isinstance(discount, AmountDiscount) and amount < discount.amount:
        return AmountDiscount(amount) if amount > 0 else None
    return discount


def price_line(line: SaleLineItem, discount: object = _KEEP, **changes) -> SaleLineItem:
    if discount is not _KEEP:
        changes["discount"] = discount
    line = replace(line, **changes)
    totals = line_totals(line.unit_price, line.manual_per_unit, line.quantity, line.discount)
    return replace(
        line,
        discount=_clamped(line.discount, totals.discount_amount),
        pre_discount_subtotal=totals.pre_discount_subtotal,
        discount_amount=totals.discount_amount,
        discount_percent=totals.discount_percent,
        subtotal=totals.subtotal,
    )


def recompute(cart: SaleData) -> SaleData:
    totals = order_totals((item.subtotal for item in cart.items), cart.discount)
    return replace(
        cart,
        discount=_clamped(cart.discount, totals.discount_amount),
        subtotal=totals.subtotal,
        discount_amount=totals.discount_amount,
        discount_percent=totals.discount_percent,
        total=totals.total,
    )


def _require_line(cart: SaleData, key: LineKey) -> SaleLineItem:
    line = cart.find(key)
    if line is None:
        raise NotFoundError("Item not in cart.")
    return line


def _replace_line(cart: SaleData, line: SaleLineItem) -> SaleData:
    items = tuple(line if item.key == line.key else item for item in cart.items)
    return recompute(replace(cart, items=items))


def new_line(product: Product, quantity: int, customer_type: str, variant: Optional[ProductVariant], available_stock: int) -> SaleLineItem:
    line = SaleLineItem(
        product_id=product.id,
        name=product.name,
        sku=product.sku,
        unit_price=resolve_unit_price(product, customer_type, variant),
        quantity=quantity,
        available_stock=available_stock,
        variant=variant,
    )
    return price_line(line)


def add_line(cart: SaleData, product: Product, quantity: int, variant: Optional[ProductVariant], available_stock: int) -> SaleData:
    key = (product.id, variant.key if variant else None)
    existing = cart.find(key)
    if existing is not None:
        line = price_line(existing, quantity=existing.quantity + quantity, available_stock=available_stock)
        return _replace_line(cart, line)
    line = new_line(product, quantity, cart.customer.type, variant, available_stock)
    return recompute(replace(cart, items=cart.items + (line,)))


def set_quantity(cart: SaleData, key: LineKey, quantity: int, available_stock: int) -> SaleData:
    line = _require_line(cart, key)
    if quantity <= 0:
        return remove_line(cart, key)
    # a percent discount follows the new pre-discount subtotal; a fixed amount is clamped to it
    return _replace_line(cart, price_line(line, quantity=quantity, available_stock=available_stock))


def remove_line(cart: SaleData, key: LineKey) -> SaleData:
    items = tuple(item for item in cart.items if item.key != key)
    return recompute(replace(cart, items=items))


def apply_line_discount(cart: SaleData, key: LineKey, kind: str, value: object) -> SaleData:
    line = _require_line(cart, key)
    discount = make_discount(kind, value, line.pre_discount_subtotal)
    return _replace_line(cart, price_line(line, discount=discount))


def remove_line_discount(cart: SaleData, key: LineKey) -> SaleData:
    line = _require_line(cart, key)
    return _replace_line(cart, price_line(line, discount=None))


def apply_order_discount(cart: SaleData, kind: str, value: object) -> SaleData:
    cart = recompute(cart)
    discount = make_discount(kind, value, cart.subtotal)
    return recompute(replace(cart, discount=discount))


def remove_order_discount(cart: SaleData) -> SaleData:
    return recompute(replace(cart, discount=None))


def apply_manual_adjustment(cart: SaleData, key: LineKey, amount: object) -> SaleData:
    line = _require_line(cart, key)
    amount = to_money(amount)
    if amount < 0:
        raise ValidationError("Manual price adjustment cannot be negative.")
    if amount == 0:
        return remove_manual_adjustment(cart, key)
    line = price_line(line, manual_adjustment=amount, manual_per_unit=manual_per_unit(amount, line.quantity))
    return _replace_line(cart, line)


def remove_manual_adjustment(cart: SaleData, key: LineKey) -> SaleData:
    line = _require_line(cart, key)
    return _replace_line(cart, price_line(line, manual_adjustment=None, manual_per_unit=ZERO))


def reprice_for_customer(cart: SaleData, customer: Customer, products: Mapping[str, Optional[Product]]) -> SaleData:
    """Re-resolve every line against ``customer``'s price column.

    Lines whose product could not be fetched keep their current price.
    Discounts and manual adjustments carry over onto the new base price.
    """
    items = []
    for line in cart.items:
        product = products.get(line.product_id)
        if product is None:
            items.append(line)
            continue
        items.append(
            price_line(
                line,
                unit_price=resolve_unit_price(product, customer.type, line.variant),
                available_stock=int(product.stock),
            )
        )
    return recompute(replace(cart, customer=customer, items=tuple(items)))


def restore_cart(snapshot: PersistedCartSnapshot, products: Mapping[str, Optional[Product]], customer: Customer) -> Optional[SaleData]:
    """Rebuild a cart from persisted intent and freshly fetched products.

    Lines whose product or variant is gone, inactive or out of stock are
    dropped; quantities are clamped to what is left of the product's stock
    after earlier lines. Returns None when no line survives.
    """
    items: list[SaleLineItem] = []
    seen: set[LineKey] = set()
    taken: dict[str, int] = {}
    for persisted in snapshot.items:
        product = products.get(persisted.product_id)
        if product is None or not product.is_active:
            continue
        variant = None
        if persisted.variant is not None:
            variant = product.variant_for_key(persisted.variant.key)
            if variant is None:
                continue
        key = (product.id, variant.key if variant else None)
        # variant lines of one product share its stock
        remaining = int(product.stock) - taken.get(product.id, 0)
        if key in seen or remaining <= 0:
            continue
        seen.add(key)

        quantity = min(int(persisted.quantity), remaining, MAX_QUANTITY)
        taken[product.id] = taken.get(product.id, 0) + quantity
        line = new_line(product, quantity, customer.type, variant, int(product.stock))

        if persisted.manual_adjustment is not None and persisted.manual_adjustment > 0:
            line = price_line(
                line,
                manual_adjustment=persisted.manual_adjustment,
                manual_per_unit=manual_per_unit(persisted.manual_adjustment, quantity),
            )
        if persisted.discount is not None:
            line = price_line(line, discount=rebase_discount(persisted.discount, line.pre_discount_subtotal))
        items.append(line)

    if not items:
        return None

    cart = recompute(
        replace(
            empty_cart(customer),
            items=tuple(items),
            note=snapshot.note,
            payment_method=snapshot.payment_method,
        )
    )
    return recompute(replace(cart, discount=rebase_discount(snapshot.discount, cart.subtotal)))
