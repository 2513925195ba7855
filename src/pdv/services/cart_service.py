from __future__ import annotations

from dataclasses import fields, replace
from typing import Callable, Optional
import logging

from pdv.domain import cart
from pdv.domain.errors import (
    AppError,
    CatalogUnavailableError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from pdv.domain.models import (
    CUSTOMER_TYPES,
    RETAIL,
    WHOLESALE,
    Customer,
    LineKey,
    OperationResult,
    PaymentMethod,
    Product,
    ProductVariant,
    SaleData,
    walk_in_customer,
)
from pdv.domain.pricing import MAX_QUANTITY, to_money, validate_barcode, validate_quantity, whole_quantity
from pdv.repositories.contracts import CatalogRepository
from pdv.services.stock_service import StockService

log = logging.getLogger("pdv.cart")

ORDER = "order"
LINE = "line"

_CUSTOMER_FIELDS = {f.name for f in fields(Customer)}


def as_key(key: LineKey | str) -> LineKey:
    """Accept either a ``(product_id, variant_key)`` pair or a bare product id."""
    if isinstance(key, tuple):
        product_id, variant_key = key
        return (str(product_id), variant_key)
    return (str(key), None)


class CartService:
    """Holds the in-progress sale and applies every cart mutation.

    Mutations never raise for bad input, stock shortfalls or catalog outages;
    they return an ``OperationResult`` and leave the cart untouched on failure.
    """

    def __init__(self, catalog: CatalogRepository, stock: StockService, default_customer: Customer | None = None):
        self.catalog = catalog
        self.stock = stock
        self.default_customer = default_customer or walk_in_customer()
        self._state = cart.empty_cart(self.default_customer)
        self._listeners: list[Callable[[SaleData], None]] = []

    # state
    @property
    def state(self) -> SaleData:
        return self._state

    @property
    def item_count(self) -> int:
        return self._state.item_count

    @property
    def line_count(self) -> int:
        return len(self._state.items)

    @property
    def is_empty(self) -> bool:
        return self._state.is_empty

    @property
    def is_ready_to_finalize(self) -> bool:
        return bool(self._state.items) and self._state.payment_method is not None

    def subscribe(self, listener: Callable[[SaleData], None]) -> None:
        self._listeners.append(listener)

    def load(self, state: SaleData) -> None:
        self._commit(state)

    def _commit(self, state: SaleData) -> None:
        self._state = state
        for listener in self._listeners:
            listener(state)

    def _run(self, action: str, op: Callable[[], Optional[dict]]) -> OperationResult:
        try:
            details = op() or {}
        except InsufficientStockError as e:
            return OperationResult.fail(str(e), available=e.available, requested=e.requested)
        except CatalogUnavailableError as e:
            log.warning("%s_failed error=%s", action, e)
            return OperationResult.fail("Could not reach the catalog service. Try again.")
        except AppError as e:
            return OperationResult.fail(str(e))
        return OperationResult.ok(**details)

    def _quantity_elsewhere(self, product_id: str, key: LineKey) -> int:
        return sum(item.quantity for item in self._state.items if item.product_id == product_id and item.key != key)

    def _line(self, key: LineKey):
        line = self._state.find(key)
        if line is None:
            raise NotFoundError("Item not in cart.")
        return line

    # items
    def _add(self, product: Product, quantity: object, variant: Optional[ProductVariant]) -> dict:
        qty = validate_quantity(quantity)
        if not product.is_active:
            raise ValidationError("Product is not active.")

        key = (product.id, variant.key if variant else None)
        existing = self._state.find(key)
        in_line = existing.quantity if existing else 0
        if in_line + qty > MAX_QUANTITY:
            raise ValidationError(f"Qty must be <= {MAX_QUANTITY}.")
        check = self.stock.require(product.id, in_line + qty + self._quantity_elsewhere(product.id, key))

        self._commit(cart.add_line(self._state, product, qty, variant, check.current_stock))
        log.info("cart_item_added product_id=%s variant=%s qty=%s", product.id, key[1], qty)
        return {"quantity": in_line + qty}

    def add_item(self, product: Product, quantity: object = 1, variant: Optional[ProductVariant] = None) -> OperationResult:
        return self._run("add_item", lambda: self._add(product, quantity, variant))

    def add_by_barcode(self, barcode: str, quantity: object = 1) -> OperationResult:
        def op() -> dict:
            code = validate_barcode(barcode)
            product = self.catalog.get_product_by_barcode(code)
            if product is None:
                raise NotFoundError(f"Product not found for barcode {code}.")
            variant = None if product.barcode == code else product.variant_for_barcode(code)
            return self._add(product, quantity, variant)

        return self._run("add_by_barcode", op)

    def update_quantity(self, key: LineKey | str, quantity: object) -> OperationResult:
        key = as_key(key)

        def op() -> Optional[dict]:
            qty = whole_quantity(quantity)
            line = self._line(key)
            if qty <= 0:
                self._commit(cart.remove_line(self._state, key))
                return None
            if qty > MAX_QUANTITY:
                raise ValidationError(f"Qty must be <= {MAX_QUANTITY}.")
            check = self.stock.require(line.product_id, qty + self._quantity_elsewhere(line.product_id, key))
            self._commit(cart.set_quantity(self._state, key, qty, check.current_stock))
            return {"quantity": qty}

        return self._run("update_quantity", op)

    def remove_item(self, key: LineKey | str) -> OperationResult:
        key = as_key(key)

        def op() -> None:
            self._line(key)
            self._commit(cart.remove_line(self._state, key))

        return self._run("remove_item", op)

    # discounts and adjustments
    def apply_discount(self, scope: str, kind: str, value: object, key: LineKey | str | None = None) -> OperationResult:
        def op() -> dict:
            amount = to_money(value)
            if scope == ORDER:
                self._commit(cart.apply_order_discount(self._state, kind, amount))
                return {"discount_amount": self._state.discount_amount, "discount_percent": self._state.discount_percent}
            if scope == LINE:
                if key is None:
                    raise ValidationError("A line discount needs an item.")
                line_key = as_key(key)
                self._commit(cart.apply_line_discount(self._state, line_key, kind, amount))
                line = self._state.find(line_key)
                return {"discount_amount": line.discount_amount, "discount_percent": line.discount_percent}
            raise ValidationError(f"Unknown discount scope: {scope!r}")

        return self._run("apply_discount", op)

    def remove_discount(self, scope: str, key: LineKey | str | None = None) -> OperationResult:
        def op() -> None:
            if scope == ORDER:
                self._commit(cart.remove_order_discount(self._state))
            elif scope == LINE:
                if key is None:
                    raise ValidationError("A line discount needs an item.")
                self._commit(cart.remove_line_discount(self._state, as_key(key)))
            else:
                raise ValidationError(f"Unknown discount scope: {scope!r}")

        return self._run("remove_discount", op)

    def apply_manual_price_adjustment(self, key: LineKey | str, amount: object) -> OperationResult:
        key = as_key(key)
        return self._run("manual_adjustment", lambda: self._commit(cart.apply_manual_adjustment(self._state, key, amount)))

    def remove_manual_price_adjustment(self, key: LineKey | str) -> OperationResult:
        key = as_key(key)
        return self._run("manual_adjustment", lambda: self._commit(cart.remove_manual_adjustment(self._state, key)))

    # customer
    def set_customer(self, **changes) -> OperationResult:
        def op() -> None:
            unknown = set(changes) - _CUSTOMER_FIELDS
            if unknown:
                raise ValidationError(f"Unknown customer fields: {', '.join(sorted(unknown))}")
            current = self._state.customer
            customer = replace(current, **changes)
            if customer.type not in CUSTOMER_TYPES:
                raise ValidationError(f"Unknown customer type: {customer.type!r}")

            if customer.type == current.type or not self._state.items:
                self._commit(replace(self._state, customer=customer))
                return

            # local prices are not trusted; every line is refetched before repricing
            products: dict[str, Optional[Product]] = {}
            for line in self._state.items:
                if line.product_id not in products:
                    products[line.product_id] = self.catalog.get_product_by_id(line.product_id)
            self._commit(cart.reprice_for_customer(self._state, customer, products))
            log.info("cart_repriced customer_type=%s lines=%s", customer.type, len(self._state.items))

        return self._run("set_customer", op)

    def toggle_wholesale_mode(self) -> OperationResult:
        new_type = RETAIL if self._state.customer.type == WHOLESALE else WHOLESALE
        return self.set_customer(type=new_type)

    def activate_wholesale_mode(self) -> OperationResult:
        return self.set_customer(type=WHOLESALE)

    def activate_retail_mode(self) -> OperationResult:
        return self.set_customer(type=RETAIL)

    def set_default_customer(self, customer: Customer) -> None:
        """Bind the resolved walk-in record; an anonymous cart customer picks it up."""
        self.default_customer = customer
        current = self._state.customer
        if not current.id:
            self._commit(replace(self._state, customer=replace(current, id=customer.id, name=customer.name)))

    # trivial fields
    def set_payment_method(self, method: PaymentMethod | str | None) -> OperationResult:
        def op() -> None:
            if method is None:
                payment = None
            else:
                try:
                    payment = PaymentMethod(method)
                except ValueError as e:
                    raise ValidationError(f"Unknown payment method: {method!r}") from e
            self._commit(replace(self._state, payment_method=payment))

        return self._run("set_payment_method", op)

    def set_note(self, note: str) -> OperationResult:
        return self._run("set_note", lambda: self._commit(replace(self._state, note=note or "")))

    def clear(self) -> None:
        self._commit(cart.empty_cart(self.default_customer))
