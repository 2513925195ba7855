from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional
import logging

from pdv.domain.errors import CatalogUnavailableError, OrderServiceError, ValidationError
from pdv.domain.models import (
    FinalizeResult,
    FinalizeState,
    OrderLine,
    PaymentMethod,
    SaleData,
    SaleReceipt,
)
from pdv.domain.pricing import OrderTotals, calculate_change, round2, to_money
from pdv.repositories.contracts import CatalogRepository, CustomerDirectory, OrderRepository
from pdv.services.cart_service import CartService
from pdv.services.stock_service import StockService

log = logging.getLogger("pdv.sales")


def order_lines(cart: SaleData) -> list[OrderLine]:
    return [
        OrderLine(
            product_id=item.product_id,
            product_name=item.display_name,
            product_sku=item.sku,
            quantity=item.quantity,
            unit_price=round2(item.effective_unit_price),
            total_price=round2(item.subtotal),
        )
        for item in cart.items
    ]


class SaleFinalizer:
    """Turns the current cart into an order.

    IDLE -> VALIDATING -> COMMITTING -> DONE | FAILED. The commit is a
    sequence of calls, not a transaction: once the order and its lines exist
    the sale counts as done, and stock decrement failures only show up in
    ``stock_sync_warnings``.
    """

    def __init__(
        self,
        cart: CartService,
        stock: StockService,
        orders: OrderRepository,
        catalog: CatalogRepository,
        customers: CustomerDirectory | None = None,
    ):
        self.cart = cart
        self.stock = stock
        self.orders = orders
        self.catalog = catalog
        self.customers = customers
        self.state = FinalizeState.IDLE

    def _precondition_error(self, cart: SaleData, operator_name: str, amount_paid: Optional[object]) -> Optional[str]:
        if not cart.items:
            return "Add products to the cart."
        if cart.payment_method is None:
            return "Select a payment method."
        if not (operator_name or "").strip():
            return "Salesperson name is required."
        if amount_paid is not None and cart.payment_method == PaymentMethod.CASH:
            try:
                paid = to_money(amount_paid)
            except ValidationError as e:
                return str(e)
            if paid < cart.total:
                return f"Amount paid is less than the total ({cart.total})."
        return None

    def _fail(self, error: str, errors: tuple[str, ...] = ()) -> FinalizeResult:
        self.state = FinalizeState.FAILED
        return FinalizeResult(success=False, error=error, errors=errors)

    def finalize(self, operator_name: str, amount_paid: Optional[object] = None) -> FinalizeResult:
        cart = self.cart.state
        error = self._precondition_error(cart, operator_name, amount_paid)
        if error:
            return FinalizeResult(success=False, error=error)
        operator = operator_name.strip()

        self.state = FinalizeState.VALIDATING
        try:
            shortfalls = self.stock.validate_lines(cart.items)
        except CatalogUnavailableError as e:
            log.warning("sale_validation_failed error=%s", e)
            return self._fail("Could not verify stock. Try again.")
        if shortfalls:
            log.info("sale_rejected_stock lines=%s", len(shortfalls))
            return self._fail("Stock problems:\n" + "\n".join(shortfalls), tuple(shortfalls))

        self.state = FinalizeState.COMMITTING
        customer = cart.customer
        try:
            if not customer.id and self.customers is not None:
                walk_in = self.customers.get_walk_in_customer()
                customer = replace(customer, id=walk_in.id, name=walk_in.name)
        except CatalogUnavailableError as e:
            log.warning("walk_in_customer_unavailable error=%s", e)
            return self._fail("Could not resolve the customer. Try again.")

        totals = OrderTotals(
            subtotal=cart.subtotal,
            discount_percent=cart.discount_percent,
            discount_amount=cart.discount_amount,
            total=cart.total,
        )
        try:
            order_id = self.orders.create_order(customer, totals, cart.payment_method, operator, cart.note or None)
        except OrderServiceError as e:
            log.error("sale_create_failed error=%s", e)
            return self._fail("Could not create the sale.")

        try:
            self.orders.create_order_lines(order_id, order_lines(cart))
        except OrderServiceError as e:
            # no compensating delete: the order row stays behind
            log.error("sale_lines_failed order_id=%s orphaned=1 error=%s", order_id, e)
            return self._fail("Could not save the sale items.")

        warnings = []
        for item in cart.items:
            try:
                self.catalog.decrement_stock(item.product_id, item.quantity)
            except CatalogUnavailableError as e:
                log.warning("stock_decrement_failed order_id=%s product_id=%s qty=%s error=%s", order_id, item.product_id, item.quantity, e)
                warnings.append(f"{item.display_name}: stock not updated ({item.quantity} sold)")

        if amount_paid is not None and cart.payment_method == PaymentMethod.CASH:
            paid = to_money(amount_paid)
        else:
            paid = cart.total
        receipt = SaleReceipt(
            order_id=order_id,
            items=cart.items,
            customer=customer,
            subtotal=cart.subtotal,
            discount_percent=cart.discount_percent,
            discount_amount=cart.discount_amount,
            total=cart.total,
            payment_method=cart.payment_method,
            amount_paid=round2(paid),
            change=calculate_change(paid, cart.total),
            note=cart.note,
            created_at=datetime.now().replace(microsecond=0).isoformat(sep=" "),
            salesperson_name=operator,
        )

        self.cart.clear()
        self.state = FinalizeState.DONE
        log.info(
            "sale_finalized order_id=%s lines=%s total=%s payment=%s operator=%s stock_warnings=%s",
            order_id,
            len(cart.items),
            cart.total,
            cart.payment_method.value,
            operator,
            len(warnings),
        )
        return FinalizeResult(success=True, order_id=order_id, stock_sync_warnings=tuple(warnings), receipt=receipt)
