from __future__ import annotations

from typing import Iterable, Optional, Protocol

from pdv.domain.models import Customer, OrderLine, PaymentMethod, Product
from pdv.domain.pricing import OrderTotals


class CatalogRepository(Protocol):
    def get_product_by_id(self, product_id: str) -> Optional[Product]: ...
    def get_product_by_barcode(self, barcode: str) -> Optional[Product]: ...
    def get_stock(self, product_id: str) -> int: ...
    def decrement_stock(self, product_id: str, quantity: int) -> None: ...


class OrderRepository(Protocol):
    def create_order(
        self,
        customer: Customer,
        totals: OrderTotals,
        payment_method: PaymentMethod,
        operator_name: str,
        notes: Optional[str] = None,
    ) -> str: ...
    def create_order_lines(self, order_id: str, lines: Iterable[OrderLine]) -> None: ...


class CustomerDirectory(Protocol):
    def get_walk_in_customer(self) -> Customer: ...


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...
