from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

ZERO = Decimal("0")

ACTIVE = "active"
RETAIL = "retail"
WHOLESALE = "wholesale"
CUSTOMER_TYPES = (RETAIL, WHOLESALE)

WALK_IN_CUSTOMER_NAME = "Cliente Balcão"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CREDIT = "credit"
    DEBIT = "debit"
    PIX = "pix"
    TRANSFER = "transfer"


class FinalizeState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    COMMITTING = "committing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class ProductVariant:
    """A packaged size of a product (e.g. 500ml) with its own barcode."""

    size: str
    unit: str
    barcode: Optional[str] = None
    price_adjustment: Optional[Decimal] = None

    @property
    def key(self) -> str:
        return f"{self.size}{self.unit}"


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    sku: str
    retail_price: Decimal
    wholesale_price: Decimal
    stock: int
    status: str = ACTIVE
    barcode: Optional[str] = None
    variants: tuple[ProductVariant, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE

    def variant_for_barcode(self, code: str) -> Optional[ProductVariant]:
        for variant in self.variants:
            if variant.barcode and variant.barcode == code:
                return variant
        return None

    def variant_for_key(self, key: str) -> Optional[ProductVariant]:
        for variant in self.variants:
            if variant.key == key:
                return variant
        return None


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    type: str = RETAIL
    discount: Decimal = ZERO


def walk_in_customer(customer_id: str = "") -> Customer:
    return Customer(id=customer_id, name=WALK_IN_CUSTOMER_NAME, type=RETAIL)


@dataclass(frozen=True)
class PercentDiscount:
    percent: Decimal


@dataclass(frozen=True)
class AmountDiscount:
    amount: Decimal


Discount = Union[PercentDiscount, AmountDiscount]

# (product id, variant key)
LineKey = tuple[str, Optional[str]]


@dataclass(frozen=True)
class SaleLineItem:
    product_id: str
    name: str
    sku: str
    unit_price: Decimal
    quantity: int
    available_stock: int
    variant: Optional[ProductVariant] = None
    # flat amount as entered; manual_per_unit is what actually prices the line
    manual_adjustment: Optional[Decimal] = None
    manual_per_unit: Decimal = ZERO
    discount: Optional[Discount] = None
    discount_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    pre_discount_subtotal: Decimal = ZERO
    subtotal: Decimal = ZERO

    @property
    def key(self) -> LineKey:
        return (self.product_id, self.variant.key if self.variant else None)

    @property
    def display_name(self) -> str:
        if self.variant:
            return f"{self.name} - {self.variant.size}{self.variant.unit}"
        return self.name

    @property
    def effective_unit_price(self) -> Decimal:
        return self.unit_price + self.manual_per_unit


@dataclass(frozen=True)
class SaleData:
    customer: Customer
    items: tuple[SaleLineItem, ...] = ()
    discount: Optional[Discount] = None
    discount_amount: Decimal = ZERO
    discount_percent: Decimal = ZERO
    subtotal: Decimal = ZERO
    total: Decimal = ZERO
    payment_method: Optional[PaymentMethod] = None
    note: str = ""

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def has_meaningful_state(self) -> bool:
        return bool(self.items) or self.discount_amount > 0 or bool(self.note.strip())

    def find(self, key: LineKey) -> Optional[SaleLineItem]:
        for item in self.items:
            if item.key == key:
                return item
        return None


@dataclass(frozen=True)
class StockCheck:
    available: bool
    current_stock: int
    requested: int


@dataclass(frozen=True)
class OperationResult:
    success: bool
    error: Optional[str] = None
    details: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, **details) -> "OperationResult":
        return cls(success=True, details=details)

    @classmethod
    def fail(cls, error: str, **details) -> "OperationResult":
        return cls(success=False, error=error, details=details)


@dataclass(frozen=True)
class PersistedLine:
    # variant holds size and unit only; its price comes from the catalog on recovery
    product_id: str
    quantity: int
    variant: Optional[ProductVariant] = None
    discount: Optional[Discount] = None
    manual_adjustment: Optional[Decimal] = None


@dataclass(frozen=True)
class PersistedCartSnapshot:
    items: tuple[PersistedLine, ...]
    discount: Optional[Discount] = None
    note: str = ""
    payment_method: Optional[PaymentMethod] = None


@dataclass(frozen=True)
class OrderLine:
    product_id: str
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


@dataclass(frozen=True)
class SaleReceipt:
    order_id: str
    items: tuple[SaleLineItem, ...]
    customer: Customer
    subtotal: Decimal
    discount_percent: Decimal
    discount_amount: Decimal
    total: Decimal
    payment_method: PaymentMethod
    amount_paid: Decimal
    change: Decimal
    note: str
    created_at: str
    salesperson_name: str


@dataclass(frozen=True)
class FinalizeResult:
    success: bool
    order_id: Optional[str] = None
    error: Optional[str] = None
    errors: tuple[str, ...] = ()
    stock_sync_warnings: tuple[str, ...] = ()
    receipt: Optional[SaleReceipt] = None
