from .models import (
    Customer,
    FinalizeResult,
    OperationResult,
    PaymentMethod,
    Product,
    ProductVariant,
    SaleData,
    SaleLineItem,
)
from .errors import (
    CatalogUnavailableError,
    InsufficientStockError,
    NotFoundError,
    OrderServiceError,
    ValidationError,
)

__all__ = [
    "Customer",
    "FinalizeResult",
    "OperationResult",
    "PaymentMethod",
    "Product",
    "ProductVariant",
    "SaleData",
    "SaleLineItem",
    "CatalogUnavailableError",
    "InsufficientStockError",
    "NotFoundError",
    "OrderServiceError",
    "ValidationError",
]
