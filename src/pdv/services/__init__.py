from .stock_service import StockService
from .cart_service import CartService
from .persistence_service import CartPersistence
from .finalize_service import SaleFinalizer

__all__ = [
    "StockService",
    "CartService",
    "CartPersistence",
    "SaleFinalizer",
]
