from __future__ import annotations

from collections import Counter
from typing import Iterable
import logging

from pdv.domain.errors import InsufficientStockError
from pdv.domain.models import SaleLineItem, StockCheck
from pdv.repositories.contracts import CatalogRepository

log = logging.getLogger("pdv.catalog")


class StockService:
    """Best-effort stock checks against the live catalog.

    Nothing is reserved: a check only says what the catalog holds right now.
    """

    def __init__(self, catalog: CatalogRepository):
        self.catalog = catalog

    def check_availability(self, product_id: str, requested: int) -> StockCheck:
        current = int(self.catalog.get_stock(product_id))
        return StockCheck(available=current >= requested, current_stock=current, requested=int(requested))

    def require(self, product_id: str, requested: int) -> StockCheck:
        check = self.check_availability(product_id, requested)
        if not check.available:
            log.info("stock_shortfall product_id=%s available=%s requested=%s", product_id, check.current_stock, requested)
            raise InsufficientStockError(
                f"Insufficient stock. Available: {check.current_stock}, Requested: {requested}",
                available=check.current_stock,
                requested=requested,
            )
        return check

    def validate_lines(self, lines: Iterable[SaleLineItem]) -> list[str]:
        """Authoritative pre-commit check; returns one message per failing line."""
        lines = list(lines)
        # aggregate by product so variant lines of one product cannot oversell it together
        qty_by_product: Counter[str] = Counter()
        for line in lines:
            qty_by_product[line.product_id] += line.quantity

        stock_by_product: dict[str, int] = {}
        errors: list[str] = []
        for line in lines:
            if line.product_id not in stock_by_product:
                stock_by_product[line.product_id] = int(self.catalog.get_stock(line.product_id))
            current = stock_by_product[line.product_id]
            needed = qty_by_product[line.product_id]
            if current < needed:
                errors.append(f"{line.display_name}: insufficient stock (available: {current}, required: {needed})")
        return errors
