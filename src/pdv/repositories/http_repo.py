from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Iterable, Optional

import requests

from pdv.domain.errors import AppError, CatalogUnavailableError, OrderServiceError
from pdv.domain.models import (
    RETAIL,
    WALK_IN_CUSTOMER_NAME,
    Customer,
    OrderLine,
    PaymentMethod,
    Product,
    ProductVariant,
)
from pdv.domain.pricing import OrderTotals, round2, to_money

log = logging.getLogger("pdv.catalog")


def _money(value: object) -> Decimal:
    return to_money(value if value is not None else 0)


def _variant_from_row(row: dict) -> ProductVariant:
    adjustment = row.get("price_adjustment")
    return ProductVariant(
        size=str(row.get("size", "")),
        unit=str(row.get("unit", "")),
        barcode=row.get("barcode") or None,
        price_adjustment=to_money(adjustment) if adjustment not in (None, "") else None,
    )


def product_from_row(row: dict) -> Product:
    volumes = row.get("volumes") or []
    return Product(
        id=str(row["id"]),
        name=str(row.get("name", "")),
        sku=str(row.get("sku") or ""),
        retail_price=_money(row.get("retail_price")),
        wholesale_price=_money(row.get("wholesale_price", row.get("retail_price"))),
        stock=int(row.get("stock") or 0),
        status=str(row.get("status", "inactive")),
        barcode=row.get("barcode") or None,
        variants=tuple(_variant_from_row(v) for v in volumes if isinstance(v, dict)),
    )


def _optional_money(value: Decimal) -> float | None:
    return float(round2(value)) if value > 0 else None


class HttpBackendRepository:
    """Catalog, order and customer access against a PostgREST-style backend.

    Tables: ``products``, ``customers``, ``sales``, ``sale_items``; stock is
    decremented through the ``update_product_stock`` RPC.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: requests.Session | None = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, prefer: str | None = None) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def _request(self, method: str, path: str, params: dict | None = None, payload: object = None, prefer: str | None = None):
        r = self.session.request(
            method,
            f"{self.base_url}/rest/v1/{path}",
            params=params,
            data=json.dumps(payload) if payload is not None else None,
            headers=self._headers(prefer),
            timeout=self.timeout,
        )
        r.raise_for_status()
        if not r.content:
            return None
        return r.json()

    def _catalog(self, method: str, path: str, **kwargs):
        try:
            return self._request(method, path, **kwargs)
        except (requests.RequestException, ValueError) as e:
            log.warning("catalog_request_failed path=%s error=%s", path, e)
            raise CatalogUnavailableError("Catalog service unavailable.") from e

    def _orders(self, method: str, path: str, **kwargs):
        try:
            return self._request(method, path, **kwargs)
        except (requests.RequestException, ValueError) as e:
            log.error("order_request_failed path=%s error=%s", path, e)
            raise OrderServiceError("Order service request failed.") from e

    def _first_product(self, params: dict) -> Optional[Product]:
        rows = self._catalog("GET", "products", params={"select": "*", "limit": "1", **params}) or []
        if not rows:
            return None
        try:
            return product_from_row(rows[0])
        except (KeyError, TypeError, ValueError, AppError) as e:
            log.warning("catalog_record_malformed params=%s error=%s", params, e)
            raise CatalogUnavailableError(f"Malformed product record: {e}") from e

    # catalog
    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        return self._first_product({"id": f"eq.{product_id}"})

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        code = barcode.strip()
        product = self._first_product({"barcode": f"eq.{code}", "status": "eq.active"})
        if product is not None:
            return product
        # variant barcodes live inside the volumes json column
        return self._first_product(
            {"volumes": "cs." + json.dumps([{"barcode": code}]), "status": "eq.active"}
        )

    def get_stock(self, product_id: str) -> int:
        rows = self._catalog("GET", "products", params={"select": "stock", "id": f"eq.{product_id}"}) or []
        if not rows:
            log.warning("stock_lookup_missing product_id=%s", product_id)
            return 0
        try:
            return int(rows[0].get("stock") or 0)
        except (AttributeError, TypeError, ValueError) as e:
            log.warning("stock_value_malformed product_id=%s error=%s", product_id, e)
            raise CatalogUnavailableError(f"Malformed stock value for product {product_id}.") from e

    def decrement_stock(self, product_id: str, quantity: int) -> None:
        self._catalog(
            "POST",
            "rpc/update_product_stock",
            payload={"product_id": product_id, "quantity_sold": int(quantity)},
        )

    # orders
    def create_order(
        self,
        customer: Customer,
        totals: OrderTotals,
        payment_method: PaymentMethod,
        operator_name: str,
        notes: Optional[str] = None,
    ) -> str:
        payload = {
            "customer_id": customer.id,
            "customer_name": customer.name,
            "customer_type": customer.type,
            "subtotal": float(round2(totals.subtotal)),
            "discount_percent": _optional_money(totals.discount_percent),
            "discount_amount": _optional_money(totals.discount_amount),
            "total": float(round2(totals.total)),
            "payment_method": PaymentMethod(payment_method).value,
            "notes": notes or None,
            "salesperson_name": operator_name,
            "status": "completed",
        }
        rows = self._orders("POST", "sales", payload=payload, prefer="return=representation")
        if not rows or "id" not in rows[0]:
            raise OrderServiceError("Order service returned no sale id.")
        return str(rows[0]["id"])

    def create_order_lines(self, order_id: str, lines: Iterable[OrderLine]) -> None:
        payload = [
            {
                "sale_id": order_id,
                "product_id": line.product_id,
                "product_name": line.product_name,
                "product_sku": line.product_sku,
                "quantity": int(line.quantity),
                "unit_price": float(round2(line.unit_price)),
                "total_price": float(round2(line.total_price)),
            }
            for line in lines
        ]
        self._orders("POST", "sale_items", payload=payload)

    # customers
    def get_walk_in_customer(self) -> Customer:
        rows = self._catalog(
            "GET",
            "customers",
            params={
                "select": "id,name",
                "name": f"eq.{WALK_IN_CUSTOMER_NAME}",
                "type": f"eq.{RETAIL}",
                "is_anonymous": "eq.true",
                "limit": "1",
            },
        ) or []
        if not rows:
            rows = self._catalog(
                "POST",
                "customers",
                payload={
                    "name": WALK_IN_CUSTOMER_NAME,
                    "type": RETAIL,
                    "discount": 0,
                    "status": "active",
                    "is_anonymous": True,
                    "notes": "Default customer for counter sales",
                },
                prefer="return=representation",
            ) or []
            if not rows:
                raise CatalogUnavailableError("Could not create walk-in customer.")
            log.info("walk_in_customer_created id=%s", rows[0].get("id"))
        row = rows[0]
        return Customer(id=str(row["id"]), name=str(row.get("name") or WALK_IN_CUSTOMER_NAME), type=RETAIL)
