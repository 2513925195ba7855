from __future__ import annotations

import json
import logging
import sqlite3
from typing import Optional

from pdv.domain.cart import restore_cart
from pdv.domain.errors import AppError
from pdv.domain.models import (
    AmountDiscount,
    Customer,
    Discount,
    PaymentMethod,
    PercentDiscount,
    PersistedCartSnapshot,
    PersistedLine,
    Product,
    ProductVariant,
    SaleData,
)
from pdv.domain.pricing import clamp_percent, round2, to_money
from pdv.repositories.contracts import CatalogRepository, KeyValueStore
from pdv.services.cart_service import CartService

log = logging.getLogger("pdv.cart")

SNAPSHOT_KEY = "pdv-cart-data"


def _discount_to_dict(discount: Optional[Discount]) -> Optional[dict]:
    if isinstance(discount, PercentDiscount):
        return {"type": "percent", "value": str(discount.percent)}
    if isinstance(discount, AmountDiscount):
        return {"type": "amount", "value": str(discount.amount)}
    return None


def _discount_from_dict(raw: object) -> Optional[Discount]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("discount must be an object")
    kind = raw.get("type")
    if kind == "percent":
        percent = clamp_percent(raw["value"])
        return PercentDiscount(percent) if percent > 0 else None
    if kind == "amount":
        amount = round2(raw["value"])
        return AmountDiscount(amount) if amount > 0 else None
    raise ValueError(f"unknown discount type {kind!r}")


def _variant_to_dict(variant: Optional[ProductVariant]) -> Optional[dict]:
    if variant is None:
        return None
    return {"size": variant.size, "unit": variant.unit}


def _variant_from_dict(raw: object) -> Optional[ProductVariant]:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValueError("variant must be an object")
    return ProductVariant(size=str(raw["size"]), unit=str(raw["unit"]))


def snapshot_from_cart(cart: SaleData) -> PersistedCartSnapshot:
    """Project the cart onto what is worth keeping: intent, never prices or names."""
    return PersistedCartSnapshot(
        items=tuple(
            PersistedLine(
                product_id=item.product_id,
                quantity=item.quantity,
                variant=ProductVariant(item.variant.size, item.variant.unit) if item.variant else None,
                discount=item.discount,
                manual_adjustment=item.manual_adjustment,
            )
            for item in cart.items
        ),
        discount=cart.discount,
        note=cart.note,
        payment_method=cart.payment_method,
    )


def snapshot_to_json(snapshot: PersistedCartSnapshot) -> str:
    payload = {
        "items": [
            {
                "product_id": line.product_id,
                "quantity": line.quantity,
                "variant": _variant_to_dict(line.variant),
                "discount": _discount_to_dict(line.discount),
                "manual_price_adjustment": str(line.manual_adjustment) if line.manual_adjustment is not None else None,
            }
            for line in snapshot.items
        ],
        "discount": _discount_to_dict(snapshot.discount),
        "note": snapshot.note,
        "payment_method": snapshot.payment_method.value if snapshot.payment_method else None,
    }
    return json.dumps(payload, ensure_ascii=False)


def snapshot_from_json(raw: str) -> PersistedCartSnapshot:
    """Parse a stored snapshot; raises ValueError (or a subclass) on any malformed field."""
    data = json.loads(raw)
    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ValueError("snapshot must be an object with an items list")

    items = []
    for row in data["items"]:
        if not isinstance(row, dict):
            raise ValueError("snapshot item must be an object")
        quantity = row["quantity"]
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValueError(f"invalid quantity {quantity!r}")
        adjustment = row.get("manual_price_adjustment")
        items.append(
            PersistedLine(
                product_id=str(row["product_id"]),
                quantity=quantity,
                variant=_variant_from_dict(row.get("variant")),
                discount=_discount_from_dict(row.get("discount")),
                manual_adjustment=to_money(adjustment) if adjustment is not None else None,
            )
        )

    method = data.get("payment_method")
    note = data.get("note") or ""
    if not isinstance(note, str):
        raise ValueError("note must be a string")
    return PersistedCartSnapshot(
        items=tuple(items),
        discount=_discount_from_dict(data.get("discount")),
        note=note,
        payment_method=PaymentMethod(method) if method else None,
    )


class CartPersistence:
    """Keeps the in-progress cart alive across restarts of the terminal.

    Every cart change rewrites (or deletes) the snapshot. On start-up
    ``restore_session`` rebuilds the cart from the snapshot and live catalog
    data; recovery never raises and never trusts stored prices.
    """

    def __init__(self, store: KeyValueStore, catalog: CatalogRepository, key: str = SNAPSHOT_KEY):
        self.store = store
        self.catalog = catalog
        self.key = key
        self.cart_service: CartService | None = None
        self.was_recovered = False

    def attach(self, cart_service: CartService) -> None:
        self.cart_service = cart_service
        cart_service.subscribe(self.save)

    def save(self, state: SaleData) -> None:
        try:
            if state.has_meaningful_state:
                self.store.set(self.key, snapshot_to_json(snapshot_from_cart(state)))
            else:
                self.store.remove(self.key)
                self.was_recovered = False
        except (OSError, sqlite3.Error):
            log.exception("cart_snapshot_write_failed key=%s", self.key)

    def load(self) -> Optional[PersistedCartSnapshot]:
        try:
            raw = self.store.get(self.key)
        except (OSError, sqlite3.Error):
            log.exception("cart_snapshot_read_failed key=%s", self.key)
            return None
        if raw is None:
            return None
        try:
            return snapshot_from_json(raw)
        except (ValueError, KeyError, TypeError, AppError) as e:
            log.debug("cart_snapshot_discarded key=%s error=%s", self.key, e)
            self.clear_persisted_data()
            return None

    def has_persisted_data(self) -> bool:
        return self.store.get(self.key) is not None

    def clear_persisted_data(self) -> None:
        try:
            self.store.remove(self.key)
        except (OSError, sqlite3.Error):
            log.exception("cart_snapshot_remove_failed key=%s", self.key)

    def recover(self, customer: Customer) -> Optional[SaleData]:
        snapshot = self.load()
        if snapshot is None or not snapshot.items:
            return None

        products: dict[str, Optional[Product]] = {}
        try:
            for line in snapshot.items:
                if line.product_id not in products:
                    products[line.product_id] = self.catalog.get_product_by_id(line.product_id)
            return restore_cart(snapshot, products, customer)
        except AppError as e:
            log.warning("cart_recovery_aborted error=%s", e)
            return None

    def restore_session(self) -> bool:
        """Load a recovered cart into the attached cart service; True if anything came back."""
        if self.cart_service is None:
            raise RuntimeError("CartPersistence is not attached to a cart.")
        restored = self.recover(self.cart_service.default_customer)
        if restored is None:
            return False
        self.cart_service.load(restored)
        self.was_recovered = True
        log.info("cart_restored lines=%s total=%s", len(restored.items), restored.total)
        return True

    def acknowledge_recovery(self) -> None:
        self.was_recovered = False
