import sys
from dataclasses import replace
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))


def D(value) -> Decimal:
    return Decimal(str(value))


def make_product(
    product_id: str = "p-a",
    name: str = "Perfume A",
    retail: str = "25.00",
    wholesale: str = "20.00",
    stock: int = 10,
    status: str = "active",
    barcode: str | None = None,
    variants=(),
):
    from pdv.domain.models import Product

    return Product(
        id=product_id,
        name=name,
        sku=f"SKU-{product_id}",
        retail_price=D(retail),
        wholesale_price=D(wholesale),
        stock=stock,
        status=status,
        barcode=barcode,
        variants=tuple(variants),
    )


class FakeCatalog:
    def __init__(self, products=()):
        self.products = {p.id: p for p in products}
        self.down = False
        self.failing_decrements: set[str] = set()
        self.calls: list[tuple] = []
        self.decrements: list[tuple[str, int]] = []

    def _call(self, *call):
        from pdv.domain.errors import CatalogUnavailableError

        self.calls.append(call)
        if self.down:
            raise CatalogUnavailableError("catalog down")

    def set_stock(self, product_id: str, stock: int) -> None:
        self.products[product_id] = replace(self.products[product_id], stock=stock)

    def get_product_by_id(self, product_id):
        self._call("get_product_by_id", product_id)
        return self.products.get(product_id)

    def get_product_by_barcode(self, barcode):
        self._call("get_product_by_barcode", barcode)
        for p in self.products.values():
            if not p.is_active:
                continue
            if p.barcode == barcode or p.variant_for_barcode(barcode):
                return p
        return None

    def get_stock(self, product_id):
        self._call("get_stock", product_id)
        p = self.products.get(product_id)
        return p.stock if p else 0

    def decrement_stock(self, product_id, quantity):
        from pdv.domain.errors import CatalogUnavailableError

        self._call("decrement_stock", product_id, quantity)
        if product_id in self.failing_decrements:
            raise CatalogUnavailableError("rpc failed")
        self.decrements.append((product_id, quantity))
        self.set_stock(product_id, self.products[product_id].stock - quantity)


class FakeOrders:
    def __init__(self):
        self.fail_create = False
        self.fail_lines = False
        self.orders: list[dict] = []
        self.lines: dict[str, list] = {}

    def create_order(self, customer, totals, payment_method, operator_name, notes=None):
        from pdv.domain.errors import OrderServiceError

        if self.fail_create:
            raise OrderServiceError("insert failed")
        order_id = f"sale-{len(self.orders) + 1}"
        self.orders.append(
            {
                "id": order_id,
                "customer": customer,
                "totals": totals,
                "payment_method": payment_method,
                "operator": operator_name,
                "notes": notes,
            }
        )
        return order_id

    def create_order_lines(self, order_id, lines):
        from pdv.domain.errors import OrderServiceError

        if self.fail_lines:
            raise OrderServiceError("insert failed")
        self.lines[order_id] = list(lines)


class FakeCustomers:
    def get_walk_in_customer(self):
        from pdv.domain.models import walk_in_customer

        return walk_in_customer("cust-walk-in")


class MemoryStore:
    def __init__(self, initial=None):
        self.data = dict(initial or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)


def build_engine(*products, store=None):
    from pdv.services.cart_service import CartService
    from pdv.services.finalize_service import SaleFinalizer
    from pdv.services.persistence_service import CartPersistence
    from pdv.services.stock_service import StockService

    catalog = FakeCatalog(products)
    orders = FakeOrders()
    store = store if store is not None else MemoryStore()
    stock = StockService(catalog)
    cart = CartService(catalog, stock)
    persistence = CartPersistence(store, catalog)
    persistence.attach(cart)
    finalizer = SaleFinalizer(cart, stock, orders=orders, catalog=catalog, customers=FakeCustomers())
    return SimpleNamespace(
        catalog=catalog,
        orders=orders,
        store=store,
        stock=stock,
        cart=cart,
        persistence=persistence,
        finalizer=finalizer,
    )
