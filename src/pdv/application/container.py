from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import logging

from pdv.config import ServiceSettings
from pdv.domain.errors import CatalogUnavailableError
from pdv.repositories.http_repo import HttpBackendRepository
from pdv.repositories.sqlite_store import SqliteKeyValueStore
from pdv.services.cart_service import CartService
from pdv.services.finalize_service import SaleFinalizer
from pdv.services.persistence_service import CartPersistence
from pdv.services.stock_service import StockService

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppContainer:
    backend: HttpBackendRepository
    store: SqliteKeyValueStore
    stock: StockService
    cart: CartService
    persistence: CartPersistence
    finalizer: SaleFinalizer


def build_container(settings: ServiceSettings, store_path: Path | str) -> AppContainer:
    backend = HttpBackendRepository(settings.api_url, settings.api_key, timeout=settings.timeout)
    store = SqliteKeyValueStore(store_path)
    store.init_db()

    stock = StockService(backend)
    cart = CartService(backend, stock)
    persistence = CartPersistence(store, backend)
    persistence.attach(cart)
    finalizer = SaleFinalizer(cart, stock, orders=backend, catalog=backend, customers=backend)

    return AppContainer(
        backend=backend,
        store=store,
        stock=stock,
        cart=cart,
        persistence=persistence,
        finalizer=finalizer,
    )


def start_session(container: AppContainer) -> bool:
    """Bind the walk-in customer and try to bring back an interrupted cart.

    Returns True when a cart was restored. Neither step is fatal.
    """
    try:
        container.cart.set_default_customer(container.backend.get_walk_in_customer())
    except CatalogUnavailableError as e:
        log.warning("walk_in_customer_deferred error=%s", e)
    return container.persistence.restore_session()
