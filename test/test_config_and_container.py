import json
import logging
from pathlib import Path

import pytest

from conftest import make_product
from pdv.application.container import build_container, start_session
from pdv.config import ServiceSettings, load_service_settings
from pdv.domain.errors import CatalogUnavailableError, ConfigurationError
from pdv.logging_config import JsonFormatter, setup_logging, split_event, teardown_logging
from pdv.services.persistence_service import SNAPSHOT_KEY


def test_service_settings_from_env():
    settings = load_service_settings({"PDV_API_URL": "https://x.example", "PDV_API_KEY": "k", "PDV_HTTP_TIMEOUT": "3"})
    assert settings == ServiceSettings(api_url="https://x.example", api_key="k", timeout=3.0)
    assert load_service_settings({"PDV_API_URL": "u", "PDV_API_KEY": "k"}).timeout == 10.0


@pytest.mark.parametrize(
    "env",
    [
        {},
        {"PDV_API_URL": "u"},
        {"PDV_API_URL": "u", "PDV_API_KEY": "k", "PDV_HTTP_TIMEOUT": "soon"},
        {"PDV_API_URL": "u", "PDV_API_KEY": "k", "PDV_HTTP_TIMEOUT": "0"},
    ],
)
def test_service_settings_reject_bad_env(env):
    with pytest.raises(ConfigurationError):
        load_service_settings(env)


def test_json_formatter_emits_one_object_per_record():
    record = logging.LogRecord("pdv.sales", logging.INFO, __file__, 1, "sale_finalized order_id=%s", ("s-1",), None)
    payload = json.loads(JsonFormatter().format(record))
    assert payload["logger"] == "pdv.sales"
    assert payload["event"] == "sale_finalized"
    assert payload["fields"] == {"order_id": "s-1"}


def test_split_event_keeps_spaces_inside_values():
    assert split_event("cart_recovery_aborted error=catalog down key=pdv-cart-data") == (
        "cart_recovery_aborted",
        {"error": "catalog down", "key": "pdv-cart-data"},
    )
    assert split_event("plain message") == ("plain message", {})


def test_setup_logging_routes_sales_to_their_own_file(tmp_path: Path):
    try:
        setup_logging(tmp_path)
        setup_logging(tmp_path)
        logging.getLogger("pdv.sales").info("sale_finalized order_id=%s total=%s", "s-9", "12.50")
        logging.getLogger("pdv.cart").info("cart_restored lines=%s", 1)
    finally:
        teardown_logging()

    sales = [json.loads(line) for line in (tmp_path / "sales.log").read_text(encoding="utf-8").splitlines()]
    assert len(sales) == 1
    assert sales[0]["fields"] == {"order_id": "s-9", "total": "12.50"}
    assert (tmp_path / "cart.log").read_text(encoding="utf-8").count("cart_restored") == 1
    assert "cart_restored" not in (tmp_path / "sales.log").read_text(encoding="utf-8")


def test_container_restores_cart_and_tolerates_missing_walk_in(tmp_path: Path):
    container = build_container(ServiceSettings("https://x.example", "k"), tmp_path / "cart.db")
    container.store.set(SNAPSHOT_KEY, json.dumps({"items": [{"product_id": "p-a", "quantity": 2}]}))

    def walk_in_down():
        raise CatalogUnavailableError("down")

    backend = container.backend
    backend.get_walk_in_customer = walk_in_down  # type: ignore[method-assign]
    backend.get_product_by_id = lambda pid: make_product(pid)  # type: ignore[method-assign]

    assert start_session(container)
    assert container.cart.item_count == 2
    assert container.persistence.was_recovered
    assert container.cart.state.customer.id == ""
