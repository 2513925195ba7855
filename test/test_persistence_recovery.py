import json
import sqlite3
from pathlib import Path

from conftest import D, MemoryStore, build_engine, make_product
from pdv.domain.models import PaymentMethod, ProductVariant
from pdv.repositories.sqlite_store import SqliteKeyValueStore
from pdv.services.persistence_service import SNAPSHOT_KEY, snapshot_from_cart, snapshot_to_json


def _snapshot(items, **extra):
    payload = {"items": items, "discount": None, "note": "", "payment_method": None}
    payload.update(extra)
    return json.dumps(payload)


def test_every_mutation_writes_a_minimal_snapshot():
    eng = build_engine(make_product("p-a"))
    product = eng.catalog.products["p-a"]
    eng.cart.add_item(product, 2)
    eng.cart.apply_discount("line", "percent", 10, key="p-a")
    eng.cart.apply_manual_price_adjustment("p-a", 4)
    eng.cart.apply_discount("order", "amount", 5)
    eng.cart.set_payment_method("cash")

    stored = json.loads(eng.store.get(SNAPSHOT_KEY))
    assert stored == {
        "items": [
            {
                "product_id": "p-a",
                "quantity": 2,
                "variant": None,
                "discount": {"type": "percent", "value": "10.00"},
                "manual_price_adjustment": "4",
            }
        ],
        "discount": {"type": "amount", "value": "5.00"},
        "note": "",
        "payment_method": "cash",
    }
    # prices and names never reach storage
    assert "25" not in eng.store.get(SNAPSHOT_KEY)
    assert "Perfume" not in eng.store.get(SNAPSHOT_KEY)


def test_snapshot_removed_when_cart_has_nothing_meaningful():
    eng = build_engine(make_product("p-a"))
    eng.cart.set_note("call customer back")
    assert eng.persistence.has_persisted_data()

    eng.cart.set_note("   ")
    assert not eng.persistence.has_persisted_data()

    eng.cart.add_item(eng.catalog.products["p-a"], 1)
    assert eng.persistence.has_persisted_data()
    eng.cart.clear()
    assert eng.store.get(SNAPSHOT_KEY) is None


def test_payment_method_alone_is_not_persisted():
    eng = build_engine(make_product("p-a"))
    eng.cart.set_payment_method("pix")
    assert not eng.persistence.has_persisted_data()


def test_recovery_refetches_prices_and_reapplies_discounts():
    store = MemoryStore(
        {
            SNAPSHOT_KEY: _snapshot(
                [
                    {
                        "product_id": "p-a",
                        "quantity": 2,
                        "discount": {"type": "percent", "value": "10"},
                        "manual_price_adjustment": "4",
                    }
                ],
                discount={"type": "percent", "value": "50"},
                note="regular",
                payment_method="debit",
            )
        }
    )
    eng = build_engine(make_product("p-a", retail="30.00", stock=10), store=store)

    assert eng.persistence.restore_session()
    state = eng.cart.state
    line = state.items[0]
    assert line.unit_price == D("30.00")
    assert line.pre_discount_subtotal == D("64.00")
    assert line.discount_amount == D("6.40")
    assert line.subtotal == D("57.60")
    assert state.discount_amount == D("28.80")
    assert state.total == D("28.80")
    assert state.note == "regular"
    assert state.payment_method == PaymentMethod.DEBIT
    assert eng.persistence.was_recovered

    eng.persistence.acknowledge_recovery()
    assert not eng.persistence.was_recovered


def test_recovery_clamps_quantity_to_current_stock():
    store = MemoryStore({SNAPSHOT_KEY: _snapshot([{"product_id": "p-a", "quantity": 8}])})
    eng = build_engine(make_product("p-a", stock=3), store=store)

    assert eng.persistence.restore_session()
    assert eng.cart.state.items[0].quantity == 3
    assert eng.cart.state.items[0].available_stock == 3
    assert json.loads(store.get(SNAPSHOT_KEY))["items"][0]["quantity"] == 3


def test_recovery_drops_missing_inactive_and_out_of_stock_lines():
    store = MemoryStore(
        {
            SNAPSHOT_KEY: _snapshot(
                [
                    {"product_id": "gone", "quantity": 1},
                    {"product_id": "off", "quantity": 1},
                    {"product_id": "empty", "quantity": 1},
                    {"product_id": "ok", "quantity": 1, "variant": {"size": "500", "unit": "ml"}},
                    {"product_id": "ok", "quantity": 1, "variant": {"size": "2", "unit": "l"}},
                ]
            )
        }
    )
    eng = build_engine(
        make_product("off", status="inactive"),
        make_product("empty", stock=0),
        make_product("ok", retail="10.00", variants=(ProductVariant(size="500", unit="ml", price_adjustment=D("10")),)),
        store=store,
    )

    assert eng.persistence.restore_session()
    items = eng.cart.state.items
    assert [item.key for item in items] == [("ok", "500ml")]
    assert items[0].unit_price == D("11.00")
    assert items[0].variant == ProductVariant(size="500", unit="ml", price_adjustment=D("10"))


def test_recovery_with_no_surviving_lines_restores_nothing():
    store = MemoryStore({SNAPSHOT_KEY: _snapshot([{"product_id": "off", "quantity": 1}], note="x")})
    eng = build_engine(make_product("off", status="inactive"), store=store)

    assert not eng.persistence.restore_session()
    assert eng.cart.is_empty
    assert not eng.persistence.was_recovered


def test_recovery_aborts_on_catalog_error():
    store = MemoryStore({SNAPSHOT_KEY: _snapshot([{"product_id": "p-a", "quantity": 1}])})
    eng = build_engine(make_product("p-a"), store=store)
    eng.catalog.down = True

    assert not eng.persistence.restore_session()
    assert eng.cart.is_empty
    assert store.get(SNAPSHOT_KEY) is not None


def test_malformed_snapshots_are_discarded():
    payloads = [
        "{not json",
        json.dumps([1, 2, 3]),
        json.dumps({"items": "nope"}),
        _snapshot([{"product_id": "p-a", "quantity": 0}]),
        _snapshot([{"product_id": "p-a", "quantity": 1.5}]),
        _snapshot([{"quantity": 1}]),
        _snapshot([{"product_id": "p-a", "quantity": 1, "discount": {"type": "bogus", "value": 1}}]),
        _snapshot([{"product_id": "p-a", "quantity": 1}], payment_method="cheque"),
    ]
    for raw in payloads:
        store = MemoryStore({SNAPSHOT_KEY: raw})
        eng = build_engine(make_product("p-a"), store=store)
        assert not eng.persistence.restore_session(), raw
        assert store.get(SNAPSHOT_KEY) is None, raw
        assert eng.catalog.calls == []


def test_clear_persisted_data():
    eng = build_engine(make_product("p-a"))
    eng.cart.add_item(eng.catalog.products["p-a"], 1)
    eng.persistence.clear_persisted_data()
    assert not eng.persistence.has_persisted_data()


def test_snapshot_survives_a_restart_through_sqlite(tmp_path: Path):
    db = tmp_path / "cart.db"
    store = SqliteKeyValueStore(db)
    store.init_db()
    first = build_engine(make_product("p-a", stock=10), store=store)
    first.cart.add_item(first.catalog.products["p-a"], 4)
    first.cart.apply_discount("line", "amount", 20, key="p-a")

    reopened = SqliteKeyValueStore(db)
    reopened.init_db()
    second = build_engine(make_product("p-a", retail="20.00", stock=10), store=reopened)
    assert second.persistence.restore_session()
    line = second.cart.state.items[0]
    assert line.quantity == 4
    assert line.discount_amount == D("20.00")
    assert line.subtotal == D("60.00")


def test_sqlite_store_get_set_remove(tmp_path: Path):
    store = SqliteKeyValueStore(tmp_path / "kv.db")
    store.init_db()
    store.init_db()

    assert store.get("k") is None
    store.set("k", "one")
    store.set("k", "two")
    assert store.get("k") == "two"
    store.remove("k")
    store.remove("k")
    assert store.get("k") is None


def test_snapshot_json_round_trip_keeps_variant_and_discount():
    eng = build_engine(make_product("p-a", variants=(ProductVariant("1", "l", "789", D("150")),)))
    product = eng.catalog.products["p-a"]
    eng.cart.add_item(product, 1, product.variants[0])
    raw = snapshot_to_json(snapshot_from_cart(eng.cart.state))
    assert json.loads(raw)["items"][0]["variant"] == {"size": "1", "unit": "l"}


def test_recovery_prices_variants_from_the_current_catalog():
    saved = ProductVariant(size="500", unit="ml", price_adjustment=D("10"))
    first = build_engine(make_product("p-a", variants=(saved,)))
    first.cart.add_item(first.catalog.products["p-a"], 1, saved)
    assert first.cart.state.items[0].unit_price == D("27.50")

    repriced = ProductVariant(size="500", unit="ml", price_adjustment=D("50"))
    second = build_engine(make_product("p-a", variants=(repriced,)), store=first.store)
    assert second.persistence.restore_session()
    line = second.cart.state.items[0]
    assert line.unit_price == D("37.50")
    assert line.variant == repriced


def test_recovery_clamps_variant_lines_against_shared_stock():
    small = ProductVariant(size="500", unit="ml")
    large = ProductVariant(size="1", unit="l")
    store = MemoryStore(
        {
            SNAPSHOT_KEY: _snapshot(
                [
                    {"product_id": "p-a", "quantity": 6, "variant": {"size": "500", "unit": "ml"}},
                    {"product_id": "p-a", "quantity": 6, "variant": {"size": "1", "unit": "l"}},
                    {"product_id": "p-a", "quantity": 2},
                ]
            )
        }
    )
    eng = build_engine(make_product("p-a", stock=10, variants=(small, large)), store=store)

    assert eng.persistence.restore_session()
    assert [(item.key, item.quantity) for item in eng.cart.state.items] == [
        (("p-a", "500ml"), 6),
        (("p-a", "1l"), 4),
    ]
    assert eng.cart.item_count == 10


class BrokenStore(MemoryStore):
    def get(self, key):
        raise sqlite3.OperationalError("database is locked")


def test_recovery_tolerates_an_unreadable_store():
    eng = build_engine(make_product("p-a"), store=BrokenStore())
    assert not eng.persistence.restore_session()
    assert eng.cart.is_empty
    assert eng.catalog.calls == []
