import json
from datetime import datetime
from decimal import Decimal

import pytest
import requests

from conftest import staff

from salonpos.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    PartialCommitError,
    RecordStoreError,
    StorageUnavailableError,
)
from salonpos.domain.models import MovementDraft
from salonpos.repositories.rest_store import RestRecordStore
from salonpos.services.cart import Cart
from salonpos.services.order_service import OrderCommitWorkflow
from salonpos.services.stock_ledger import StockLedger

SERVICE_ROW = {
    "id": "svc-1",
    "name": "Thai massage 60 min",
    "type": "service",
    "price": 800,
    "vat_rate_id": "vat-21",
    "track_inventory": False,
    "min_stock": 0,
    "is_active": True,
    "duration_minutes": 60,
    "vat_rate": {"id": "vat-21", "name": "Standard", "rate": 21, "is_active": True},
    "inventory": None,
}

PRODUCT_ROW = {
    "id": "prd-1",
    "name": "Massage oil",
    "type": "product",
    "price": "250.00",
    "purchase_price": "100.00",
    "vat_rate_id": "vat-21",
    "track_inventory": True,
    "min_stock": 2,
    "is_active": True,
    "vat_rate": [{"id": "vat-21", "name": "Standard", "rate": "21", "is_active": True}],
    "inventory": [{"current_stock": 1, "reserved_stock": 0}],
}


class FakeResponse:
    def __init__(self, status_code=200, body=None, raw=None):
        self.status_code = status_code
        self._body = body
        if raw is not None:
            self.content = raw.encode()
        else:
            self.content = b"" if body is None else json.dumps(body).encode()
        self.text = self.content.decode()

    def json(self):
        if self._body is None and self.content:
            raise ValueError("Expecting value: line 1 column 1 (char 0)")
        return self._body


class FakeSession:
    def __init__(self, routes=None, error=None):
        self.routes = routes or {}
        self.error = error
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        table = url.rsplit("/", 1)[-1]
        self.calls.append((method, table, params, json, headers, timeout))
        if self.error:
            raise self.error
        route = self.routes.get((method, table), (404, {"message": "no route"}))
        if callable(route):
            route = route(params, json)
        if isinstance(route, FakeResponse):
            return route
        status, body = route
        return FakeResponse(status, body)

    def posted(self, table):
        return [c for c in self.calls if c[0] == "POST" and c[1] == table]


def _store(session):
    return RestRecordStore("https://pos.example.test/", "anon-key", timeout=3, session=session)


def test_requests_carry_key_and_timeout():
    session = FakeSession({("GET", "services"): (200, [SERVICE_ROW])})

    _store(session).list_active_sellable_items()

    method, table, params, _payload, headers, timeout = session.calls[0]
    assert (method, table) == ("GET", "services")
    assert params["is_active"] == "eq.true"
    assert headers["apikey"] == "anon-key"
    assert headers["Authorization"] == "Bearer anon-key"
    assert timeout == 3.0


def test_service_rows_map_to_item_views():
    session = FakeSession({("GET", "services"): (200, [SERVICE_ROW, PRODUCT_ROW])})

    service, product = _store(session).list_active_sellable_items()

    assert service.item.unit_price == Decimal("800")
    assert service.vat_rate.percentage == Decimal("21")
    assert service.item.track_inventory is False
    assert service.inventory.current_stock == 0
    assert product.item.kind == "product"
    assert product.item.margin_percent == Decimal("60.0")
    assert product.inventory.available_stock == 1
    assert product.below_minimum


def test_missing_projection_for_unknown_item_is_not_found():
    session = FakeSession({("GET", "inventory"): (200, []), ("GET", "services"): (200, [])})

    with pytest.raises(NotFoundError):
        _store(session).get_projection("nope")


@pytest.mark.parametrize(
    "error",
    [
        requests.Timeout("read timed out"),
        requests.ConnectionError("refused"),
        requests.exceptions.SSLError("certificate verify failed"),
        requests.exceptions.TooManyRedirects("exceeded 30 redirects"),
    ],
)
def test_network_failures_mean_store_unavailable(error):
    with pytest.raises(StorageUnavailableError):
        _store(FakeSession(error=error)).list_active_sellable_items()


def test_server_errors_mean_store_unavailable():
    session = FakeSession({("GET", "services"): (503, {"message": "maintenance"})})

    with pytest.raises(StorageUnavailableError):
        _store(session).list_active_sellable_items()


def test_client_errors_are_store_rejections():
    session = FakeSession({("GET", "services"): (400, {"message": "bad filter"})})

    with pytest.raises(RecordStoreError, match="400"):
        _store(session).list_active_sellable_items()


def test_non_json_reply_is_a_store_rejection():
    session = FakeSession({("GET", "services"): FakeResponse(200, raw="<html>gateway login</html>")})

    with pytest.raises(RecordStoreError, match="non-JSON"):
        _store(session).list_active_sellable_items()


def test_low_stock_filters_tracked_items_below_minimum():
    plenty = dict(PRODUCT_ROW, id="prd-2", name="Almond oil", inventory=[{"current_stock": 9, "reserved_stock": 0}])
    empty = dict(PRODUCT_ROW, id="prd-3", name="Body scrub", inventory=[{"current_stock": 0, "reserved_stock": 0}])
    session = FakeSession({("GET", "services"): (200, [plenty, PRODUCT_ROW, empty])})
    ledger = StockLedger(_store(session))

    low = ledger.low_stock()

    assert [v.item.name for v in low] == ["Body scrub", "Massage oil"]
    params = session.calls[0][2]
    assert params["track_inventory"] == "eq.true"
    assert params["is_active"] == "eq.true"


def test_reserved_stock_is_patched_on_the_inventory_row():
    session = FakeSession(
        {
            ("GET", "services"): (200, [PRODUCT_ROW]),
            ("PATCH", "inventory"): lambda params, body: (
                200,
                [{"service_id": "prd-1", "current_stock": 5, "reserved_stock": body["reserved_stock"]}],
            ),
        }
    )
    ledger = StockLedger(_store(session))

    projection = ledger.set_reserved_stock(staff("manager"), "prd-1", 2)

    [patch] = [c for c in session.calls if c[0] == "PATCH"]
    assert patch[2] == {"service_id": "eq.prd-1"}
    assert patch[3] == {"reserved_stock": 2}
    assert projection.available_stock == 3


def test_reserved_stock_creates_a_missing_inventory_row():
    session = FakeSession(
        {
            ("GET", "services"): (200, [PRODUCT_ROW]),
            ("PATCH", "inventory"): (200, []),
            ("POST", "inventory"): lambda params, body: (201, [body]),
        }
    )

    projection = _store(session).set_reserved_stock("prd-1", 1)

    [post] = session.posted("inventory")
    assert post[3] == {"service_id": "prd-1", "current_stock": 0, "reserved_stock": 1}
    assert projection.reserved_stock == 1


def test_reserved_stock_for_unknown_item_is_not_found():
    session = FakeSession({("PATCH", "inventory"): (200, []), ("GET", "services"): (200, [])})

    with pytest.raises(NotFoundError):
        _store(session).set_reserved_stock("nope", 1)

    assert session.posted("inventory") == []


def test_stock_sold_elsewhere_rejects_commit_before_any_write():
    session = FakeSession(
        {
            ("GET", "services"): (200, [PRODUCT_ROW]),
            ("GET", "inventory"): (200, [{"service_id": "prd-1", "current_stock": 1, "reserved_stock": 0}]),
        }
    )
    store = _store(session)
    ledger = StockLedger(store)
    cart = Cart(ledger)
    cart.add_item(store.get_sellable_item("prd-1"))
    # another till sells the last bottle before this one checks out
    session.routes[("GET", "inventory")] = (200, [{"service_id": "prd-1", "current_stock": 0, "reserved_stock": 0}])
    workflow = OrderCommitWorkflow(store, ledger, staff("cashier"))

    with pytest.raises(InsufficientStockError):
        workflow.commit(cart, "cash")

    assert session.posted("orders") == []
    assert session.posted("order_items") == []
    assert session.posted("stock_movements") == []
    assert workflow.failed_step == "stock_check"
    assert not cart.is_empty


def test_guarded_sale_is_checked_before_posting():
    session = FakeSession({("GET", "inventory"): (200, [{"service_id": "prd-1", "current_stock": 1, "reserved_stock": 0}])})
    draft = MovementDraft("prd-1", "sale", -2, "order", "250307-000001", "c-1", None, "2025-03-07 10:00:00")

    with pytest.raises(InsufficientStockError):
        _store(session).insert_stock_movement(draft, enforce_available=True)

    assert session.posted("stock_movements") == []


def test_movement_insert_posts_and_rereads_projection():
    session = FakeSession(
        {
            ("GET", "inventory"): (200, [{"service_id": "prd-1", "current_stock": 4, "reserved_stock": 1}]),
            ("POST", "stock_movements"): lambda params, body: (
                201,
                [dict(body, id="mv-1", created_at="2025-03-07T10:00:00")],
            ),
        }
    )
    draft = MovementDraft("prd-1", "in", 3, "adjustment", None, "m-1", "delivery", "2025-03-07 10:00:00")

    movement, projection = _store(session).insert_stock_movement(draft)

    [post] = session.posted("stock_movements")
    assert post[3]["service_id"] == "prd-1"
    assert post[3]["type"] == "in"
    assert post[4]["Prefer"] == "return=representation"
    assert movement.stock_after == 4
    assert movement.actor_id == "m-1"
    assert projection.available_stock == 3


def test_failed_items_insert_is_a_partial_commit():
    session = FakeSession(
        {
            ("GET", "services"): (200, [SERVICE_ROW]),
            ("POST", "orders"): lambda params, body: (201, [dict(body, id="ord-1", created_at="2025-03-07T10:00:00")]),
            ("POST", "order_items"): (409, {"message": "duplicate key"}),
        }
    )
    store = _store(session)
    ledger = StockLedger(store)
    cart = Cart(ledger)
    cart.add_item(store.get_sellable_item("svc-1"))
    workflow = OrderCommitWorkflow(store, ledger, staff("cashier"), clock=lambda: datetime(2025, 3, 7, 10, 0, 0))

    with pytest.raises(PartialCommitError) as excinfo:
        workflow.commit(cart, "card")

    assert excinfo.value.step == "items"
    assert excinfo.value.order_id == "ord-1"
    assert excinfo.value.order_number.startswith("250307-")
    [order_post] = session.posted("orders")
    assert order_post[3]["total"] == "968.00"
    assert order_post[3]["user_id"] == "cashier-1"
    assert not cart.is_empty


def test_rest_commit_happy_path():
    session = FakeSession(
        {
            ("GET", "services"): (200, [SERVICE_ROW]),
            ("POST", "orders"): lambda params, body: (201, [dict(body, id="ord-1")]),
            ("POST", "order_items"): lambda params, body: (
                201,
                [dict(row, id=f"it-{n}") for n, row in enumerate(body, start=1)],
            ),
        }
    )
    store = _store(session)
    ledger = StockLedger(store)
    cart = Cart(ledger)
    cart.add_item(store.get_sellable_item("svc-1"))

    result = OrderCommitWorkflow(store, ledger, staff("cashier")).commit(cart)

    assert result.order.id == "ord-1"
    assert result.items[0].item_id == "svc-1"
    assert result.items[0].total == Decimal("968.00")
    assert session.posted("stock_movements") == []
    assert cart.is_empty
