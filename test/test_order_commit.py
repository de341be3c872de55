import re
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from conftest import WIDE_END, WIDE_START, add_product, add_service, new_repo, staff

from salonpos.application.container import build_container
from salonpos.domain.errors import (
    EmptyCartError,
    InsufficientStockError,
    PartialCommitError,
    StorageUnavailableError,
    UnauthenticatedError,
    ValidationError,
)
from salonpos.repositories.sqlite_repo import SqliteRepository
from salonpos.repositories.unit_of_work import RepositoryUnitOfWork
from salonpos.services.cart import Cart
from salonpos.services.order_service import (
    STATE_COMMITTED,
    STATE_FAILED,
    OrderCommitWorkflow,
    OrderNumberGenerator,
    epoch_millis,
    format_order_number,
)
from salonpos.services.stock_ledger import StockLedger

MOMENT = datetime(2025, 3, 7, 14, 30, 15, 123000)


def _workflow(store, cashier=None, **kwargs):
    ledger = StockLedger(store)
    cart = Cart(ledger)
    workflow = OrderCommitWorkflow(store, ledger, cashier or staff("cashier"), clock=lambda: MOMENT, **kwargs)
    return ledger, cart, workflow


def _fill(repo, cart, product_id, service_id=None, product_qty=2):
    for _ in range(product_qty):
        cart.add_item(repo.get_sellable_item(product_id))
    if service_id is not None:
        cart.add_item(repo.get_sellable_item(service_id))


class StockFailingRepository(SqliteRepository):
    def insert_stock_movement(self, draft, enforce_available=False):
        raise RuntimeError("stock table unreachable")


class ApplyFailingRepository(SqliteRepository):
    def _apply_movement(self, cur, draft, enforce_available):
        raise RuntimeError("disk I/O error")


class OrderUnavailableRepository(SqliteRepository):
    def insert_order(self, draft):
        raise StorageUnavailableError("Record store unavailable: timed out")


def test_commit_stores_order_items_and_sale_movements(tmp_path: Path):
    container = build_container(tmp_path / "pos.db")
    repo = container.repo
    pid = add_product(repo, stock=5)
    sid = add_service(repo)
    till = container.open_till(staff("cashier"))
    _fill(repo, till.cart, pid, sid)

    result = till.checkout.commit(till.cart, "card", notes=" regular client ")

    order = result.order
    assert order.subtotal == Decimal("1300.00")
    assert order.vat_amount == Decimal("273.00")
    assert order.total == Decimal("1573.00")
    assert order.status == "completed"
    assert order.payment_method == "card"
    assert order.notes == "regular client"
    assert order.cashier_id == "cashier-1"
    assert len(result.items) == 2

    stored = container.orders.get_order_by_number(order.order_number)
    assert stored.total == Decimal("1573.00")
    assert sum(i.total for i in container.orders.order_items(stored.id)) == stored.total

    [movement] = result.movements
    assert movement.kind == "sale"
    assert movement.quantity == -2
    assert movement.reference_type == "order"
    assert movement.reference_id == order.order_number
    assert result.projections[pid].current_stock == 3
    assert repo.get_projection(pid).current_stock == 3

    assert till.cart.is_empty
    assert till.checkout.state == STATE_COMMITTED


def test_service_only_order_writes_no_movements(tmp_path: Path):
    repo = new_repo(tmp_path)
    sid = add_service(repo)
    _ledger, cart, workflow = _workflow(repo)
    cart.add_item(repo.get_sellable_item(sid))
    cart.set_customer(repo.add_customer("Ana", "Lopez", None, None, None))

    result = workflow.commit(cart, "cash")

    assert result.movements == []
    assert result.order.total == Decimal("968.00")
    assert repo.get_order(result.order.id).customer_id == result.order.customer_id


def test_empty_cart_is_rejected(tmp_path: Path):
    repo = new_repo(tmp_path)
    _ledger, cart, workflow = _workflow(repo)

    with pytest.raises(EmptyCartError):
        workflow.commit(cart)


def test_missing_cashier_is_rejected_before_any_write(tmp_path: Path):
    repo = new_repo(tmp_path)
    sid = add_service(repo)
    ledger = StockLedger(repo)
    cart = Cart(ledger)
    cart.add_item(repo.get_sellable_item(sid))
    workflow = OrderCommitWorkflow(repo, ledger, None)

    with pytest.raises(UnauthenticatedError):
        workflow.commit(cart)

    assert repo.list_orders_between(WIDE_START, WIDE_END) == []
    assert not cart.is_empty


def test_unknown_payment_method_is_rejected(tmp_path: Path):
    repo = new_repo(tmp_path)
    sid = add_service(repo)
    _ledger, cart, workflow = _workflow(repo)
    cart.add_item(repo.get_sellable_item(sid))

    with pytest.raises(ValidationError, match="Payment method"):
        workflow.commit(cart, "crypto")

    assert repo.list_orders_between(WIDE_START, WIDE_END) == []


def test_atomic_store_rolls_back_everything_on_stock_failure(tmp_path: Path):
    seed = new_repo(tmp_path)
    pid = add_product(seed, stock=5)
    repo = ApplyFailingRepository(seed.db_path)
    _ledger, cart, workflow = _workflow(repo)
    _fill(repo, cart, pid)

    with pytest.raises(RuntimeError, match="disk I/O"):
        workflow.commit(cart)

    assert repo.list_orders_between(WIDE_START, WIDE_END) == []
    assert repo.get_projection(pid).current_stock == 5
    assert cart.line_for(pid).quantity == 2
    assert workflow.state == STATE_FAILED
    assert workflow.failed_step == "stock"


def test_non_atomic_store_reports_partial_commit(tmp_path: Path):
    seed = new_repo(tmp_path)
    pid = add_product(seed, stock=5)
    repo = StockFailingRepository(seed.db_path)
    _ledger, cart, workflow = _workflow(repo, uow_factory=lambda: RepositoryUnitOfWork(repo))
    _fill(repo, cart, pid)

    with pytest.raises(PartialCommitError) as excinfo:
        workflow.commit(cart)

    err = excinfo.value
    assert err.step == "stock"
    stored = repo.get_order_by_number(err.order_number)
    assert stored is not None
    assert stored.id == err.order_id
    assert len(repo.order_items_for_order(stored.id)) == 1
    assert repo.get_projection(pid).current_stock == 5
    assert not cart.is_empty


def test_failure_before_header_is_not_a_partial_commit(tmp_path: Path):
    seed = new_repo(tmp_path)
    sid = add_service(seed)
    repo = OrderUnavailableRepository(seed.db_path)
    _ledger, cart, workflow = _workflow(repo, uow_factory=lambda: RepositoryUnitOfWork(repo))
    cart.add_item(repo.get_sellable_item(sid))

    with pytest.raises(StorageUnavailableError):
        workflow.commit(cart)

    assert workflow.failed_step == "order"
    assert not cart.is_empty


def test_two_tills_cannot_both_sell_the_last_unit(tmp_path: Path):
    container = build_container(tmp_path / "pos.db")
    pid = add_product(container.repo, stock=1)
    first = container.open_till(staff("cashier", "c-1"))
    second = container.open_till(staff("cashier", "c-2"))
    first.cart.add_item(container.repo.get_sellable_item(pid))
    second.cart.add_item(container.repo.get_sellable_item(pid))

    first.checkout.commit(first.cart)
    with pytest.raises(InsufficientStockError):
        second.checkout.commit(second.cart)

    assert len(container.repo.list_orders_between(WIDE_START, WIDE_END)) == 1
    assert container.repo.get_projection(pid).current_stock == 0
    assert not second.cart.is_empty


def test_committed_prices_ignore_later_catalog_changes(tmp_path: Path):
    container = build_container(tmp_path / "pos.db")
    repo = container.repo
    sid = add_service(repo)
    till = container.open_till(staff("cashier"))
    till.cart.add_item(repo.get_sellable_item(sid))

    view = repo.get_sellable_item(sid)
    container.catalog.update_item(
        staff("manager"), sid, view.item.name, "service", Decimal("950.00"), view.item.vat_rate_id, False
    )
    result = till.checkout.commit(till.cart)

    assert result.items[0].unit_price == Decimal("800.00")
    assert result.order.subtotal == Decimal("800.00")


def test_order_number_format():
    moment = datetime(1970, 1, 1, 0, 16, 40, 123000)

    assert epoch_millis(moment) == 1_000_123
    assert format_order_number(moment) == "700101-000123"
    assert format_order_number(moment + timedelta(milliseconds=1)) == "700101-000124"
    assert re.fullmatch(r"250307-\d{6}", format_order_number(MOMENT))


def test_order_numbers_one_millisecond_apart_share_the_date():
    now = format_order_number(MOMENT)
    later = format_order_number(MOMENT + timedelta(milliseconds=1))

    assert now == "250307-815123"
    assert later == "250307-815124"
    assert now[:7] == later[:7] == "250307-"
    assert now[7:] != later[7:]


def test_order_numbers_increase_within_one_millisecond():
    numbers = OrderNumberGenerator(clock=lambda: MOMENT)

    first, second, third = numbers.next(), numbers.next(), numbers.next()

    assert first < second < third
    assert int(second[-6:]) == int(first[-6:]) + 1


def test_order_number_is_unique_in_the_store(tmp_path: Path):
    repo = new_repo(tmp_path)
    sid = add_service(repo)
    _ledger, cart, workflow = _workflow(repo)

    numbers = []
    for _ in range(3):
        cart.add_item(repo.get_sellable_item(sid))
        numbers.append(workflow.commit(cart).order.order_number)

    assert len(set(numbers)) == 3
