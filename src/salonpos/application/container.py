from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from salonpos.config import PosSettings
from salonpos.domain.models import StaffMember
from salonpos.repositories.rest_store import RestRecordStore
from salonpos.repositories.sqlite_repo import SqliteRepository
from salonpos.services.access_service import AccessService
from salonpos.services.cart import Cart
from salonpos.services.catalog_service import CatalogService
from salonpos.services.customer_service import CustomerService
from salonpos.services.operations_service import OperationsService
from salonpos.services.order_service import OrderCommitWorkflow, OrderNumberGenerator, OrderService
from salonpos.services.reporting_service import ReportingService
from salonpos.services.stock_ledger import StockLedger


@dataclass
class Till:
    """One cashier session: its cart and the workflow that commits it."""

    cashier: StaffMember
    ledger: StockLedger
    cart: Cart
    checkout: OrderCommitWorkflow


def open_till(store, cashier: Optional[StaffMember], settings: PosSettings | None = None) -> Till:
    settings = settings or PosSettings()
    access = AccessService()
    access.require_action(cashier, "create_order")
    ledger = StockLedger(store, enforce_available=settings.enforce_available_stock, access=access)
    cart = Cart(ledger, cashier=cashier)
    checkout = OrderCommitWorkflow(store, ledger, cashier, access=access, numbers=OrderNumberGenerator())
    return Till(cashier=cashier, ledger=ledger, cart=cart, checkout=checkout)


def open_remote_till(settings: PosSettings, cashier: Optional[StaffMember]) -> Till:
    if not settings.backend_url or not settings.backend_key:
        raise ValueError("SALONPOS_BACKEND_URL and SALONPOS_BACKEND_KEY must be set for a hosted backend.")
    store = RestRecordStore(settings.backend_url, settings.backend_key, timeout=settings.store_timeout_seconds)
    return open_till(store, cashier, settings)


@dataclass(frozen=True)
class AppContainer:
    settings: PosSettings
    repo: SqliteRepository
    access: AccessService
    catalog: CatalogService
    customers: CustomerService
    stock: StockLedger
    orders: OrderService
    reporting: ReportingService
    operations: OperationsService

    def open_till(self, cashier: Optional[StaffMember]) -> Till:
        return open_till(self.repo, cashier, self.settings)


def build_container(db_path: Path | str, settings: PosSettings | None = None) -> AppContainer:
    settings = settings or PosSettings()
    repo = SqliteRepository(db_path, timeout=settings.store_timeout_seconds)
    repo.init_db()

    access = AccessService()
    stock = StockLedger(repo, enforce_available=settings.enforce_available_stock, access=access)

    return AppContainer(
        settings=settings,
        repo=repo,
        access=access,
        catalog=CatalogService(repo, access),
        customers=CustomerService(repo, access),
        stock=stock,
        orders=OrderService(repo),
        reporting=ReportingService(repo, access),
        operations=OperationsService(repo, stock),
    )
