from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

import requests

from salonpos.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    RecordStoreError,
    StorageUnavailableError,
)
from salonpos.domain.models import (
    InventoryProjection,
    MovementDraft,
    Order,
    OrderDraft,
    OrderItem,
    OrderItemDraft,
    RecordId,
    SellableItem,
    SellableItemView,
    StockMovement,
    VatRate,
)
from salonpos.repositories.unit_of_work import RepositoryUnitOfWork

log = logging.getLogger(__name__)

_SERVICE_SELECT = "*,vat_rate:vat_rates(*),inventory(*)"


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _first(value):
    # embedded one-to-one resources come back either as an object or a one-element list
    if isinstance(value, list):
        return value[0] if value else None
    return value


class RestRecordStore:
    """Record store on a hosted PostgREST backend.

    The backend keeps the ``inventory`` table in step with ``stock_movements``
    on its side. Calls land one by one, so the unit of work is not atomic.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 5.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = float(timeout)
        self.session = session or requests.Session()

    def _request(
        self,
        method: str,
        table: str,
        params: dict | None = None,
        payload: object = None,
        prefer: str | None = None,
    ):
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            r = self.session.request(method, url, params=params, json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            log.warning("store_unreachable method=%s table=%s error=%s", method, table, e)
            raise StorageUnavailableError(f"Record store unreachable: {e}") from e

        if r.status_code >= 500:
            raise StorageUnavailableError(f"Record store error {r.status_code}: {r.text}")
        if r.status_code >= 400:
            raise RecordStoreError(f"Record store rejected {method} {table} ({r.status_code}): {r.text}")
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            log.warning("store_bad_payload method=%s table=%s error=%s", method, table, e)
            raise RecordStoreError(f"Record store sent a non-JSON reply for {method} {table}.") from e

    # ---------- Mapping ----------
    @staticmethod
    def _view_from_json(data: dict) -> SellableItemView:
        vat = _first(data.get("vat_rate")) or {}
        inv = _first(data.get("inventory")) or {}
        item = SellableItem(
            id=data["id"],
            name=str(data["name"]),
            kind=str(data.get("type") or "service"),
            unit_price=Decimal(str(data["price"])),
            vat_rate_id=data["vat_rate_id"],
            track_inventory=bool(data.get("track_inventory")),
            min_stock=int(data.get("min_stock") or 0),
            active=bool(data.get("is_active", True)),
            description=data.get("description"),
            purchase_price=_dec(data.get("purchase_price")),
            duration_minutes=data.get("duration_minutes"),
        )
        vat_rate = VatRate(
            id=vat.get("id", data["vat_rate_id"]),
            name=str(vat.get("name", "")),
            percentage=Decimal(str(vat.get("rate", 0))),
            active=bool(vat.get("is_active", True)),
        )
        projection = InventoryProjection(
            item_id=item.id,
            current_stock=int(inv.get("current_stock") or 0),
            reserved_stock=int(inv.get("reserved_stock") or 0),
        )
        return SellableItemView(item=item, vat_rate=vat_rate, inventory=projection)

    @staticmethod
    def _movement_from_json(data: dict, stock_after: int = 0) -> StockMovement:
        return StockMovement(
            id=data["id"],
            item_id=data["service_id"],
            kind=str(data["type"]),
            quantity=int(data["quantity"]),
            stock_after=int(data.get("stock_after", stock_after) or 0),
            reference_type=str(data.get("reference_type") or ""),
            reference_id=data.get("reference_id"),
            actor_id=data.get("user_id"),
            notes=data.get("notes"),
            created_at=str(data.get("created_at") or ""),
        )

    @staticmethod
    def _order_from_json(data: dict) -> Order:
        return Order(
            id=data["id"],
            order_number=str(data["order_number"]),
            customer_id=data.get("customer_id"),
            cashier_id=str(data["user_id"]),
            subtotal=Decimal(str(data["subtotal"])),
            vat_amount=Decimal(str(data["vat_amount"])),
            total=Decimal(str(data["total"])),
            payment_method=str(data["payment_method"]),
            status=str(data["status"]),
            notes=data.get("notes"),
            created_at=str(data.get("created_at") or ""),
            updated_at=str(data.get("updated_at") or data.get("created_at") or ""),
        )

    # ---------- Reads ----------
    def list_active_sellable_items(self) -> list[SellableItemView]:
        rows = self._request(
            "GET",
            "services",
            params={"select": _SERVICE_SELECT, "is_active": "eq.true", "order": "name.asc"},
        )
        return [self._view_from_json(r) for r in rows or []]

    def get_sellable_item(self, item_id: RecordId) -> Optional[SellableItemView]:
        rows = self._request("GET", "services", params={"select": _SERVICE_SELECT, "id": f"eq.{item_id}"})
        if not rows:
            return None
        return self._view_from_json(rows[0])

    def get_projection(self, item_id: RecordId) -> InventoryProjection:
        rows = self._request(
            "GET",
            "inventory",
            params={"select": "service_id,current_stock,reserved_stock", "service_id": f"eq.{item_id}"},
        )
        if not rows:
            if self.get_sellable_item(item_id) is None:
                raise NotFoundError("Sellable item not found.")
            return InventoryProjection(item_id=item_id)
        row = rows[0]
        return InventoryProjection(
            item_id=item_id,
            current_stock=int(row.get("current_stock") or 0),
            reserved_stock=int(row.get("reserved_stock") or 0),
        )

    def list_low_stock(self, limit: int = 10) -> list[SellableItemView]:
        rows = self._request(
            "GET",
            "services",
            params={
                "select": _SERVICE_SELECT,
                "is_active": "eq.true",
                "track_inventory": "eq.true",
                "order": "name.asc",
            },
        )
        low = [v for v in (self._view_from_json(r) for r in rows or []) if v.below_minimum]
        low.sort(key=lambda v: (v.inventory.available_stock - v.item.min_stock, v.item.name))
        return low[: int(limit)]

    def read_movements(self, item_id: RecordId, limit: int | None = None) -> list[StockMovement]:
        params = {"select": "*", "service_id": f"eq.{item_id}", "order": "created_at.desc"}
        if limit is not None:
            params["limit"] = str(int(limit))
        rows = self._request("GET", "stock_movements", params=params) or []
        return [self._movement_from_json(r) for r in reversed(rows)]

    # ---------- Writes ----------
    def set_reserved_stock(self, item_id: RecordId, reserved_stock: int) -> InventoryProjection:
        rows = self._request(
            "PATCH",
            "inventory",
            params={"service_id": f"eq.{item_id}"},
            payload={"reserved_stock": int(reserved_stock)},
            prefer="return=representation",
        )
        if not rows:
            if self.get_sellable_item(item_id) is None:
                raise NotFoundError("Sellable item not found.")
            rows = self._request(
                "POST",
                "inventory",
                payload={"service_id": item_id, "current_stock": 0, "reserved_stock": int(reserved_stock)},
                prefer="return=representation",
            )
        row = _first(rows) or {}
        return InventoryProjection(
            item_id=item_id,
            current_stock=int(row.get("current_stock") or 0),
            reserved_stock=int(row.get("reserved_stock") or 0),
        )

    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]:
        if enforce_available and draft.quantity < 0:
            # read-then-write; the backend has to serialize concurrent tills itself
            before = self.get_projection(draft.item_id)
            if before.available_stock + draft.quantity < 0:
                raise InsufficientStockError(
                    f"Not enough stock for item {draft.item_id}. Available: {before.available_stock}"
                )

        rows = self._request(
            "POST",
            "stock_movements",
            payload={
                "service_id": draft.item_id,
                "type": draft.kind,
                "quantity": int(draft.quantity),
                "reference_type": draft.reference_type,
                "reference_id": draft.reference_id,
                "notes": draft.notes,
                "user_id": draft.actor_id,
            },
            prefer="return=representation",
        )
        projection = self.get_projection(draft.item_id)
        movement = self._movement_from_json(_first(rows), stock_after=projection.current_stock)
        return movement, projection

    def insert_order(self, draft: OrderDraft) -> Order:
        rows = self._request(
            "POST",
            "orders",
            payload={
                "order_number": draft.order_number,
                "customer_id": draft.customer_id,
                "user_id": draft.cashier_id,
                "subtotal": str(draft.subtotal),
                "vat_amount": str(draft.vat_amount),
                "total": str(draft.total),
                "payment_method": draft.payment_method,
                "status": draft.status,
                "notes": draft.notes,
            },
            prefer="return=representation",
        )
        return self._order_from_json(_first(rows))

    def insert_order_items(self, order_id: RecordId, items: Iterable[OrderItemDraft]) -> list[OrderItem]:
        items = list(items)
        payload = [
            {
                "order_id": order_id,
                "service_id": it.item_id,
                "quantity": int(it.quantity),
                "unit_price": str(it.unit_price),
                "vat_rate": str(it.vat_rate),
                "subtotal": str(it.subtotal),
                "vat_amount": str(it.vat_amount),
                "total": str(it.total),
            }
            for it in items
        ]
        rows = self._request("POST", "order_items", payload=payload, prefer="return=representation") or []
        return [
            OrderItem(
                id=r["id"],
                order_id=r["order_id"],
                item_id=r["service_id"],
                quantity=int(r["quantity"]),
                unit_price=Decimal(str(r["unit_price"])),
                vat_rate=Decimal(str(r["vat_rate"])),
                subtotal=Decimal(str(r["subtotal"])),
                vat_amount=Decimal(str(r["vat_amount"])),
                total=Decimal(str(r["total"])),
            )
            for r in rows
        ]

    def unit_of_work(self) -> RepositoryUnitOfWork:
        return RepositoryUnitOfWork(self)
