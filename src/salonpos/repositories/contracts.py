from __future__ import annotations

from typing import Iterable, Optional, Protocol

from salonpos.domain.models import (
    InventoryProjection,
    MovementDraft,
    Order,
    OrderDraft,
    OrderItem,
    OrderItemDraft,
    RecordId,
    SellableItemView,
    StockMovement,
)


class UnitOfWork(Protocol):
    """Write scope for one order commit.

    ``atomic`` tells the caller whether leaving the scope with an exception
    discards every write made inside it.
    """

    atomic: bool

    def __enter__(self) -> "UnitOfWork": ...
    def __exit__(self, exc_type, exc, tb) -> None: ...
    def insert_order(self, draft: OrderDraft) -> Order: ...
    def insert_order_items(self, order_id: RecordId, items: Iterable[OrderItemDraft]) -> list[OrderItem]: ...
    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]: ...


class RecordStore(Protocol):
    def list_active_sellable_items(self) -> list[SellableItemView]: ...
    def get_sellable_item(self, item_id: RecordId) -> Optional[SellableItemView]: ...
    def get_projection(self, item_id: RecordId) -> InventoryProjection: ...
    def read_movements(self, item_id: RecordId, limit: int | None = None) -> list[StockMovement]: ...
    def list_low_stock(self, limit: int = 10) -> list[SellableItemView]: ...
    def set_reserved_stock(self, item_id: RecordId, reserved_stock: int) -> InventoryProjection: ...
    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]: ...
    def insert_order(self, draft: OrderDraft) -> Order: ...
    def insert_order_items(self, order_id: RecordId, items: Iterable[OrderItemDraft]) -> list[OrderItem]: ...
    def unit_of_work(self) -> UnitOfWork: ...
