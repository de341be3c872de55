from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from salonpos.domain.models import (
    InventoryProjection,
    MovementDraft,
    Order,
    OrderDraft,
    OrderItem,
    OrderItemDraft,
    RecordId,
    StockMovement,
)


@dataclass
class RepositoryUnitOfWork:
    """Unit of Work adapter for stores without multi-statement transactions.

    Every call is forwarded to the store and lands immediately, so a failure
    half way leaves the earlier writes in place. ``atomic`` is False to let the
    commit workflow report that as a partial commit.
    """

    repo: object
    atomic: bool = False

    def __enter__(self) -> "RepositoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None

    def insert_order(self, draft: OrderDraft) -> Order:
        return self.repo.insert_order(draft)

    def insert_order_items(self, order_id: RecordId, items: Iterable[OrderItemDraft]) -> list[OrderItem]:
        return self.repo.insert_order_items(order_id, list(items))

    def insert_stock_movement(
        self, draft: MovementDraft, enforce_available: bool = False
    ) -> tuple[StockMovement, InventoryProjection]:
        return self.repo.insert_stock_movement(draft, enforce_available=enforce_available)
