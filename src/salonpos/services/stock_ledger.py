from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Iterable, Optional

from salonpos.domain.errors import NotFoundError, ValidationError
from salonpos.domain.models import (
    MOVEMENT_KINDS,
    InventoryProjection,
    MovementDraft,
    RecordId,
    SellableItemView,
    StaffMember,
    StockMovement,
)
from salonpos.services.access_service import AccessService

log = logging.getLogger("salonpos.stock")

POSITIVE_KINDS = {"in", "return"}
NEGATIVE_KINDS = {"out", "sale"}
# kinds a normal sale path uses; these never push available stock below zero
GUARDED_KINDS = {"out", "sale"}
MANUAL_KINDS = ("in", "out", "adjustment")


def check_sign(kind: str, quantity: int) -> None:
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"Unknown movement kind '{kind}'.")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("Movement quantity must be a whole number.")
    if quantity == 0:
        raise ValidationError("Movement quantity must not be zero.")
    if kind in POSITIVE_KINDS and quantity < 0:
        raise ValidationError(f"'{kind}' movements must have a positive quantity.")
    if kind in NEGATIVE_KINDS and quantity > 0:
        raise ValidationError(f"'{kind}' movements must have a negative quantity.")


def fold_movements(
    item_id: RecordId, movements: Iterable[StockMovement], reserved_stock: int = 0
) -> InventoryProjection:
    current = 0
    for m in movements:
        current += int(m.quantity)
    return InventoryProjection(item_id=item_id, current_stock=current, reserved_stock=int(reserved_stock))


def _now_iso() -> str:
    return datetime.now().replace(microsecond=0).isoformat(sep=" ")


class StockLedger:
    """Append-only stock movement log and the per-item projection it drives."""

    def __init__(
        self,
        store,
        enforce_available: bool = True,
        access: AccessService | None = None,
        clock: Callable[[], str] | None = None,
    ):
        self.store = store
        self.enforce_available = bool(enforce_available)
        self.access = access or AccessService()
        self.clock = clock or _now_iso

    def draft(
        self,
        item_id: RecordId,
        kind: str,
        quantity: int,
        *,
        actor_id: Optional[str],
        reference_type: str,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> MovementDraft:
        check_sign(kind, quantity)
        if not (reference_type or "").strip():
            raise ValidationError("Reference type is required.")
        return MovementDraft(
            item_id=item_id,
            kind=kind,
            quantity=int(quantity),
            reference_type=reference_type.strip(),
            reference_id=reference_id,
            actor_id=actor_id,
            notes=(notes or "").strip() or None,
            created_at=self.clock(),
        )

    def is_guarded(self, kind: str) -> bool:
        return self.enforce_available and kind in GUARDED_KINDS

    def append_movement(
        self,
        item_id: RecordId,
        kind: str,
        quantity: int,
        *,
        actor_id: Optional[str],
        reference_type: str,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> tuple[StockMovement, InventoryProjection]:
        draft = self.draft(
            item_id,
            kind,
            quantity,
            actor_id=actor_id,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
        )
        movement, projection = self.store.insert_stock_movement(draft, enforce_available=self.is_guarded(kind))
        log.info(
            "movement_appended item_id=%s kind=%s qty=%s stock_after=%s ref=%s:%s actor=%s",
            item_id,
            kind,
            quantity,
            movement.stock_after,
            reference_type,
            reference_id,
            actor_id,
        )
        return movement, projection

    def current_projection(self, item_id: RecordId) -> InventoryProjection:
        return self.store.get_projection(item_id)

    def replay_projection(self, item_id: RecordId) -> InventoryProjection:
        """Rebuild the projection from the movement log alone (reserved stock kept)."""
        stored = self.store.get_projection(item_id)
        return fold_movements(item_id, self.store.read_movements(item_id), stored.reserved_stock)

    def history(self, item_id: RecordId, limit: int = 20) -> list[StockMovement]:
        return list(reversed(self.store.read_movements(item_id, limit=limit)))

    def adjust_stock(
        self,
        actor: StaffMember,
        item_id: RecordId,
        kind: str,
        quantity: int,
        notes: Optional[str] = None,
    ) -> tuple[StockMovement, InventoryProjection]:
        """Manual stock change from the back office.

        ``in`` and ``out`` take a positive amount and store it with the sign of
        the kind; ``adjustment`` is applied literally as the delta.
        """
        self.access.require_action(actor, "adjust_stock")
        if kind not in MANUAL_KINDS:
            raise ValidationError(f"Manual movements must be one of: {', '.join(MANUAL_KINDS)}.")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("Enter a valid quantity.")
        if kind == "adjustment":
            delta = quantity
        else:
            if quantity <= 0:
                raise ValidationError("Enter a valid quantity.")
            delta = -abs(quantity) if kind == "out" else abs(quantity)

        view = self._tracked_item(item_id)
        return self.append_movement(
            view.id,
            kind,
            delta,
            actor_id=actor.id,
            reference_type="adjustment",
            notes=notes,
        )

    def set_reserved_stock(self, actor: StaffMember, item_id: RecordId, reserved_stock: int) -> InventoryProjection:
        self.access.require_action(actor, "adjust_stock")
        if isinstance(reserved_stock, bool) or not isinstance(reserved_stock, int) or reserved_stock < 0:
            raise ValidationError("Reserved stock must be a whole number >= 0.")
        self._tracked_item(item_id)
        projection = self.store.set_reserved_stock(item_id, reserved_stock)
        log.info("reserved_set item_id=%s reserved=%s actor=%s", item_id, reserved_stock, actor.id)
        return projection

    def low_stock(self, limit: int = 10) -> list[SellableItemView]:
        return self.store.list_low_stock(limit)

    def _tracked_item(self, item_id: RecordId) -> SellableItemView:
        view = self.store.get_sellable_item(item_id)
        if not view:
            raise NotFoundError("Sellable item not found.")
        if not view.item.track_inventory:
            raise ValidationError(f"'{view.item.name}' does not track inventory.")
        return view
