from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from salonpos.domain.errors import (
    EmptyCartError,
    InsufficientStockError,
    NotFoundError,
    PartialCommitError,
    ValidationError,
)
from salonpos.domain.models import (
    PAYMENT_METHODS,
    CartLine,
    InventoryProjection,
    Order,
    OrderDraft,
    OrderItem,
    OrderItemDraft,
    RecordId,
    StaffMember,
    StockMovement,
)
from salonpos.domain.pricing import compute_order_totals
from salonpos.repositories.contracts import UnitOfWork
from salonpos.services.access_service import AccessService
from salonpos.services.cart import Cart
from salonpos.services.stock_ledger import StockLedger

log = logging.getLogger("salonpos.orders")

STATE_EMPTY = "empty"
STATE_VALIDATED = "validated"
STATE_ORDER_PERSISTED = "order_persisted"
STATE_ITEMS_PERSISTED = "items_persisted"
STATE_STOCK_APPLIED = "stock_applied"
STATE_COMMITTED = "committed"
STATE_FAILED = "failed"

_EPOCH = datetime(1970, 1, 1)
_EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MILLISECOND = timedelta(milliseconds=1)


def epoch_millis(moment: datetime) -> int:
    epoch = _EPOCH_UTC if moment.tzinfo is not None else _EPOCH
    return (moment - epoch) // _MILLISECOND


def format_order_number(moment: datetime, millis: int | None = None) -> str:
    """``YYMMDD-XXXXXX``: commit date plus the last six digits of the millisecond clock.

    A display code only. It is not a sort key; the record store keeps it unique.
    """
    if millis is None:
        millis = epoch_millis(moment)
    return f"{moment:%y%m%d}-{millis % 1_000_000:06d}"


class OrderNumberGenerator:
    """Order numbers for one till, strictly increasing even within a millisecond."""

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self.clock = clock or datetime.now
        self._last_millis: Optional[int] = None

    def next(self, moment: datetime | None = None) -> str:
        moment = moment or self.clock()
        millis = epoch_millis(moment)
        if self._last_millis is not None and millis <= self._last_millis:
            millis = self._last_millis + 1
        self._last_millis = millis
        return format_order_number(moment, millis)


@dataclass(frozen=True)
class CommitResult:
    order: Order
    items: list[OrderItem]
    movements: list[StockMovement] = field(default_factory=list)
    projections: dict[RecordId, InventoryProjection] = field(default_factory=dict)


class OrderCommitWorkflow:
    """Turns a cart into a stored order, its items and the matching sale movements.

    The cart is cleared only once every write went through. When the unit of
    work is not atomic and a write fails after the order header was stored,
    a ``PartialCommitError`` names the order so it can be reconciled.
    """

    def __init__(
        self,
        store,
        ledger: StockLedger,
        cashier: Optional[StaffMember],
        *,
        access: AccessService | None = None,
        uow_factory: Callable[[], UnitOfWork] | None = None,
        numbers: OrderNumberGenerator | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.ledger = ledger
        self.cashier = cashier
        self.access = access or AccessService()
        self.uow_factory = uow_factory or store.unit_of_work
        self.clock = clock or datetime.now
        self.numbers = numbers or OrderNumberGenerator(self.clock)
        self.state = STATE_EMPTY
        self.failed_step: Optional[str] = None

    def commit(self, cart: Cart, payment_method: str = "cash", notes: Optional[str] = None) -> CommitResult:
        self.state = STATE_EMPTY
        self.failed_step = None

        if cart.is_empty:
            raise EmptyCartError("Cart is empty.")
        cashier = self.access.require_action(self.cashier, "create_order")
        payment_method = (payment_method or "").strip().lower()
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}.")
        self.state = STATE_VALIDATED

        now = self.clock()
        order_number = self.numbers.next(now)
        lines = cart.lines
        item_drafts = [
            OrderItemDraft(
                item_id=line.item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                vat_rate=line.vat_percentage,
                subtotal=line.subtotal,
                vat_amount=line.vat_amount,
                total=line.total,
            )
            for line in lines
        ]
        # header totals come from the frozen item rows, not from the cart
        totals = compute_order_totals(item_drafts)
        header = OrderDraft(
            order_number=order_number,
            customer_id=cart.customer_id,
            cashier_id=cashier.id,
            subtotal=totals.subtotal,
            vat_amount=totals.vat_amount,
            total=totals.total,
            payment_method=payment_method,
            status="completed",
            notes=(notes or "").strip() or None,
            created_at=now.replace(microsecond=0).isoformat(sep=" "),
        )
        movement_drafts = [
            self.ledger.draft(
                line.item_id,
                "sale",
                -line.quantity,
                actor_id=cashier.id,
                reference_type="order",
                reference_id=order_number,
            )
            for line in lines
            if line.track_inventory
        ]
        self._check_available(lines)

        order: Optional[Order] = None
        items: list[OrderItem] = []
        movements: list[StockMovement] = []
        projections: dict[RecordId, InventoryProjection] = {}
        step = "order"
        uow = self.uow_factory()
        try:
            with uow:
                order = uow.insert_order(header)
                self.state = STATE_ORDER_PERSISTED
                step = "items"
                items = uow.insert_order_items(order.id, item_drafts)
                self.state = STATE_ITEMS_PERSISTED
                step = "stock"
                for draft in movement_drafts:
                    movement, projection = uow.insert_stock_movement(
                        draft, enforce_available=self.ledger.is_guarded(draft.kind)
                    )
                    movements.append(movement)
                    projections[draft.item_id] = projection
                self.state = STATE_STOCK_APPLIED
        except Exception as exc:
            self.state = STATE_FAILED
            self.failed_step = step
            log.error(
                "order_commit_failed order_number=%s step=%s atomic=%s error=%s",
                order_number,
                step,
                uow.atomic,
                exc,
            )
            if order is not None and not uow.atomic:
                raise PartialCommitError(
                    f"Order {order.order_number} was stored but the '{step}' step failed: {exc}",
                    order_number=order.order_number,
                    order_id=order.id,
                    step=step,
                ) from exc
            raise

        cart.clear()
        self.state = STATE_COMMITTED
        log.info(
            "order_committed order_number=%s order_id=%s lines=%s total=%s payment=%s cashier=%s",
            order.order_number,
            order.id,
            len(items),
            order.total,
            order.payment_method,
            cashier.id,
        )
        return CommitResult(order=order, items=items, movements=movements, projections=projections)

    def _check_available(self, lines: list[CartLine]) -> None:
        """Fail with nothing written when a tracked line no longer has the stock it needs."""
        if not self.ledger.is_guarded("sale"):
            return
        for line in lines:
            if not line.track_inventory:
                continue
            available = self.ledger.current_projection(line.item_id).available_stock
            if available < line.quantity:
                self.state = STATE_FAILED
                self.failed_step = "stock_check"
                log.warning(
                    "order_rejected item_id=%s qty=%s available=%s", line.item_id, line.quantity, available
                )
                raise InsufficientStockError(f"Not enough stock for '{line.name}'. Available: {available}")


class OrderService:
    def __init__(self, repo):
        self.repo = repo

    def get_order(self, order_id: int) -> Order:
        order = self.repo.get_order(int(order_id))
        if not order:
            raise NotFoundError("Order not found.")
        return order

    def get_order_by_number(self, order_number: str) -> Order:
        order = self.repo.get_order_by_number(order_number.strip())
        if not order:
            raise NotFoundError("Order not found.")
        return order

    def order_items(self, order_id: int) -> list[OrderItem]:
        return self.repo.order_items_for_order(int(order_id))

    def list_orders_between(self, start_iso: str, end_iso: str) -> list[Order]:
        return self.repo.list_orders_between(start_iso, end_iso)
