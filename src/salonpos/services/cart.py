from __future__ import annotations

from dataclasses import replace
from typing import Optional

from salonpos.domain.errors import (
    InsufficientStockError,
    NotFoundError,
    OutOfStockError,
    ValidationError,
)
from salonpos.domain.models import CartLine, RecordId, SellableItemView, StaffMember
from salonpos.domain.pricing import LineAmounts, compute_line, compute_order_totals


def _priced(line: CartLine, quantity: int) -> CartLine:
    amounts = compute_line(line.unit_price, quantity, line.vat_percentage)
    return replace(
        line,
        quantity=quantity,
        subtotal=amounts.subtotal,
        vat_amount=amounts.vat_amount,
        total=amounts.total,
    )


class Cart:
    """In-memory cart of one till session.

    Lines are keyed by item id and keep the price and VAT rate seen on the
    first add. Quantities above the available stock of a tracked item are
    rejected, never clamped.
    """

    def __init__(self, stock, cashier: Optional[StaffMember] = None):
        self.stock = stock
        self.cashier = cashier
        self._lines: dict[RecordId, CartLine] = {}
        self._customer_id: Optional[RecordId] = None

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def customer_id(self) -> Optional[RecordId]:
        return self._customer_id

    def set_customer(self, customer_id: Optional[RecordId]) -> None:
        self._customer_id = customer_id

    def line_for(self, item_id: RecordId) -> Optional[CartLine]:
        return self._lines.get(item_id)

    def add_item(self, view: SellableItemView) -> CartLine:
        item = view.item
        existing = self._lines.get(item.id)
        if existing is not None:
            return self.set_quantity(item.id, existing.quantity + 1)

        if not item.active:
            raise ValidationError(f"'{item.name}' is not available for sale.")
        if item.track_inventory:
            available = self.stock.current_projection(item.id).available_stock
            if available <= 0:
                raise OutOfStockError(f"'{item.name}' is out of stock.")

        # price and VAT are frozen here; later catalog edits do not touch this line
        amounts = compute_line(item.unit_price, 1, view.vat_rate.percentage)
        line = CartLine(
            item_id=item.id,
            name=item.name,
            unit_price=item.unit_price,
            vat_percentage=view.vat_rate.percentage,
            quantity=1,
            subtotal=amounts.subtotal,
            vat_amount=amounts.vat_amount,
            total=amounts.total,
            track_inventory=item.track_inventory,
        )
        self._lines[item.id] = line
        return line

    def set_quantity(self, item_id: RecordId, quantity: int) -> Optional[CartLine]:
        line = self._lines.get(item_id)
        if line is None:
            raise NotFoundError("Item is not in the cart.")
        if quantity <= 0:
            del self._lines[item_id]
            return None

        if line.track_inventory:
            available = self.stock.current_projection(item_id).available_stock
            if quantity > available:
                raise InsufficientStockError(f"Not enough stock for '{line.name}'. Available: {available}")

        updated = _priced(line, quantity)
        self._lines[item_id] = updated
        return updated

    def remove_item(self, item_id: RecordId) -> None:
        self._lines.pop(item_id, None)

    def clear(self) -> None:
        self._lines.clear()
        self._customer_id = None

    def totals(self) -> LineAmounts:
        return compute_order_totals(self._lines.values())
