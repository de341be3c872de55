from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

RecordId = Union[int, str]

ITEM_KINDS = ("service", "product")
MOVEMENT_KINDS = ("in", "out", "adjustment", "sale", "return")
PAYMENT_METHODS = ("cash", "card", "bank", "voucher")
ORDER_STATUSES = ("pending", "completed", "cancelled")
STAFF_ROLES = ("admin", "manager", "cashier")


@dataclass(frozen=True)
class StaffMember:
    """Identity handed over by the external identity provider."""

    id: str
    full_name: str
    role: str
    active: bool = True


@dataclass(frozen=True)
class VatRate:
    id: RecordId
    name: str
    percentage: Decimal
    active: bool = True


@dataclass(frozen=True)
class SellableItem:
    id: RecordId
    name: str
    kind: str
    unit_price: Decimal
    vat_rate_id: RecordId
    track_inventory: bool
    min_stock: int = 0
    active: bool = True
    description: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    duration_minutes: Optional[int] = None

    @property
    def margin_percent(self) -> Decimal:
        if not self.purchase_price or self.unit_price <= 0:
            return Decimal("0.0")
        margin = (self.unit_price - self.purchase_price) / self.unit_price * 100
        return margin.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class InventoryProjection:
    item_id: RecordId
    current_stock: int = 0
    reserved_stock: int = 0

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock


@dataclass(frozen=True)
class SellableItemView:
    """Item joined with its VAT rate and inventory, as the till lists it."""

    item: SellableItem
    vat_rate: VatRate
    inventory: InventoryProjection

    @property
    def id(self) -> RecordId:
        return self.item.id

    @property
    def below_minimum(self) -> bool:
        if not self.item.track_inventory:
            return False
        return self.inventory.available_stock <= self.item.min_stock


@dataclass(frozen=True)
class StockMovement:
    id: RecordId
    item_id: RecordId
    kind: str
    quantity: int
    stock_after: int
    reference_type: str
    reference_id: Optional[str]
    actor_id: Optional[str]
    notes: Optional[str]
    created_at: str


@dataclass(frozen=True)
class MovementDraft:
    item_id: RecordId
    kind: str
    quantity: int
    reference_type: str
    reference_id: Optional[str]
    actor_id: Optional[str]
    notes: Optional[str]
    created_at: str


@dataclass(frozen=True)
class CartLine:
    item_id: RecordId
    name: str
    unit_price: Decimal
    vat_percentage: Decimal
    quantity: int
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    track_inventory: bool = False


@dataclass(frozen=True)
class Customer:
    id: RecordId
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class OrderDraft:
    order_number: str
    customer_id: Optional[RecordId]
    cashier_id: str
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    payment_method: str
    status: str
    notes: Optional[str]
    created_at: str


@dataclass(frozen=True)
class Order:
    id: RecordId
    order_number: str
    customer_id: Optional[RecordId]
    cashier_id: str
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
    payment_method: str
    status: str
    notes: Optional[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class OrderItemDraft:
    item_id: RecordId
    quantity: int
    unit_price: Decimal
    vat_rate: Decimal
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal


@dataclass(frozen=True)
class OrderItem:
    id: RecordId
    order_id: RecordId
    item_id: RecordId
    quantity: int
    unit_price: Decimal
    vat_rate: Decimal
    subtotal: Decimal
    vat_amount: Decimal
    total: Decimal
