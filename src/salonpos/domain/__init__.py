from .models import (
    CartLine,
    Customer,
    InventoryProjection,
    Order,
    OrderItem,
    SellableItem,
    SellableItemView,
    StaffMember,
    StockMovement,
    VatRate,
)
from .errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidPricingInput,
    NotFoundError,
    OutOfStockError,
    PartialCommitError,
    StorageUnavailableError,
    UnauthenticatedError,
    ValidationError,
)
from .pricing import compute_line, compute_order_totals

__all__ = [
    "CartLine",
    "Customer",
    "InventoryProjection",
    "Order",
    "OrderItem",
    "SellableItem",
    "SellableItemView",
    "StaffMember",
    "StockMovement",
    "VatRate",
    "EmptyCartError",
    "InsufficientStockError",
    "InvalidPricingInput",
    "NotFoundError",
    "OutOfStockError",
    "PartialCommitError",
    "StorageUnavailableError",
    "UnauthenticatedError",
    "ValidationError",
    "compute_line",
    "compute_order_totals",
]
