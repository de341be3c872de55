from .access_service import AccessService
from .cart import Cart
from .catalog_service import CatalogService
from .customer_service import CustomerService
from .operations_service import OperationsService
from .order_service import OrderCommitWorkflow, OrderNumberGenerator, OrderService
from .reporting_service import ReportingService
from .stock_ledger import StockLedger

__all__ = [
    "AccessService",
    "Cart",
    "CatalogService",
    "CustomerService",
    "OperationsService",
    "OrderCommitWorkflow",
    "OrderNumberGenerator",
    "OrderService",
    "ReportingService",
    "StockLedger",
]
