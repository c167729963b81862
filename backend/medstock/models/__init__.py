from .tenancy import Organization, DocumentSequence
from .catalog import Product, Supplier
from .inventory import InventoryBatch, StockMovement
from .purchasing import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatusHistory

__all__ = [
    'Organization', 'DocumentSequence',
    'Product', 'Supplier',
    'InventoryBatch', 'StockMovement',
    'PurchaseOrder', 'PurchaseOrderItem', 'PurchaseOrderStatusHistory',
]
