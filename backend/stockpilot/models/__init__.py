"""SQLAlchemy models."""

from stockpilot.models.supplier import Supplier
from stockpilot.models.product import Product
from stockpilot.models.location import Location
from stockpilot.models.requisition import (
    Requisition,
    RequiredProduct,
    RequisitionStatus,
    RequisitionSyncTask,
    SyncEvent,
    SyncTaskStatus,
)
from stockpilot.models.purchase_order import (
    AdditionalCostType,
    PurchaseOrder,
    PurchaseOrderDetail,
    PurchaseOrderNegotiation,
    PurchaseOrderOriginalDetail,
    PurchaseOrderStatus,
    SupplierSolutionType,
)
from stockpilot.models.receipt import Receipt, ReceiptItem
from stockpilot.models.stock import MovementKind, StockItem, StockMovement

__all__ = [
    "Supplier",
    "Product",
    "Location",
    "Requisition",
    "RequiredProduct",
    "RequisitionStatus",
    "RequisitionSyncTask",
    "SyncEvent",
    "SyncTaskStatus",
    "AdditionalCostType",
    "PurchaseOrder",
    "PurchaseOrderDetail",
    "PurchaseOrderNegotiation",
    "PurchaseOrderOriginalDetail",
    "PurchaseOrderStatus",
    "SupplierSolutionType",
    "Receipt",
    "ReceiptItem",
    "MovementKind",
    "StockItem",
    "StockMovement",
]
