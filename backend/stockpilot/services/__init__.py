# Services module

from stockpilot.services.purchase_order_service import PurchaseOrderService
from stockpilot.services.receipt_service import ReceiptService
from stockpilot.services.requisition_propagator import RequisitionPropagator
from stockpilot.services.stock_ledger_service import StockLedgerService

__all__ = [
    "PurchaseOrderService",
    "ReceiptService",
    "RequisitionPropagator",
    "StockLedgerService",
]
