"""API routes."""

from fastapi import APIRouter

from stockpilot.api.routes import purchase_orders, requisitions, stock

api_router = APIRouter()

api_router.include_router(purchase_orders.router, prefix="/purchase-orders", tags=["purchase-orders"])
api_router.include_router(stock.router, prefix="/stock", tags=["stock"])
api_router.include_router(requisitions.router, prefix="/requisitions", tags=["requisitions"])
