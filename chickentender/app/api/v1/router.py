"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from chickentender.app.api.v1.endpoints import (
    orders, order_admin, transactions, users, admin, admin_ops, notifications
)

router = APIRouter()

# Orders
router.include_router(orders.router)
router.include_router(order_admin.router)

# Coins
router.include_router(transactions.router)
router.include_router(users.router)

# Administration
router.include_router(admin.router)
router.include_router(admin_ops.router)

# Notifications
router.include_router(notifications.router)
