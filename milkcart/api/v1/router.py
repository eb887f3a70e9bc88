from fastapi import APIRouter

from milkcart.config import settings
from milkcart.api.v1.endpoints import (
    # Customer & admin accounts
    auth,
    # Catalogue
    products,
    cart,
    # Orders
    orders,
    admin_orders,
    # Delivery operations
    delivery,
    delivery_boys,
    assignments,
    # UPI payments
    payments,
    # Subscriptions & wishlist
    subscriptions,
    wishlist,
    # Reporting
    dashboard,
)


api_router = APIRouter(prefix=settings.API_PREFIX)

api_router.include_router(auth.router)
api_router.include_router(products.categories_router)
api_router.include_router(products.router)
api_router.include_router(cart.router)
api_router.include_router(orders.router)
api_router.include_router(admin_orders.router)
api_router.include_router(delivery.router)
api_router.include_router(delivery_boys.router)
api_router.include_router(assignments.router)
api_router.include_router(payments.router)
api_router.include_router(payments.admin_router)
api_router.include_router(subscriptions.router)
api_router.include_router(subscriptions.admin_router)
api_router.include_router(wishlist.router)
api_router.include_router(dashboard.router)
