# Services module
from milkcart.services.auth_service import AuthService
from milkcart.services.product_service import ProductService
from milkcart.services.cart_service import CartService
from milkcart.services.stock_service import StockService
from milkcart.services.order_service import OrderService
from milkcart.services.assignment_service import AssignmentService
from milkcart.services.delivery_boy_service import DeliveryBoyService
from milkcart.services.payment_service import PaymentService
from milkcart.services.dashboard_service import DashboardService

__all__ = [
    "AuthService",
    "ProductService",
    "CartService",
    "StockService",
    "OrderService",
    "AssignmentService",
    "DeliveryBoyService",
    "PaymentService",
    "DashboardService",
]
