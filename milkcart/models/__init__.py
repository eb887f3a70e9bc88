from milkcart.models.user import User, UserRole
from milkcart.models.delivery_boy import DeliveryBoy, DeliveryBoyShift, DeliveryBoyStatus
from milkcart.models.product import Category, Product, ProductStatus
from milkcart.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    DeliveryShift,
    OrderPriority,
    CancelledBy,
)
from milkcart.models.assignment import UserDeliveryAssignment, AssignmentType, ActorKind, ActorRef
from milkcart.models.payment import Payment, PaymentSessionStatus, VerificationStatus, payment_orders
from milkcart.models.cart import Cart, CartItem
from milkcart.models.subscription import (
    SubscriptionPlan,
    UserSubscription,
    SubscriptionEvent,
    RefundRequest,
    MilkType,
    PlanVolume,
    SubscriptionStatus,
    SubscriptionAction,
    RefundStatus,
    RefundMethod,
)
from milkcart.models.wishlist import WishlistItem

__all__ = [
    "User",
    "UserRole",
    "DeliveryBoy",
    "DeliveryBoyShift",
    "DeliveryBoyStatus",
    "Category",
    "Product",
    "ProductStatus",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "DeliveryShift",
    "OrderPriority",
    "CancelledBy",
    "UserDeliveryAssignment",
    "AssignmentType",
    "ActorKind",
    "ActorRef",
    "Payment",
    "PaymentSessionStatus",
    "VerificationStatus",
    "payment_orders",
    "Cart",
    "CartItem",
    "SubscriptionPlan",
    "UserSubscription",
    "SubscriptionEvent",
    "RefundRequest",
    "MilkType",
    "PlanVolume",
    "SubscriptionStatus",
    "SubscriptionAction",
    "RefundStatus",
    "RefundMethod",
    "WishlistItem",
]
