"""
Domain enums for orders and payments.
"""

from enum import Enum


class OrderStatus(str, Enum):
    """Fulfillment progress of an order."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "PAYMENT_PENDING"
    COMPLETED = "PAYMENT_COMPLETED"
    FAILED = "PAYMENT_FAILED"
    REFUNDED = "PAYMENT_REFUNDED"


class TransitionSource(str, Enum):
    CALLBACK = "callback"
    ADMIN = "admin"
