"""
Domain constants used across services/routers.
"""

from domain.enums import OrderStatus, PaymentStatus

# Order numbers: ECO + last 6 digits of epoch millis + 3 random digits
ORDER_NO_PREFIX = "ECO"
ORDER_NO_MAX_ATTEMPTS = 5

DEFAULT_PAYMENT_METHOD = "shopier"
MAX_ITEM_QUANTITY = 20

# Fulfillment edges an admin may apply; delivered and cancelled are terminal
ORDER_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_ORDER_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

# Terminal as far as gateway callbacks are concerned (refund is admin-only)
TERMINAL_PAYMENT_STATUSES = frozenset({
    PaymentStatus.COMPLETED,
    PaymentStatus.FAILED,
    PaymentStatus.REFUNDED,
})

# Gateway outcome codes on the callback `status` field
GATEWAY_SUCCESS_CODES = frozenset({"success", "1"})
GATEWAY_FAILURE_CODES = frozenset({"failed", "failure", "0", "cancelled"})

# Fixed plaintext body the gateway expects from the callback endpoint
CALLBACK_ACK_BODY = "OK"

CHECKOUT_TOKEN_PURPOSE = "payment_redirect"
