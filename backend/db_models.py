"""
SQLAlchemy ORM models for the storefront order service.

Tables:
    products             — read-only catalog contract used at checkout
    orders               — placed orders; source of truth for order and payment status
    order_items          — price/title snapshots captured at order creation
    payment_transitions  — append-only record of applied payment-status transitions
    expiring_tokens      — short-lived single-use keys (payment redirect tokens)
"""
from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, JSON, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from database import Base
from domain.enums import OrderStatus, PaymentStatus


# ════════════════════════════════════════════════════════════════════
# Catalog (owned by the catalog service; read here)
# ════════════════════════════════════════════════════════════════════

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    slug = Column(String(200), unique=True, nullable=False, index=True)
    title = Column(String(300), nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    images = Column(JSON, nullable=False, default=list)
    colors = Column(JSON, nullable=False, default=list)  # empty => no color choice
    sizes = Column(JSON, nullable=False, default=list)   # empty => no size choice
    stock = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# ════════════════════════════════════════════════════════════════════
# Orders
# ════════════════════════════════════════════════════════════════════

class Order(Base):
    """
    A placed order.

    Lifecycle:
        1. Buyer checks out -> order created (status=pending, payment=PAYMENT_PENDING)
        2. Buyer is redirected to the hosted payment page
        3. Gateway callback -> PAYMENT_COMPLETED (confirmed) or PAYMENT_FAILED (cancelled)
        4. Admin moves fulfillment along: processing -> shipped -> delivered

    Money columns are written once at creation. Only status, payment_status,
    gateway_transaction_id, tracking_number and notes change afterwards.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_no = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)

    # Contact & shipping snapshot
    contact_email = Column(String(320), nullable=False)
    full_name = Column(String(200), nullable=False)
    address = Column(Text, nullable=False)
    city = Column(String(100), nullable=False)
    district = Column(String(100), nullable=False)
    postal_code = Column(String(20), nullable=False)
    phone = Column(String(40), nullable=False)

    # Money
    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_cost = Column(Numeric(12, 2), nullable=False)
    final_amount = Column(Numeric(12, 2), nullable=False)

    # Status
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value, index=True)
    payment_status = Column(String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True)
    payment_method = Column(String(30), nullable=False, default="shopier")
    gateway_transaction_id = Column(String(100), nullable=True, index=True)

    tracking_number = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        lazy="selectin",
    )
    transitions = relationship(
        "PaymentTransition",
        back_populates="order",
        order_by="PaymentTransition.id",
        lazy="select",
    )

    __table_args__ = (
        # For buyer order history: filter by user_id, order by created_at DESC
        Index("ix_orders_user_created", "user_id", "created_at"),
    )


class OrderItem(Base):
    """Line item snapshot — never re-derived from the live catalog."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    title = Column(String(300), nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    color = Column(String(50), nullable=True)
    size = Column(String(50), nullable=True)
    image = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    __table_args__ = (
        UniqueConstraint("order_id", "position", name="uq_order_item_position"),
    )


class PaymentTransition(Base):
    """
    Append-only record of applied payment-status transitions.

    One row per transition that actually happened; duplicate callback
    deliveries never add a row.
    """
    __tablename__ = "payment_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_no = Column(String(32), ForeignKey("orders.order_no"), nullable=False, index=True)
    from_status = Column(String(30), nullable=False)
    to_status = Column(String(30), nullable=False)
    source = Column(String(20), nullable=False)  # "callback" | "admin"
    gateway_transaction_id = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    order = relationship("Order", back_populates="transitions")


# ════════════════════════════════════════════════════════════════════
# Expiring tokens
# ════════════════════════════════════════════════════════════════════

class ExpiringToken(Base):
    """
    Short-lived single-use key/value entry.

    Lives in the database so tokens survive restarts and are shared by
    every worker process.
    """
    __tablename__ = "expiring_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(128), unique=True, nullable=False, index=True)
    purpose = Column(String(50), nullable=False)
    value = Column(Text, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
