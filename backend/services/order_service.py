"""
Order service — checkout, buyer order history, admin fulfillment updates.

Also owns the one place where payment status changes:
apply_payment_transition() performs a compare-and-set UPDATE keyed by the
order number and records the transition in the same transaction. Both the
callback reconciler and the admin refund go through it, so for a given
order the applied transitions are linearizable.

Services flush but never commit; the route (or the reconciler) owns the
transaction.
"""
import logging
import secrets
import time
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import Order, OrderItem, PaymentTransition, Product
from domain.constants import (
    DEFAULT_PAYMENT_METHOD,
    MAX_ITEM_QUANTITY,
    ORDER_NO_MAX_ATTEMPTS,
    ORDER_NO_PREFIX,
    ORDER_STATUS_TRANSITIONS,
)
from domain.enums import OrderStatus, PaymentStatus, TransitionSource
from domain.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)


# ════════════════════════════════════════════════════════════════════
# Order numbers
# ════════════════════════════════════════════════════════════════════


def generate_order_no() -> str:
    """ECO + last 6 digits of epoch millis + 3 random digits."""
    millis = str(int(time.time() * 1000))
    return f"{ORDER_NO_PREFIX}{millis[-6:]}{secrets.randbelow(1000):03d}"


async def _allocate_order_no(db: AsyncSession) -> str:
    for _ in range(ORDER_NO_MAX_ATTEMPTS):
        candidate = generate_order_no()
        res = await db.execute(select(Order.id).where(Order.order_no == candidate))
        if res.scalar_one_or_none() is None:
            return candidate
    raise ConflictError("Could not allocate a unique order number, please retry")


# ════════════════════════════════════════════════════════════════════
# Checkout
# ════════════════════════════════════════════════════════════════════


async def create_order(
    db: AsyncSession,
    *,
    user_id: str,
    contact_email: str,
    shipping: dict,
    items: list[dict],
    shipping_cost: Decimal,
    payment_method: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Validate the cart, snapshot prices and titles, and stage a new order.

    items: [{product_id:int, quantity:int, color:str|None, size:str|None}]
    shipping: {full_name, address, city, district, postal_code, phone}

    Every check runs before anything is added to the session, so a rejected
    checkout leaves nothing behind.
    """
    if not items:
        raise ValidationError("Cart is empty", field="items")

    shipping_cost = _money(shipping_cost)
    if shipping_cost < 0:
        raise ValidationError("Shipping cost cannot be negative", field="shippingCost")

    product_ids = {int(i["product_id"]) for i in items}
    res = await db.execute(select(Product).where(Product.id.in_(product_ids)))
    products = {p.id: p for p in res.scalars().all()}

    requested: dict[int, int] = {}
    snapshots: list[dict] = []
    subtotal = Decimal("0.00")

    for idx, i in enumerate(items):
        pid = int(i["product_id"])
        qty = int(i.get("quantity", 1))
        color = i.get("color") or None
        size = i.get("size") or None

        if qty < 1 or qty > MAX_ITEM_QUANTITY:
            raise ValidationError(
                f"Quantity must be between 1 and {MAX_ITEM_QUANTITY}", field=f"items[{idx}].quantity"
            )
        p = products.get(pid)
        if not p or not p.is_active:
            raise ValidationError(f"Product {pid} not available", field=f"items[{idx}].productId")
        if p.colors and color not in p.colors:
            raise ValidationError(f"Choose one of {', '.join(p.colors)}", field=f"items[{idx}].color")
        if not p.colors and color:
            raise ValidationError("Product has no color options", field=f"items[{idx}].color")
        if p.sizes and size not in p.sizes:
            raise ValidationError(f"Choose one of {', '.join(p.sizes)}", field=f"items[{idx}].size")
        if not p.sizes and size:
            raise ValidationError("Product has no size options", field=f"items[{idx}].size")

        requested[pid] = requested.get(pid, 0) + qty
        if requested[pid] > p.stock:
            raise ValidationError(f"Insufficient stock for {p.slug}", field=f"items[{idx}].quantity")

        unit_price = _money(p.price)
        subtotal += unit_price * qty
        snapshots.append(
            {
                "product_id": pid,
                "title": p.title,
                "unit_price": unit_price,
                "quantity": qty,
                "color": color,
                "size": size,
                "image": (p.images or [None])[0],
            }
        )

    subtotal = _money(subtotal)
    order_no = await _allocate_order_no(db)

    order = Order(
        order_no=order_no,
        user_id=user_id,
        contact_email=contact_email,
        full_name=shipping["full_name"],
        address=shipping["address"],
        city=shipping["city"],
        district=shipping["district"],
        postal_code=shipping["postal_code"],
        phone=shipping["phone"],
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        final_amount=subtotal + shipping_cost,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.PENDING.value,
        payment_method=payment_method or DEFAULT_PAYMENT_METHOD,
        notes=notes,
        items=[OrderItem(position=pos, **snap) for pos, snap in enumerate(snapshots)],
    )
    db.add(order)
    try:
        await db.flush()
    except IntegrityError:
        # Race: another checkout took the same number between the check and the insert
        await db.rollback()
        taken = await db.execute(select(Order.id).where(Order.order_no == order_no))
        if taken.scalar_one_or_none() is not None:
            logger.warning(f"  Order number {order_no} taken concurrently; checkout rejected")
            raise ConflictError("Could not allocate a unique order number, please retry")
        raise

    logger.info(
        f"  🛒 Order created: {order_no} user={user_id} "
        f"items={len(snapshots)} total={order.final_amount}"
    )
    return order


# ════════════════════════════════════════════════════════════════════
# Reads
# ════════════════════════════════════════════════════════════════════


async def get_order_by_no(db: AsyncSession, order_no: str) -> Order | None:
    # Payment status is changed with bulk UPDATEs, so never trust the identity map
    res = await db.execute(
        select(Order)
        .where(Order.order_no == order_no)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def get_order_for(db: AsyncSession, *, order_no: str, principal) -> Order:
    """
    Load an order the caller may see.

    Admins see every order. Buyers only their own; someone else's order is
    reported exactly like a missing one.
    """
    order = await get_order_by_no(db, order_no)
    if not order:
        raise NotFoundError("Order", order_no)
    if not principal.is_admin and order.user_id != principal.user_id:
        logger.warning(f"Order {order_no} requested by non-owner {principal.user_id}")
        raise NotFoundError("Order", order_no)
    return order


async def list_user_orders(
    db: AsyncSession,
    *,
    user_id: str,
    limit: int = 10,
    offset: int = 0,
    status: str | None = None,
) -> tuple[list[Order], int]:
    """Newest-first page of a buyer's orders plus the total count."""
    conditions = [Order.user_id == user_id]
    if status:
        conditions.append(Order.status == status)

    total = (await db.execute(select(func.count(Order.id)).where(*conditions))).scalar_one()
    res = await db.execute(
        select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return list(res.scalars().all()), total


# ════════════════════════════════════════════════════════════════════
# Admin mutations
# ════════════════════════════════════════════════════════════════════


def _require_admin(principal) -> None:
    if not principal.is_admin:
        raise AuthorizationError("Admin capability required")


async def update_order_status(
    db: AsyncSession,
    *,
    order_no: str,
    principal,
    status: OrderStatus | None = None,
    tracking_number: str | None = None,
    notes: str | None = None,
) -> Order:
    """
    Move fulfillment along and/or set tracking number and notes.

    The status change is applied only if the order is still in the status we
    validated against; losing that race is a 409.
    """
    _require_admin(principal)
    order = await get_order_by_no(db, order_no)
    if not order:
        raise NotFoundError("Order", order_no)

    current = OrderStatus(order.status)
    values: dict = {}
    if tracking_number is not None:
        values["tracking_number"] = tracking_number
    if notes is not None:
        values["notes"] = notes
    if status is not None and status != current:
        if status not in ORDER_STATUS_TRANSITIONS[current]:
            raise ConflictError(
                f"Cannot move order from {current.value} to {status.value}",
                details={"from": current.value, "to": status.value},
            )
        values["status"] = status.value

    if not values:
        return order

    res = await db.execute(
        update(Order)
        .where(Order.order_no == order_no, Order.status == current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Order was modified concurrently, reload and retry")

    await db.refresh(order)
    logger.info(f"Order {order_no} updated by admin {principal.user_id}: {values}")
    return order


async def apply_payment_transition(
    db: AsyncSession,
    *,
    order_no: str,
    from_status: PaymentStatus,
    to_status: PaymentStatus,
    source: TransitionSource,
    gateway_transaction_id: str | None = None,
    extra_values: dict | None = None,
) -> bool:
    """
    Compare-and-set the payment status of one order.

    Returns True when this call applied the transition (and recorded it),
    False when the order was no longer in `from_status`.
    """
    values = {"payment_status": to_status.value, **(extra_values or {})}
    if gateway_transaction_id is not None:
        values["gateway_transaction_id"] = gateway_transaction_id

    res = await db.execute(
        update(Order)
        .where(Order.order_no == order_no, Order.payment_status == from_status.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        return False

    db.add(
        PaymentTransition(
            order_no=order_no,
            from_status=from_status.value,
            to_status=to_status.value,
            source=source.value,
            gateway_transaction_id=gateway_transaction_id,
        )
    )
    await db.flush()
    return True


async def refund_order(db: AsyncSession, *, order_no: str, principal) -> Order:
    """Record a refund: PAYMENT_COMPLETED -> PAYMENT_REFUNDED. No gateway call."""
    _require_admin(principal)
    order = await get_order_by_no(db, order_no)
    if not order:
        raise NotFoundError("Order", order_no)

    applied = await apply_payment_transition(
        db,
        order_no=order_no,
        from_status=PaymentStatus.COMPLETED,
        to_status=PaymentStatus.REFUNDED,
        source=TransitionSource.ADMIN,
        gateway_transaction_id=order.gateway_transaction_id,
    )
    if not applied:
        raise ConflictError(
            "Only completed payments can be refunded",
            details={"paymentStatus": order.payment_status},
        )

    await db.refresh(order)
    logger.info(f"  ↩️  Order {order_no} refunded by admin {principal.user_id}")
    return order


async def count_transitions(db: AsyncSession, order_no: str) -> int:
    res = await db.execute(
        select(func.count(PaymentTransition.id)).where(PaymentTransition.order_no == order_no)
    )
    return res.scalar_one()


# ════════════════════════════════════════════════════════════════════
# Serialization
# ════════════════════════════════════════════════════════════════════


def _amount(value) -> str:
    return f"{_money(value):.2f}"


def serialize_order(order: Order) -> dict:
    return {
        "orderNo": order.order_no,
        "userId": order.user_id,
        "status": order.status,
        "paymentStatus": order.payment_status,
        "paymentMethod": order.payment_method,
        "gatewayTransactionId": order.gateway_transaction_id,
        "items": [
            {
                "productId": i.product_id,
                "title": i.title,
                "unitPrice": _amount(i.unit_price),
                "quantity": i.quantity,
                "color": i.color,
                "size": i.size,
                "image": i.image,
            }
            for i in order.items
        ],
        "shippingAddress": {
            "fullName": order.full_name,
            "address": order.address,
            "city": order.city,
            "district": order.district,
            "postalCode": order.postal_code,
            "phone": order.phone,
        },
        "contactEmail": order.contact_email,
        "subtotal": _amount(order.subtotal),
        "shippingCost": _amount(order.shipping_cost),
        "finalAmount": _amount(order.final_amount),
        "trackingNumber": order.tracking_number,
        "notes": order.notes,
        "createdAt": order.created_at.isoformat() if order.created_at else None,
        "updatedAt": order.updated_at.isoformat() if order.updated_at else None,
    }
