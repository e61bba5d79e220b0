"""
Order endpoints — buyer checkout and history, admin fulfillment updates.
"""
import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from deps import Pagination, pagination_params
from domain.enums import OrderStatus
from domain.errors import ValidationError
from domain.responses import paginated_response, success_response
from middleware.auth import Principal, require_admin, require_principal
from middleware.rate_limit import rate_limit
from models import CreateOrderRequest, UpdateOrderStatusRequest
from services import order_service
from utils.validators import validated_order_no

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_order(
    request: CreateOrderRequest,
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(settings.order_create_rate_limit, 60)),
):
    """Place an order from the cart. Payment starts PAYMENT_PENDING."""
    shipping = request.shipping_address
    order = await order_service.create_order(
        db,
        user_id=principal.user_id,
        contact_email=request.email,
        shipping={
            "full_name": shipping.full_name,
            "address": shipping.address,
            "city": shipping.city,
            "district": shipping.district,
            "postal_code": shipping.postal_code,
            "phone": shipping.phone,
        },
        items=[
            {
                "product_id": item.product_id,
                "quantity": item.quantity,
                "color": item.color,
                "size": item.size,
            }
            for item in request.items
        ],
        shipping_cost=request.shipping_cost,
        payment_method=request.payment_method,
        notes=request.notes,
    )
    await db.commit()
    return success_response(data=order_service.serialize_order(order))


@router.get("")
async def list_my_orders(
    status_filter: OrderStatus | None = Query(None, alias="status"),
    page: Pagination = Depends(pagination_params),
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    """The caller's orders, newest first."""
    orders, total = await order_service.list_user_orders(
        db,
        user_id=principal.user_id,
        limit=page["limit"],
        offset=page["offset"],
        status=status_filter.value if status_filter else None,
    )
    return paginated_response(
        [order_service.serialize_order(o) for o in orders],
        limit=page["limit"],
        offset=page["offset"],
        total=total,
    )


@router.get("/{order_no}")
async def get_order(
    order_no: str = Depends(validated_order_no),
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
):
    order = await order_service.get_order_for(db, order_no=order_no, principal=principal)
    return success_response(data=order_service.serialize_order(order))


@router.patch("/{order_no}/status")
async def update_order_status(
    request: UpdateOrderStatusRequest,
    order_no: str = Depends(validated_order_no),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin: move fulfillment along and/or set tracking number and notes."""
    if request.status is None and request.tracking_number is None and request.notes is None:
        raise ValidationError("Provide at least one of status, trackingNumber, notes")

    order = await order_service.update_order_status(
        db,
        order_no=order_no,
        principal=principal,
        status=request.status,
        tracking_number=request.tracking_number,
        notes=request.notes,
    )
    await db.commit()
    return success_response(data=order_service.serialize_order(order))


@router.post("/{order_no}/refund")
async def refund_order(
    order_no: str = Depends(validated_order_no),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Admin: record a refund for a completed payment."""
    order = await order_service.refund_order(db, order_no=order_no, principal=principal)
    await db.commit()
    return success_response(data=order_service.serialize_order(order))
