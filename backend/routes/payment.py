"""
Payment endpoints — checkout redirect and gateway callback.

Flow:
    POST /payment/{orderNo}/checkout    buyer gets a one-time redirect URL
    GET  /payment/redirect?token=...    browser receives the auto-submitting form
    POST /payment/callback              gateway reports the result (server-to-server)

The callback is ALWAYS answered with 200 "OK": the gateway retries on
anything else, and whether a callback was accepted is none of the sender's
business. The actual work runs as a background task after the response.
"""
import logging
from datetime import timezone

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from fastapi.responses import HTMLResponse, PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import GatewayConfig, settings
from database import get_db
from deps import get_callback_reconciler, get_gateway_config
from domain.constants import CALLBACK_ACK_BODY, CHECKOUT_TOKEN_PURPOSE
from domain.enums import PaymentStatus
from domain.errors import ConflictError
from domain.responses import success_response
from middleware.auth import Principal, require_principal
from middleware.rate_limit import rate_limit
from models import CheckoutTokenResponse
from services import order_service, token_store
from services.payment_request_service import (
    build_payment_request,
    render_message_page,
    render_redirect_page,
    request_input_from_order,
)
from services.reconciliation_service import CallbackPayload, CallbackReconciler
from utils.validators import validated_order_no

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payment", tags=["payment"])


# ════════════════════════════════════════════════════════════════════
# Checkout redirect
# ════════════════════════════════════════════════════════════════════


@router.post("/{order_no}/checkout")
async def start_checkout(
    order_no: str = Depends(validated_order_no),
    principal: Principal = Depends(require_principal),
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(10, 60)),
):
    """
    Issue a single-use redirect URL for the hosted payment page.

    A top-level browser navigation cannot carry the bearer token, so the
    browser gets an opaque short-lived token instead.
    """
    order = await order_service.get_order_for(db, order_no=order_no, principal=principal)
    if order.payment_status != PaymentStatus.PENDING.value:
        raise ConflictError(
            "Payment is not pending for this order",
            details={"paymentStatus": order.payment_status},
        )

    key, expires_at = await token_store.issue(
        db,
        purpose=CHECKOUT_TOKEN_PURPOSE,
        value=order.order_no,
        ttl_seconds=settings.checkout_token_ttl_seconds,
    )
    await db.commit()

    base = settings.public_base_url.rstrip("/")
    body = CheckoutTokenResponse(
        redirect_url=f"{base}/payment/redirect?token={key}",
        expires_at=expires_at.replace(tzinfo=timezone.utc).isoformat(),
    )
    logger.info(f"Checkout redirect issued for order {order_no}")
    return success_response(data=body.model_dump(by_alias=True))


def _html_error(status_code: int, title: str, message: str) -> HTMLResponse:
    return HTMLResponse(render_message_page(title, message), status_code=status_code)


@router.get("/redirect", response_class=HTMLResponse)
async def payment_redirect(
    token: str = Query(..., min_length=1, max_length=128),
    db: AsyncSession = Depends(get_db),
    config: GatewayConfig = Depends(get_gateway_config),
):
    """Consume the redirect token and serve the signed auto-submitting form."""
    order_no = await token_store.consume(db, purpose=CHECKOUT_TOKEN_PURPOSE, key=token)
    await db.commit()
    if order_no is None:
        return _html_error(
            status.HTTP_404_NOT_FOUND,
            "Link expired",
            "This payment link is invalid or has already been used. Please start checkout again.",
        )

    order = await order_service.get_order_by_no(db, order_no)
    if order is None:
        return _html_error(status.HTTP_404_NOT_FOUND, "Order not found", "The order no longer exists.")
    if order.payment_status != PaymentStatus.PENDING.value:
        return _html_error(
            status.HTTP_409_CONFLICT,
            "Payment not available",
            "This order is not awaiting payment.",
        )

    try:
        payment_request = build_payment_request(request_input_from_order(order), config)
    except ValueError as e:
        logger.error(f"Cannot build payment request for order {order_no}: {e}")
        return _html_error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "Payment unavailable",
            "Online payment is temporarily unavailable. Please try again later.",
        )

    return HTMLResponse(
        render_redirect_page(payment_request, lang=config.language),
        headers={"Cache-Control": "no-store"},
    )


# ════════════════════════════════════════════════════════════════════
# Gateway callback
# ════════════════════════════════════════════════════════════════════


@router.post("/callback", response_class=PlainTextResponse)
async def payment_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    reconciler: CallbackReconciler = Depends(get_callback_reconciler),
):
    """Acknowledge first, reconcile in the background."""
    try:
        form = await request.form()
    except Exception as e:
        logger.warning(f"Unparseable payment callback body ({type(e).__name__}); acknowledged and dropped")
        return PlainTextResponse(CALLBACK_ACK_BODY)

    payload = CallbackPayload.from_form(
        (key, value) for key, value in form.multi_items() if isinstance(value, str)
    )
    logger.info(f"📨 Payment callback received: order={payload.platform_order_id!r} status={payload.status!r}")
    background_tasks.add_task(reconciler.reconcile, payload)
    return PlainTextResponse(CALLBACK_ACK_BODY)
