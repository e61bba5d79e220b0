"""
Callback reconciler — applies the gateway's asynchronous payment result.

The HTTP route acknowledges the gateway first and hands the parsed payload
to CallbackReconciler.reconcile() as a background task. Then:

    1. Verify the signature over the received fields   (mismatch -> drop)
    2. Look up the order by platform_order_id           (unknown  -> drop)
    3. Payment already terminal                         (duplicate -> no-op)
    4. Map the outcome code and compare-and-set the payment status

Nothing here raises to the caller: every path ends in a ReconcileOutcome
and a log line. A database failure in step 4 is logged with the full payload
for manual reconciliation, since the gateway has already been told "OK".
"""
import logging
from dataclasses import dataclass, field, fields as dataclass_fields
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterable

from sqlalchemy import case, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from config import GatewayConfig
from db_models import Order, Product
from domain.constants import (
    GATEWAY_FAILURE_CODES,
    GATEWAY_SUCCESS_CODES,
    TERMINAL_ORDER_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
)
from domain.enums import OrderStatus, PaymentStatus, TransitionSource
from services import order_service
from services.payment_request_service import format_amount
from services.signature_service import SIGNATURE_FIELD, callback_codec

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_ORDER = "unknown_order"
    UNKNOWN_OUTCOME = "unknown_outcome"
    AMOUNT_MISMATCH = "amount_mismatch"
    MISSING_TRANSACTION_ID = "missing_transaction_id"
    ERROR = "error"


@dataclass(frozen=True)
class CallbackPayload:
    """
    Typed view of the URL-encoded callback body.

    Recognized fields are attributes; anything else the gateway echoes back
    is kept verbatim in `extra` so it still takes part in the signature.
    Fields the gateway did not send stay None and are left out of the signed
    field list, so an absent field and an empty one sign differently.
    """
    platform_order_id: str | None = None
    status: str | None = None
    payment_id: str | None = None
    random_nr: str | None = None
    signature: str | None = None
    total_amount: str | None = None
    currency: str | None = None
    installment: str | None = None
    extra: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_form(cls, items: Iterable[tuple[str, str]]) -> "CallbackPayload":
        known = {f.name for f in dataclass_fields(cls)} - {"extra"}
        recognized: dict[str, str] = {}
        extra: dict[str, str] = {}
        for key, value in items:
            target = recognized if key in known else extra
            if key in target:
                logger.warning(f"Callback repeated field '{key}'; keeping the first value")
                continue
            target[key] = str(value)
        return cls(**recognized, extra=extra)

    def signed_fields(self) -> list[tuple[str, str]]:
        """Recognized fields in declaration order, then extras by key; signature excluded."""
        out: list[tuple[str, str]] = []
        for f in dataclass_fields(self):
            if f.name in ("extra", SIGNATURE_FIELD):
                continue
            value = getattr(self, f.name)
            if value is not None:
                out.append((f.name, value))
        out.extend(sorted(self.extra.items()))
        return out

    def for_log(self) -> dict:
        data = dict(self.signed_fields())
        data[SIGNATURE_FIELD] = "<redacted>" if self.signature else ""
        return data


def _amounts_match(received: str, expected: Decimal) -> bool:
    try:
        return format_amount(Decimal(received.strip())) == format_amount(expected)
    except (InvalidOperation, ValueError):
        return False


class CallbackReconciler:
    """Verifies callbacks and applies idempotent payment transitions."""

    def __init__(self, config: GatewayConfig, session_factory: async_sessionmaker):
        self.config = config
        self.session_factory = session_factory
        self.codec = callback_codec(config)

    async def reconcile(self, payload: CallbackPayload) -> ReconcileOutcome:
        order_no = payload.platform_order_id or ""

        if not self.codec.verify(payload.signed_fields(), payload.signature):
            logger.warning(f"  🚫 Callback signature mismatch for order={order_no!r}; dropped")
            return ReconcileOutcome.INVALID_SIGNATURE

        async with self.session_factory() as db:
            try:
                return await self._apply(db, payload)
            except Exception:
                await db.rollback()
                logger.exception(
                    f"  ❌ Callback for order={order_no} could not be persisted — "
                    f"MANUAL RECONCILIATION REQUIRED: {payload.for_log()}"
                )
                return ReconcileOutcome.ERROR

    async def _apply(self, db, payload: CallbackPayload) -> ReconcileOutcome:
        order_no = payload.platform_order_id or ""
        order = await order_service.get_order_by_no(db, order_no)
        if not order:
            logger.warning(f"  Callback for unknown order: {order_no!r}")
            return ReconcileOutcome.UNKNOWN_ORDER

        current = PaymentStatus(order.payment_status)
        if current in TERMINAL_PAYMENT_STATUSES:
            if payload.payment_id and payload.payment_id != order.gateway_transaction_id:
                logger.warning(
                    f"  Callback for settled order {order_no} carries a different "
                    f"payment_id={payload.payment_id!r} (stored={order.gateway_transaction_id!r})"
                )
            logger.info(f"  Duplicate callback for order {order_no} ({current.value}); ignored")
            return ReconcileOutcome.DUPLICATE

        code = (payload.status or "").strip().lower()
        if code in GATEWAY_SUCCESS_CODES:
            target = PaymentStatus.COMPLETED
        elif code in GATEWAY_FAILURE_CODES:
            target = PaymentStatus.FAILED
        else:
            logger.warning(f"  Callback for order {order_no} has unknown status {payload.status!r}")
            return ReconcileOutcome.UNKNOWN_OUTCOME

        if payload.total_amount is not None and not _amounts_match(payload.total_amount, order.final_amount):
            logger.error(
                f"  Callback amount {payload.total_amount!r} does not match order "
                f"{order_no} total {format_amount(order.final_amount)}; not applied"
            )
            return ReconcileOutcome.AMOUNT_MISMATCH

        if target is PaymentStatus.COMPLETED:
            if not payload.payment_id:
                logger.error(f"  Successful callback for order {order_no} without payment_id; not applied")
                return ReconcileOutcome.MISSING_TRANSACTION_ID
            fulfillment = case(
                (Order.status == OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value),
                else_=Order.status,
            )
            txn_id = payload.payment_id
        else:
            fulfillment = case(
                (
                    Order.status.in_([s.value for s in TERMINAL_ORDER_STATUSES]),
                    Order.status,
                ),
                else_=OrderStatus.CANCELLED.value,
            )
            txn_id = None

        applied = await order_service.apply_payment_transition(
            db,
            order_no=order_no,
            from_status=PaymentStatus.PENDING,
            to_status=target,
            source=TransitionSource.CALLBACK,
            gateway_transaction_id=txn_id,
            extra_values={"status": fulfillment},
        )
        if not applied:
            # Another delivery of this callback won the compare-and-set
            await db.rollback()
            logger.info(f"  Duplicate callback for order {order_no} (lost race); ignored")
            return ReconcileOutcome.DUPLICATE

        if target is PaymentStatus.COMPLETED:
            if order.status == OrderStatus.CANCELLED.value:
                # Money was taken for goods that will not ship
                logger.warning(
                    f"  ⚠️ Payment completed for cancelled order {order_no} (txn={txn_id}); "
                    f"stock left untouched, refund or reinstate manually"
                )
            else:
                await self._decrement_stock(db, order)

        await db.commit()
        if target is PaymentStatus.COMPLETED:
            logger.info(f"  ✅ Payment completed: order={order_no} txn={txn_id}")
        else:
            logger.warning(f"  ⚠️ Payment failed: order={order_no} status={payload.status!r}")
        return ReconcileOutcome.APPLIED

    async def _decrement_stock(self, db, order: Order) -> None:
        """Take paid quantities out of stock; never below zero."""
        for item in order.items:
            res = await db.execute(
                update(Product)
                .where(Product.id == item.product_id, Product.stock >= item.quantity)
                .values(stock=Product.stock - item.quantity)
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                logger.warning(
                    f"  Stock for product {item.product_id} below {item.quantity} "
                    f"while settling order {order.order_no}"
                )
