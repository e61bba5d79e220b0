"""
Payment request builder for the hosted payment gateway.

Turns an order into the hidden-field form the buyer's browser posts to the
gateway's payment page:

    1. Format the amount as a fixed two-decimal string ("300.00")
    2. Generate a fresh random_nr for this request
    3. Sign the already-formatted fields with the outbound codec
    4. Render an auto-submitting HTML document (all values escaped)

Pure: nothing here touches the database or mutates the order. The amount
was fixed when the order was created.
"""
import html
import logging
import secrets
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from config import GatewayConfig
from services.signature_service import SIGNATURE_FIELD, outbound_codec
from utils.validators import clean_address, clean_phone

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")

# Static protocol fields for the api_pay4 form
PRODUCT_TYPE_PHYSICAL = "1"
PLATFORM_ID = "1"
MODULE_VERSION = "1.0"


@dataclass(frozen=True)
class PaymentRequestInput:
    """Order-like payload the builder needs; decoupled from the ORM row."""
    order_no: str
    amount: Decimal
    buyer_name: str
    buyer_email: str
    buyer_phone: str
    address: str
    city: str
    district: str
    product_name: str


@dataclass(frozen=True)
class PaymentRequest:
    """Rendered redirect payload: form action plus ordered hidden fields."""
    action_url: str
    fields: tuple[tuple[str, str], ...]

    def field(self, name: str) -> str | None:
        for key, value in self.fields:
            if key == name:
                return value
        return None

    def as_dict(self) -> dict[str, str]:
        return dict(self.fields)


def format_amount(amount: Decimal | int | str) -> str:
    """Fixed-point, two decimals, "." separator, independent of locale."""
    value = Decimal(str(amount)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    return f"{value:.2f}"


def generate_random_nr() -> str:
    """Per-request nonce; never reused and never persisted."""
    return secrets.token_hex(8)


def _split_name(full_name: str) -> tuple[str, str]:
    parts = full_name.strip().rsplit(" ", 1)
    if len(parts) == 2:
        return parts[0], parts[1]
    return parts[0], ""


def request_input_from_order(order) -> PaymentRequestInput:
    """Build the builder input from an Order row and its item snapshots."""
    titles = [item.title for item in order.items]
    if len(titles) > 1:
        product_name = f"{titles[0]} +{len(titles) - 1}"
    elif titles:
        product_name = titles[0]
    else:
        product_name = order.order_no

    return PaymentRequestInput(
        order_no=order.order_no,
        amount=order.final_amount,
        buyer_name=order.full_name,
        buyer_email=order.contact_email,
        buyer_phone=order.phone,
        address=order.address,
        city=order.city,
        district=order.district,
        product_name=product_name,
    )


def build_payment_request(
    data: PaymentRequestInput,
    config: GatewayConfig,
    random_nr: str | None = None,
) -> PaymentRequest:
    """
    Assemble and sign the payment form for one redirect.

    The signature is computed from the exact strings placed in the form, so
    the signed amount and the submitted amount cannot drift apart.
    """
    total_amount = format_amount(data.amount)
    random_nr = random_nr or generate_random_nr()
    address = clean_address(data.address)
    full_address = f"{address}, {data.district}/{data.city}"
    first_name, surname = _split_name(data.buyer_name)

    fields: list[tuple[str, str]] = [
        ("API_key", config.api_key),
        ("website_index", str(config.website_index)),
        ("platform_order_id", data.order_no),
        ("product_name", data.product_name),
        ("product_type", PRODUCT_TYPE_PHYSICAL),
        ("buyer_name", first_name),
        ("buyer_surname", surname),
        ("buyer_email", data.buyer_email),
        ("buyer_phone", clean_phone(data.buyer_phone)),
        ("buyer_account_age", "0"),
        ("buyer_id_nr", ""),
        ("buyer_address", address),
        ("shipping_address", full_address),
        ("billing_address", full_address),
        ("total_amount", total_amount),
        ("currency", config.currency),
        ("platform", PLATFORM_ID),
        ("is_in_frame", "0"),
        ("current_language", config.language),
        ("modul_version", MODULE_VERSION),
        ("random_nr", random_nr),
        ("callback_url", config.callback_url),
        ("cancel_url", config.cancel_url),
        ("success_url", config.success_url),
    ]
    signature = outbound_codec(config).sign(fields)
    fields.append((SIGNATURE_FIELD, signature))

    logger.info(f"  💳 Payment request built: order={data.order_no} amount={total_amount} {config.currency}")
    return PaymentRequest(action_url=config.payment_url, fields=tuple(fields))


_PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="{lang}">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Redirecting to payment</title>
  <style>
    body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
           display: flex; justify-content: center; align-items: center; min-height: 100vh; }}
  </style>
</head>
<body>
  <p>Redirecting to the payment page, please wait…</p>
  <form id="paymentForm" method="POST" action="{action}">
    {inputs}
    <noscript><button type="submit">Continue to payment</button></noscript>
  </form>
  <script>document.getElementById('paymentForm').submit();</script>
</body>
</html>"""


def render_redirect_page(request: PaymentRequest, lang: str = "tr") -> str:
    """Render the auto-submitting form; every attribute value is HTML-escaped."""
    inputs = "\n    ".join(
        f'<input type="hidden" name="{html.escape(name, quote=True)}" value="{html.escape(value, quote=True)}">'
        for name, value in request.fields
    )
    return _PAGE_TEMPLATE.format(
        lang=html.escape(lang, quote=True),
        action=html.escape(request.action_url, quote=True),
        inputs=inputs,
    )


def render_message_page(title: str, message: str) -> str:
    """Small HTML page for browser-facing errors on the redirect route."""
    return (
        "<!DOCTYPE html><html><head><meta charset=\"UTF-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p></body></html>"
    )
