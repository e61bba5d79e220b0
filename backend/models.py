"""
Pydantic models for request/response validation.
"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.constants import MAX_ITEM_QUANTITY
from domain.enums import OrderStatus


class ApiBase(BaseModel):
    """Shared base — allows construction by Python name or camelCase alias."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# ── Checkout ────────────────────────────────────────────────────────

class CheckoutItem(ApiBase):
    """One cart line; price and title are looked up server-side."""
    product_id: int = Field(..., alias="productId", ge=1)
    quantity: int = Field(1, ge=1, le=MAX_ITEM_QUANTITY)
    color: Optional[str] = Field(None, max_length=50)
    size: Optional[str] = Field(None, max_length=50)


class ShippingAddress(ApiBase):
    full_name: str = Field(..., alias="fullName", min_length=1, max_length=200)
    address: str = Field(..., min_length=1, max_length=500)
    city: str = Field(..., min_length=1, max_length=100)
    district: str = Field(..., min_length=1, max_length=100)
    postal_code: str = Field("", alias="postalCode", max_length=20)
    phone: str = Field(..., min_length=7, max_length=30)

    @field_validator("full_name", "address", "city", "district", "phone")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        return _strip_required(v)


class CreateOrderRequest(ApiBase):
    """Buyer checkout payload for POST /orders."""
    items: List[CheckoutItem] = Field(..., min_length=1, max_length=50)
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    email: str = Field(
        ...,
        max_length=254,
        pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$",
        description="Contact email passed to the payment page",
    )
    shipping_cost: Decimal = Field(
        Decimal("0.00"),
        alias="shippingCost",
        ge=0,
        max_digits=12,
        decimal_places=2,
    )
    payment_method: Optional[str] = Field(None, alias="paymentMethod", max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


# ── Admin ───────────────────────────────────────────────────────────

class UpdateOrderStatusRequest(ApiBase):
    """Fulfillment update; every field optional, at least one required."""
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber", max_length=100)
    notes: Optional[str] = Field(None, max_length=1000)


# ── Payment ─────────────────────────────────────────────────────────

class CheckoutTokenResponse(ApiBase):
    """One-time URL the browser navigates to for the payment redirect."""
    redirect_url: str = Field(..., alias="redirectUrl")
    expires_at: str = Field(..., alias="expiresAt")
