"""
Input validation and cleaning utilities for checkout data.

The hosted payment page rejects phone numbers with punctuation and
addresses with line breaks, so buyer input is normalized before it is
embedded in a payment request.
"""
import re

from fastapi import Path

from domain.errors import NotFoundError

_PHONE_JUNK = re.compile(r"[\s()\-]")
_WHITESPACE_RUN = re.compile(r"\s+")
_ORDER_NO = re.compile(r"^[A-Z0-9]{6,32}$")


def clean_phone(phone: str) -> str:
    """Strip spaces, parentheses and dashes: "(555) 123-45 67" -> "5551234567"."""
    return _PHONE_JUNK.sub("", phone or "")


def clean_address(address: str) -> str:
    """Replace line breaks and collapse runs of whitespace into single spaces."""
    flattened = (address or "").replace("\r", " ").replace("\n", " ")
    return _WHITESPACE_RUN.sub(" ", flattened).strip()


def validate_order_no(order_no: str) -> str:
    """
    Validate the shape of an order number.

    A malformed number cannot exist, so it is reported the same way as an
    unknown one.
    """
    if not order_no or not _ORDER_NO.match(order_no):
        raise NotFoundError("Order", order_no or "")
    return order_no


def validated_order_no(order_no: str = Path(..., description="Order number, e.g. ECO123456789")) -> str:
    """FastAPI dependency for validating order number path parameters."""
    return validate_order_no(order_no)
