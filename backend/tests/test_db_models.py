"""
Tests for ORM database models.

Tests: defaults, relationships, unique constraints.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import selectinload

from db_models import ExpiringToken, Order, OrderItem, PaymentTransition, Product


def _order(order_no: str, product_id: int) -> Order:
    return Order(
        order_no=order_no,
        user_id="u1",
        contact_email="a@b.co",
        full_name="A B",
        address="Street 1",
        city="Istanbul",
        district="Kadikoy",
        postal_code="",
        phone="5550000000",
        subtotal=Decimal("10.00"),
        shipping_cost=Decimal("0.00"),
        final_amount=Decimal("10.00"),
        items=[OrderItem(position=0, product_id=product_id, title="Mug", unit_price=Decimal("10.00"), quantity=1)],
    )


class TestOrderModel:

    @pytest.mark.integration
    async def test_defaults(self, db_session, products):
        db_session.add(_order("ECO100000001", products["mug"].id))
        await db_session.commit()

        fetched = (await db_session.execute(select(Order).where(Order.order_no == "ECO100000001"))).scalar_one()
        assert fetched.status == "pending"
        assert fetched.payment_status == "PAYMENT_PENDING"
        assert fetched.payment_method == "shopier"
        assert fetched.created_at is not None
        assert [i.title for i in fetched.items] == ["Mug"]

    @pytest.mark.integration
    async def test_order_no_unique(self, db_session, products):
        db_session.add(_order("ECO100000002", products["mug"].id))
        await db_session.commit()
        db_session.add(_order("ECO100000002", products["mug"].id))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

    @pytest.mark.integration
    async def test_transition_links_to_order(self, db_session, products):
        db_session.add(_order("ECO100000003", products["mug"].id))
        db_session.add(
            PaymentTransition(
                order_no="ECO100000003",
                from_status="PAYMENT_PENDING",
                to_status="PAYMENT_COMPLETED",
                source="callback",
                gateway_transaction_id="T1",
            )
        )
        await db_session.commit()

        row = (await db_session.execute(select(PaymentTransition))).scalar_one()
        assert row.created_at is not None
        assert row.gateway_transaction_id == "T1"

        order = (
            await db_session.execute(
                select(Order)
                .where(Order.order_no == "ECO100000003")
                .options(selectinload(Order.transitions))
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert [t.to_status for t in order.transitions] == ["PAYMENT_COMPLETED"]
        assert order.transitions[0] is row


class TestExpiringTokenModel:

    @pytest.mark.integration
    async def test_key_unique(self, db_session):
        expires = datetime.utcnow() + timedelta(minutes=5)
        db_session.add(ExpiringToken(key="k1", purpose="p", value="v", expires_at=expires))
        await db_session.commit()
        db_session.add(ExpiringToken(key="k1", purpose="p", value="w", expires_at=expires))
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()


class TestProductModel:

    @pytest.mark.integration
    async def test_variant_defaults(self, db_session):
        db_session.add(Product(slug="plain", title="Plain", price=Decimal("5.00")))
        await db_session.commit()
        product = (await db_session.execute(select(Product).where(Product.slug == "plain"))).scalar_one()
        assert product.colors == [] and product.sizes == []
        assert product.is_active is True
        assert product.stock == 0
