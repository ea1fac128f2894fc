"""
Tests for CheckoutService.
"""

import pytest
from sqlalchemy import select

from storefront.db.models import User
from storefront.exceptions import (
    PaymentProviderError,
    ProductAlreadyOwnedError,
    ProductNotFoundError,
    UserNotFoundError,
)
from storefront.services.checkout import CheckoutService
from storefront.services.ledger import AccessLedger


class TestCreatePaymentIntent:
    """Tests for create_payment_intent()."""

    @pytest.mark.asyncio
    async def test_priced_from_catalog(self, db, user, provider):
        intent = await CheckoutService(db, provider).create_payment_intent(
            user.id, "generador-sermones"
        )

        assert intent.payment_id == "pi_test_1"
        assert intent.client_secret.startswith("pi_test_1_secret")
        request = provider.created[0]
        assert request.amount_minor == 999
        assert request.currency == "usd"
        assert request.user_id == user.id
        assert request.product_id == "generador-sermones"
        assert request.product_name == "Generador de Sermones"

    @pytest.mark.asyncio
    async def test_customer_created_and_saved(self, db, session_factory, user, provider):
        await CheckoutService(db, provider).create_payment_intent(user.id, "apocalipsis")

        async with session_factory() as session:
            customer_id = await session.scalar(
                select(User.stripe_customer_id).where(User.id == user.id)
            )
        assert customer_id == "cus_1"
        assert provider.created[0].customer_id == "cus_1"

    @pytest.mark.asyncio
    async def test_existing_customer_reused(self, db, user, provider):
        service = CheckoutService(db, provider)
        await service.create_payment_intent(user.id, "apocalipsis")
        await service.create_payment_intent(user.id, "cantar-cantares")

        assert len(provider.customers) == 1
        assert provider.created[1].customer_id == "cus_1"

    @pytest.mark.asyncio
    async def test_owned_product_rejected(self, db, user, provider):
        await AccessLedger(db).grant_access(user.id, "apocalipsis")

        with pytest.raises(ProductAlreadyOwnedError):
            await CheckoutService(db, provider).create_payment_intent(user.id, "apocalipsis")

        assert provider.created == []

    @pytest.mark.asyncio
    async def test_unknown_product(self, db, user, provider):
        with pytest.raises(ProductNotFoundError):
            await CheckoutService(db, provider).create_payment_intent(user.id, "gpt-falso")

    @pytest.mark.asyncio
    async def test_unknown_user(self, db, user, provider):
        with pytest.raises(UserNotFoundError):
            await CheckoutService(db, provider).create_payment_intent("missing", "apocalipsis")

    @pytest.mark.asyncio
    async def test_gateway_failure_propagates(self, db, user, provider):
        provider.unavailable = True

        with pytest.raises(PaymentProviderError):
            await CheckoutService(db, provider).create_payment_intent(user.id, "apocalipsis")
