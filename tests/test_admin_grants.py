"""
Tests for AdminGrantService and GptModelService.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select, update

from storefront.db.models import GptModel, Payment, User
from storefront.exceptions import (
    ProductAlreadyOwnedError,
    ProductModelMismatchError,
    ProductNotFoundError,
)
from storefront.services.admin_grants import AdminGrantService
from storefront.services.gpt_models import GptModelService


class TestAdminGrant:
    """Tests for AdminGrantService.grant()."""

    @pytest.mark.asyncio
    async def test_existing_user_granted(self, db, session_factory, user, admin_user):
        result = await AdminGrantService(db).grant(user.email, "apocalipsis", admin_user.id)

        assert result.user_created is False
        assert result.user.user_id == user.id
        assert result.product_name == "Estudio El Libro de Apocalipsis"
        async with session_factory() as session:
            rows = (
                await session.execute(
                    select(Payment.amount, Payment.status).where(Payment.user_id == user.id)
                )
            ).all()
        assert [(Decimal(r.amount), r.status) for r in rows] == [(Decimal("0.00"), "succeeded")]

    @pytest.mark.asyncio
    async def test_unknown_email_creates_user(self, db, session_factory, admin_user):
        result = await AdminGrantService(db).grant(
            "Pastor@Iglesia.org", "diccionario-biblico", admin_user.id
        )

        assert result.user_created is True
        assert result.user.email == "pastor@iglesia.org"
        async with session_factory() as session:
            stored = await session.scalar(
                select(User.password_hash).where(User.email == "pastor@iglesia.org")
            )
        assert stored is None

    @pytest.mark.asyncio
    async def test_username_collision_gets_suffix(self, db, admin_user):
        """Local part 'admin' is taken by the admin themself."""
        result = await AdminGrantService(db).grant(
            "admin@otro.org", "apocalipsis", admin_user.id
        )

        assert result.user.username.startswith("admin-")

    @pytest.mark.asyncio
    async def test_already_owned(self, db, user, admin_user):
        service = AdminGrantService(db)
        await service.grant(user.email, "apocalipsis", admin_user.id)

        with pytest.raises(ProductAlreadyOwnedError):
            await service.grant(user.email, "apocalipsis", admin_user.id)

    @pytest.mark.asyncio
    async def test_unknown_product(self, db, user, admin_user):
        with pytest.raises(ProductNotFoundError):
            await AdminGrantService(db).grant(user.email, "nada", admin_user.id)

    @pytest.mark.asyncio
    async def test_inactive_model(self, db, user, admin_user):
        await db.execute(
            update(GptModel).where(GptModel.id == "apocalipsis").values(is_active=False)
        )
        await db.commit()

        with pytest.raises(ProductModelMismatchError):
            await AdminGrantService(db).grant(user.email, "apocalipsis", admin_user.id)


class TestGptModelSync:
    """Tests for GptModelService.sync_from_catalog()."""

    @pytest.mark.asyncio
    async def test_seeds_every_product(self, db):
        inserted = await GptModelService(db).sync_from_catalog()

        assert len(inserted) == 9
        assert len(await GptModelService(db).list_active()) == 9

    @pytest.mark.asyncio
    async def test_second_sync_is_noop(self, db, gpt_models):
        assert await GptModelService(db).sync_from_catalog() == []

    @pytest.mark.asyncio
    async def test_deactivated_model_stays_off(self, db, gpt_models):
        await db.execute(
            update(GptModel).where(GptModel.id == "apocalipsis").values(is_active=False)
        )
        await db.commit()

        await GptModelService(db).sync_from_catalog()

        assert await GptModelService(db).get_active("apocalipsis") is None
        assert len(await GptModelService(db).list_active()) == 8
