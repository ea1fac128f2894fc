"""
Tests for AccessService.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from storefront.db.models import GptAccess, utc_now
from storefront.exceptions import (
    AccessDeniedError,
    AccessExpiredError,
    ProductNotFoundError,
    UserNotFoundError,
)
from storefront.services.access import AccessService
from storefront.services.ledger import AccessLedger


async def _queries_used(session_factory, user_id: str, model_id: str) -> int:
    async with session_factory() as session:
        return await session.scalar(
            select(GptAccess.queries_used).where(
                GptAccess.user_id == user_id, GptAccess.model_id == model_id
            )
        )


class TestVerifyAndUse:
    """Tests for verify_and_use()."""

    @pytest.mark.asyncio
    async def test_granted_user_gets_url_and_count(self, db, session_factory, user):
        await AccessLedger(db).grant_access(user.id, "generador-sermones")

        result = await AccessService(db).verify_and_use("generador-sermones", user_id=user.id)

        assert result.product_name == "Generador de Sermones"
        assert result.gpt_url.startswith("https://chatgpt.com/g/")
        assert result.queries_used == 1
        assert await _queries_used(session_factory, user.id, "generador-sermones") == 1

    @pytest.mark.asyncio
    async def test_each_use_counts(self, db, user):
        await AccessLedger(db).grant_access(user.id, "apocalipsis")
        service = AccessService(db)

        await service.verify_and_use("apocalipsis", user_id=user.id)
        result = await service.verify_and_use("apocalipsis", user_id=user.id)

        assert result.queries_used == 2

    @pytest.mark.asyncio
    async def test_lookup_by_email(self, db, user):
        await AccessLedger(db).grant_access(user.id, "apocalipsis")

        result = await AccessService(db).verify_and_use("apocalipsis", email="USER@example.com")

        assert result.product_id == "apocalipsis"

    @pytest.mark.asyncio
    async def test_lookup_by_tool_slug(self, db, user):
        await AccessLedger(db).grant_access(user.id, "generador-sermones")

        result = await AccessService(db).verify_and_use("generador-de-sermones", user_id=user.id)

        assert result.product_id == "generador-sermones"

    @pytest.mark.asyncio
    async def test_no_grant_denied(self, db, session_factory, user):
        with pytest.raises(AccessDeniedError):
            await AccessService(db).verify_and_use("generador-sermones", user_id=user.id)

    @pytest.mark.asyncio
    async def test_grant_for_other_product_denied(self, db, user):
        await AccessLedger(db).grant_access(user.id, "apocalipsis")

        with pytest.raises(AccessDeniedError):
            await AccessService(db).verify_and_use("generador-sermones", user_id=user.id)

    @pytest.mark.asyncio
    async def test_expired_grant_rejected_without_counting(self, db, session_factory, user):
        await AccessLedger(db).grant_access(
            user.id, "apocalipsis", expires_at=utc_now() - timedelta(days=1)
        )

        with pytest.raises(AccessExpiredError):
            await AccessService(db).verify_and_use("apocalipsis", user_id=user.id)

        assert await _queries_used(session_factory, user.id, "apocalipsis") == 0

    @pytest.mark.asyncio
    async def test_future_expiry_allowed(self, db, user):
        await AccessLedger(db).grant_access(
            user.id, "apocalipsis", expires_at=utc_now() + timedelta(days=1)
        )

        result = await AccessService(db).verify_and_use("apocalipsis", user_id=user.id)

        assert result.queries_used == 1

    @pytest.mark.asyncio
    async def test_unknown_user(self, db, user):
        with pytest.raises(UserNotFoundError):
            await AccessService(db).verify_and_use("apocalipsis", email="nobody@example.com")

    @pytest.mark.asyncio
    async def test_no_identity(self, db, user):
        with pytest.raises(UserNotFoundError):
            await AccessService(db).verify_and_use("apocalipsis")

    @pytest.mark.asyncio
    async def test_unknown_product(self, db, user):
        with pytest.raises(ProductNotFoundError):
            await AccessService(db).verify_and_use("gpt-inexistente", user_id=user.id)


class TestVerifyAccessCode:
    """Tests for verify_access_code()."""

    @pytest.mark.asyncio
    async def test_valid_code(self, db, user):
        grant, _ = await AccessLedger(db).grant_access(user.id, "diccionario-biblico")

        result = await AccessService(db).verify_access_code(
            grant.access_token, "diccionario-biblico"
        )

        assert result.queries_used == 1
        assert result.gpt_url == "https://chatgpt.com/gpts"

    @pytest.mark.asyncio
    async def test_code_for_other_product_denied(self, db, user):
        grant, _ = await AccessLedger(db).grant_access(user.id, "diccionario-biblico")

        with pytest.raises(AccessDeniedError):
            await AccessService(db).verify_access_code(grant.access_token, "apocalipsis")

    @pytest.mark.asyncio
    async def test_unknown_code_denied(self, db, user):
        with pytest.raises(AccessDeniedError):
            await AccessService(db).verify_access_code("not-a-code", "apocalipsis")
