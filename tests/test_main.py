"""
Tests for Main Application setup.

Covers the lifespan catalog sync, the validation error handler and the
service endpoints mounted directly on the app.
"""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select

from storefront.db.models import GptModel
from storefront.services import catalog


class TestServiceEndpoints:
    @pytest.mark.asyncio
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "running"

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client):
        await client.get("/")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        given = await client.get("/", headers={"X-Request-ID": "req-42"})
        minted = await client.get("/")

        assert given.headers["X-Request-ID"] == "req-42"
        assert len(minted.headers["X-Request-ID"]) == 32

    @pytest.mark.asyncio
    async def test_metrics_use_route_template(self, client, user):
        await client.post(
            "/api/gpt-verify/apocalipsis", json={"userId": "u", "email": user.email}
        )

        response = await client.get("/metrics")

        assert 'endpoint="/api/gpt-verify/{gpt_name}"' in response.text
        assert 'endpoint="/api/gpt-verify/apocalipsis"' not in response.text


class TestValidationHandler:
    @pytest.mark.asyncio
    async def test_errors_are_sanitized(self, client, gpt_models):
        response = await client.post(
            "/api/register",
            json={"email": "fiel@example.com", "username": "fiel", "password": "x", "name": "F"},
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert {"type", "loc", "msg"} <= set(detail[0])
        for error in detail:
            for value in error.get("ctx", {}).values():
                assert isinstance(value, str)


class TestLifespan:
    @pytest.mark.asyncio
    async def test_startup_syncs_catalog_and_shutdown_closes_clients(self, session_factory):
        """Every catalog product has a gpt_models row once startup finishes."""
        from storefront.main import app, lifespan

        @asynccontextmanager
        async def write_session():
            async with session_factory() as session:
                yield session
                await session.commit()

        notifier = MagicMock(close=AsyncMock())
        google_login = MagicMock()
        google_login.oauth_provider.close = AsyncMock()

        with (
            patch("storefront.main.get_write_session", write_session),
            patch("storefront.main.get_email_notifier", return_value=notifier),
            patch("storefront.main.get_google_login", return_value=google_login),
            patch("storefront.main.close_engines", new=AsyncMock()) as close_engines,
        ):
            async with lifespan(app):
                async with session_factory() as session:
                    count = await session.scalar(select(func.count()).select_from(GptModel))

        assert count == len(catalog.GPT_PRODUCTS)
        notifier.close.assert_awaited_once()
        google_login.oauth_provider.close.assert_awaited_once()
        close_engines.assert_awaited_once()
