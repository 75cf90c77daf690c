"""Tests for the global exception handlers."""

from __future__ import annotations

from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from backend.exceptions import InternalServerError
from backend.main import create_app, init_app_state
from backend.services.reconcile_service import reconcile
from tests.conftest import FakeSource, make_item

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from fastapi import FastAPI

    from backend.config import Settings


@pytest.fixture
async def app(test_settings: Settings) -> AsyncGenerator[FastAPI]:
    application = create_app(test_settings)
    await init_app_state(application, test_settings, client_factory=FakeSource().factory)
    yield application
    await application.state.engine.dispose()


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


async def _create_vault(client: AsyncClient) -> int:
    resp = await client.post("/api/vaults", json={"name": "Notes", "local_path": "/tmp/notes"})
    return resp.json()["id"]


class TestInternalErrors:
    async def test_cyclic_hierarchy_hides_details(self, client: AsyncClient, app: FastAPI) -> None:
        vault_id = await _create_vault(client)
        async with app.state.session_factory() as session:
            await reconcile(
                session,
                vault_id,
                [
                    make_item("x", folder=True, parent_id="y"),
                    make_item("y", folder=True, parent_id="x"),
                ],
            )

        resp = await client.get(f"/api/vaults/{vault_id}/hierarchy")

        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error"}

    async def test_decryption_failure_hides_details(self, client: AsyncClient) -> None:
        vault_id = await _create_vault(client)
        with patch(
            "backend.services.sync_service.has_device_token",
            new=AsyncMock(side_effect=InternalServerError("Failed to decrypt stored credential")),
        ):
            resp = await client.post("/api/sync/start", json={"vault_id": vault_id})

        assert resp.status_code == 500
        assert "decrypt" not in resp.text


class TestDatabaseErrors:
    async def test_operational_error_returns_503(self, client: AsyncClient) -> None:
        with patch(
            "backend.api.vaults.list_vaults",
            new=AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("locked"))),
        ):
            resp = await client.get("/api/vaults")

        assert resp.status_code == 503
        assert resp.json()["detail"] == "Database temporarily unavailable"


class TestValidationErrors:
    async def test_field_errors_reported(self, client: AsyncClient) -> None:
        resp = await client.post("/api/sync/start", json={})
        assert resp.status_code == 422
        assert resp.json()["detail"][0]["field"] == "vault_id"

    async def test_history_limit_bounded(self, client: AsyncClient) -> None:
        resp = await client.get("/api/sync/history", params={"limit": 1000})
        assert resp.status_code == 422
