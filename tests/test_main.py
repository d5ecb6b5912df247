"""Tests for application startup and shutdown."""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from closedloop import __version__
from closedloop.core.exceptions import CollaboratorConfigError
from closedloop.main import app, lifespan
from closedloop.services.scheduler import get_scheduler


class TestRoot:
    @pytest.mark.asyncio
    async def test_root(self):
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as ac:
            response = await ac.get("/")

        assert response.status_code == 200
        assert response.json()["version"] == __version__


class TestLifespan:
    @pytest.mark.asyncio
    async def test_starts_scheduler_for_configured_loop(self, manager, driver):
        with patch("closedloop.main.build_manager", return_value=manager):
            async with lifespan(app):
                assert app.state.manager is manager
                assert get_scheduler() is not None

        assert get_scheduler() is None
        assert driver.observer_count == 0
        app.state.manager = None

    @pytest.mark.asyncio
    async def test_unconfigured_loop_runs_without_scheduler(self):
        with patch("closedloop.main.build_manager", return_value=None):
            async with lifespan(app):
                assert app.state.manager is None
                assert get_scheduler() is None

    @pytest.mark.asyncio
    async def test_bad_collaborator_config_is_logged(self):
        with patch(
            "closedloop.main.build_manager",
            side_effect=CollaboratorConfigError("bad path"),
        ):
            async with lifespan(app):
                assert app.state.manager is None
