"""Tests for image_relay.workers.runner - exit codes and shutdown behavior."""

from __future__ import annotations

import asyncio
import json
import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from image_relay.errors import ConfigurationError, SubscriptionError
from image_relay.workers import runner
from image_relay.workers import service as service_module
from tests.helpers import minimal_env


def make_service(task=None, start_error=None):
    service = MagicMock()
    if start_error is not None:
        service.start = AsyncMock(side_effect=start_error)
    else:
        service.start = AsyncMock(return_value=task)
    service.close = AsyncMock()
    return service


@pytest.mark.asyncio
async def test_run_returns_fatal_when_subscription_fails(settings, caplog):
    service = make_service(start_error=SubscriptionError("connection refused"))

    with caplog.at_level("CRITICAL"):
        code = await runner.run(settings, service)

    assert code == runner.EXIT_FATAL
    service.close.assert_awaited_once()
    assert "connection refused" in caplog.text


@pytest.mark.asyncio
async def test_run_returns_fatal_on_malformed_supabase_url(make_settings, caplog):
    settings = make_settings(SUPABASE_URL="not a url")

    with patch.object(service_module, "open_query_pool", AsyncMock()) as opener:
        with caplog.at_level("CRITICAL"):
            code = await runner.run(settings)

    assert code == runner.EXIT_FATAL
    opener.assert_not_awaited()
    assert "Error starting listener" in caplog.text


@pytest.mark.asyncio
async def test_run_returns_fatal_when_subscription_is_lost(settings, caplog):
    async def lost():
        raise ConnectionError("server closed the connection unexpectedly")

    task = asyncio.create_task(lost())
    service = make_service(task=task)

    with caplog.at_level("CRITICAL"):
        code = await runner.run(settings, service)

    assert code == runner.EXIT_FATAL
    service.close.assert_awaited_once()
    assert "Notification subscription lost" in caplog.text


@pytest.mark.asyncio
async def test_run_returns_ok_on_stop_signal(settings):
    forever = asyncio.create_task(asyncio.Event().wait())
    service = make_service(task=forever)
    captured = {}

    def capture(stop):
        captured["stop"] = stop

    with patch.object(runner, "_install_signal_handlers", side_effect=capture):
        run_task = asyncio.create_task(runner.run(settings, service))
        while "stop" not in captured:
            await asyncio.sleep(0)
        captured["stop"].set()
        code = await run_task

    assert code == runner.EXIT_OK
    service.close.assert_awaited_once()
    forever.cancel()


def test_main_exits_fatal_on_missing_configuration():
    with patch.object(runner, "get_settings", side_effect=ConfigurationError("Missing required environment variable(s): API_BASE_URL")), patch.object(
        runner, "configure_logging"
    ):
        assert runner.main([]) == runner.EXIT_FATAL


def test_main_check_config_prints_redacted_settings(settings, capsys):
    with patch.object(runner, "get_settings", return_value=settings), patch.object(runner, "configure_logging"):
        assert runner.main(["--check-config"]) == runner.EXIT_OK

    printed = json.loads(capsys.readouterr().out)
    assert printed["API_BASE_URL"] == "https://api.example.com"
    assert printed["SUPABASE_SERVICE_ROLE_KEY"].startswith("***SET***")
    assert "secret" not in printed["SUPABASE_DB_URL"]


def test_main_runs_service_and_returns_its_exit_code(settings):
    with patch.object(runner, "get_settings", return_value=settings), patch.object(
        runner, "configure_logging"
    ) as configure, patch.object(runner, "run", AsyncMock(return_value=runner.EXIT_FATAL)) as run:
        assert runner.main([]) == runner.EXIT_FATAL

    run.assert_awaited_once_with(settings)
    configure.assert_called_once_with(level="INFO", json_output=False, service_name="image-relay")


def test_main_reads_real_environment():
    env = {**minimal_env(), "LOG_LEVEL": "debug", "ENVIRONMENT": "production"}

    with patch.dict(os.environ, env, clear=True), patch.object(runner, "configure_logging") as configure, patch.object(
        runner, "run", AsyncMock(return_value=runner.EXIT_OK)
    ):
        assert runner.main([]) == runner.EXIT_OK

    configure.assert_called_once_with(level="DEBUG", json_output=True, service_name="image-relay")
