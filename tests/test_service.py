from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from image_relay.core_config import EnrichmentShape
from image_relay.errors import ConfigurationError, SubscriptionError
from image_relay.workers import service as service_module
from image_relay.workers.service import ImageRelayService
from tests.helpers import FakePool, FakeSupabaseClient


@pytest.fixture
def fake_listener():
    listener = MagicMock()
    listener.start = AsyncMock(return_value="listen-task")
    listener.stop = AsyncMock()
    return listener


@pytest.mark.asyncio
async def test_start_wires_pipeline_from_settings(make_settings, fake_listener):
    settings = make_settings(ENRICHMENT_SHAPE="email", NOTIFY_CHANNEL="images_ready", FETCH_TIMEOUT_SECONDS="15")
    pool = FakePool()

    with patch.object(service_module, "open_query_pool", AsyncMock(return_value=pool)), patch.object(
        service_module, "NotificationListener", return_value=fake_listener
    ) as listener_cls:
        service = ImageRelayService(settings, supabase_client=FakeSupabaseClient())
        task = await service.start()

    assert task == "listen-task"
    dsn, channel, handler = listener_cls.call_args.args
    assert dsn == settings.supabase_db_url
    assert channel == "images_ready"
    assert handler is service.handler
    assert handler._lookup.shape is EnrichmentShape.EMAIL
    assert handler._api_base_url == "https://api.example.com"
    assert handler._destination_folder == "relayed"
    assert handler._fetcher._client.timeout.read == 15.0

    await service.close()
    fake_listener.stop.assert_awaited_once()
    assert pool.closed


@pytest.mark.asyncio
async def test_bad_service_role_key_is_configuration_error(make_settings):
    settings = make_settings(SUPABASE_SERVICE_ROLE_KEY="not-a-jwt")
    opener = AsyncMock()

    with patch.object(service_module, "open_query_pool", opener):
        with pytest.raises(ConfigurationError):
            await ImageRelayService(settings).start()

    opener.assert_not_awaited()


@pytest.mark.asyncio
async def test_subscription_error_propagates_and_close_releases_resources(make_settings, fake_listener):
    fake_listener.start = AsyncMock(side_effect=SubscriptionError("no LISTEN"))
    pool = FakePool()

    with patch.object(service_module, "open_query_pool", AsyncMock(return_value=pool)), patch.object(
        service_module, "NotificationListener", return_value=fake_listener
    ):
        service = ImageRelayService(make_settings(), supabase_client=FakeSupabaseClient())
        with pytest.raises(SubscriptionError):
            await service.start()
        await service.close()

    assert pool.closed


@pytest.mark.asyncio
async def test_close_before_start_is_noop(make_settings):
    await ImageRelayService(make_settings()).close()


@pytest.mark.asyncio
async def test_malformed_supabase_url_is_configuration_error(make_settings):
    opener = AsyncMock()

    with patch.object(service_module, "open_query_pool", opener):
        with pytest.raises(ConfigurationError, match="Could not create Supabase client"):
            await ImageRelayService(make_settings(SUPABASE_URL="not a url")).start()

    opener.assert_not_awaited()
