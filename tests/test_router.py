"""
Tests for inbound message routing.
"""
import json
from unittest.mock import MagicMock

import pytest

from invest_streaming.errors import UnknownEventError
from invest_streaming.events import Listeners
from invest_streaming.models import SubscriptionKey
from invest_streaming.subscriptions.registry import SubscriptionRegistry
from invest_streaming.subscriptions.router import EventRouter

ORDERBOOK_FRAME = {
    "event": "orderbook",
    "payload": {"figi": "AAPL-FIGI", "depth": 3, "bids": [[100.5, 10]], "asks": [[101.0, 4]]},
    "time": "2023-01-01T00:00:00Z",
}


@pytest.fixture
def registry():
    return SubscriptionRegistry()


@pytest.fixture
def errors():
    return Listeners()


@pytest.fixture
def router(registry, errors):
    return EventRouter(registry, errors)


def orderbook_key():
    return SubscriptionKey.for_channel("orderbook", {"figi": "AAPL-FIGI", "depth": 3})


class TestDataRouting:
    @pytest.mark.asyncio
    async def test_orderbook_delivered_once(self, router, registry, settle):
        callback = MagicMock()
        registry.add(orderbook_key(), callback)

        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()

        callback.assert_called_once_with(
            ORDERBOOK_FRAME["payload"], {"serverTime": "2023-01-01T00:00:00Z"}
        )

    @pytest.mark.asyncio
    async def test_delivery_is_deferred(self, router, registry, settle):
        callback = MagicMock()
        registry.add(orderbook_key(), callback)

        router.route(json.dumps(ORDERBOOK_FRAME))
        callback.assert_not_called()

        await settle()
        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_all_callbacks_of_key_fire(self, router, registry, settle):
        first, second = MagicMock(), MagicMock()
        registry.add(orderbook_key(), first)
        registry.add(orderbook_key(), second)

        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()

        first.assert_called_once()
        second.assert_called_once()

    @pytest.mark.asyncio
    async def test_other_keys_untouched(self, router, registry, settle):
        deep = MagicMock()
        registry.add(SubscriptionKey.for_channel("orderbook", {"figi": "AAPL-FIGI", "depth": 10}), deep)

        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()

        deep.assert_not_called()

    @pytest.mark.asyncio
    async def test_bytes_frame(self, router, registry, settle):
        callback = MagicMock()
        registry.add(orderbook_key(), callback)

        router.route(json.dumps(ORDERBOOK_FRAME).encode())
        await settle()

        callback.assert_called_once()

    @pytest.mark.asyncio
    async def test_coroutine_callback(self, router, registry, settle):
        seen = []

        async def callback(payload, meta):
            seen.append(payload["figi"])

        registry.add(orderbook_key(), callback)
        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()

        assert seen == ["AAPL-FIGI"]

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_block_others(self, router, registry, settle):
        broken = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        registry.add(orderbook_key(), broken)
        registry.add(orderbook_key(), healthy)

        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()

        broken.assert_called_once()
        healthy.assert_called_once()

    @pytest.mark.asyncio
    async def test_frame_without_subscribers_dropped(self, router, settle):
        router.route(json.dumps(ORDERBOOK_FRAME))
        await settle()
        assert router.messages_routed == 0


class TestErrorChannel:
    @pytest.mark.asyncio
    async def test_error_goes_only_to_error_channel(self, router, registry, errors, settle):
        on_data = MagicMock()
        on_error = MagicMock()
        registry.add(orderbook_key(), on_data)
        errors.listen(on_error)

        router.route(json.dumps({
            "event": "error",
            "payload": {"message": "bad figi"},
            "time": "2023-01-01T00:00:01Z",
        }))
        await settle()

        on_error.assert_called_once_with({"message": "bad figi"}, {"serverTime": "2023-01-01T00:00:01Z"})
        on_data.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancelled_error_listener(self, router, errors, settle):
        on_error = MagicMock()
        cancel = errors.listen(on_error)
        cancel()

        router.route(json.dumps({"event": "error", "payload": {}, "time": None}))
        await settle()

        on_error.assert_not_called()


class TestMalformed:
    def test_unknown_event_is_fatal(self, router):
        with pytest.raises(UnknownEventError):
            router.route(json.dumps({"event": "portfolio", "payload": {}, "time": None}))

    def test_invalid_json_dropped(self, router):
        router.route("not json at all")
        router.route(json.dumps([1, 2, 3]))
        assert router.messages_routed == 0
