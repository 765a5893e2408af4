# tests/test_channels.py

"""
Tests for the change-feed subscriber.
"""

import pytest

from core.errors import BackendError, ValidationError
from models.enums import ConnectionState, EventKind
from models.events import ChangeEvent, ChannelHandlers
from sync.channels import ChangeFeedSubscriber


class TestChangeEventPayloads:
    def test_js_client_shape(self):
        event = ChangeEvent.from_payload(
            {"eventType": "UPDATE", "table": "payments", "schema": "public",
             "new": {"id": "p1", "status": "paid"}, "old": {"id": "p1", "status": "pending"}},
            tenant_scope="condo-1",
        )
        assert event.event_kind == EventKind.update
        assert event.record_id == "p1"
        assert event.old_record["status"] == "pending"
        assert event.tenant_scope == "condo-1"

    def test_realtime_server_shape(self):
        event = ChangeEvent.from_payload(
            {"data": {"type": "DELETE", "table": "visitors", "schema": "public",
                      "record": {}, "old_record": {"id": "v1"},
                      "commit_timestamp": "2024-03-01T10:00:00Z"}}
        )
        assert event.event_kind == EventKind.delete
        assert event.new_record is None
        assert event.record_id == "v1"
        assert event.commit_timestamp is not None


class TestChangeFeedSubscriber:
    @pytest.mark.asyncio
    async def test_subscribe_uses_tenant_filter_and_channel_name(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)

        channel = await subscriber.subscribe("payments", "condo-1", ChannelHandlers())

        assert channel.name == "payments-condo-1"
        assert backend.channels[0].filter == "condominium_id=eq.condo-1"
        assert channel.state == ConnectionState.subscribed
        assert channel.state_history == [ConnectionState.connecting, ConnectionState.subscribed]

    @pytest.mark.asyncio
    async def test_explicit_filter_for_single_record(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)

        await subscriber.subscribe("profiles", None, ChannelHandlers(), filter="id=eq.profile-1")

        assert backend.channels[0].filter == "id=eq.profile-1"

    @pytest.mark.asyncio
    async def test_missing_scope_and_filter_is_rejected(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)
        with pytest.raises(ValidationError):
            await subscriber.subscribe("payments", None, ChannelHandlers())
        assert backend.channels == []

    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self, backend, notifier):
        seen = []
        subscriber = ChangeFeedSubscriber(backend, notifier)
        await subscriber.subscribe(
            "occurrences",
            "condo-1",
            ChannelHandlers(
                on_insert=lambda e: seen.append(("insert", e.record_id)),
                on_update=lambda e: seen.append(("update", e.record_id)),
                on_delete=lambda e: seen.append(("delete", e.record_id)),
            ),
        )

        backend.emit("occurrences", "insert", new={"id": "o1"})
        backend.emit("occurrences", "update", new={"id": "o1"}, old={"id": "o1"})
        backend.emit("occurrences", "insert", new={"id": "o2"})
        backend.emit("occurrences", "delete", old={"id": "o1"})
        await subscriber.drain()

        assert seen == [("insert", "o1"), ("update", "o1"), ("insert", "o2"), ("delete", "o1")]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, backend, notifier):
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        subscriber = ChangeFeedSubscriber(backend, notifier)
        channel = await subscriber.subscribe("documents", "condo-1", ChannelHandlers(on_insert=broken))
        await subscriber.subscribe("documents", "condo-1", ChannelHandlers(on_insert=seen.append))

        backend.emit("documents", "insert", new={"id": "d1"})
        backend.emit("documents", "insert", new={"id": "d2"})
        await subscriber.drain()

        assert [e.record_id for e in seen] == ["d1", "d2"]
        assert channel.state == ConnectionState.subscribed

    @pytest.mark.asyncio
    async def test_same_key_shares_one_backend_subscription(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)
        first = ChannelHandlers()
        second = ChannelHandlers()

        a = await subscriber.subscribe("residents", "condo-1", first)
        b = await subscriber.subscribe("residents", "condo-1", second)
        assert a is b
        assert len(backend.channels) == 1

        await subscriber.unsubscribe(a, first)
        assert not backend.channels[0].removed

        await subscriber.unsubscribe(a, second)
        assert backend.channels[0].removed
        assert a.state == ConnectionState.closed

    @pytest.mark.asyncio
    async def test_unsubscribe_is_idempotent(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)
        channel = await subscriber.subscribe("visitors", "condo-1", ChannelHandlers())

        await subscriber.unsubscribe(channel)
        await subscriber.unsubscribe(channel)
        await subscriber.unsubscribe(None)

        assert channel.state_history[-1] == ConnectionState.closed
        assert channel.state_history.count(ConnectionState.closed) == 1

    @pytest.mark.asyncio
    async def test_no_delivery_after_close(self, backend, notifier):
        seen = []
        subscriber = ChangeFeedSubscriber(backend, notifier)
        channel = await subscriber.subscribe("expenses", "condo-1", ChannelHandlers(on_insert=seen.append))
        raw_channel = backend.channels[0]

        await subscriber.unsubscribe(channel)
        raw_channel.on_event({"eventType": "INSERT", "table": "expenses", "new": {"id": "e1"}})
        await subscriber.drain()

        assert seen == []

    @pytest.mark.asyncio
    async def test_channel_error_notifies_and_does_not_retry(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)
        channel = await subscriber.subscribe("payments", "condo-1", ChannelHandlers())

        backend.channels[0].on_status("CHANNEL_ERROR", None)

        assert channel.state == ConnectionState.error
        assert len(backend.channels) == 1
        errors = [n for n in notifier.notifications if n.level == "error"]
        assert errors[0].title == "Real-time sync failed"
        assert errors[0].retryable is True

    @pytest.mark.asyncio
    async def test_subscribe_failure_leaves_errored_channel(self, backend, notifier):
        backend.failures["subscribe:payments"] = BackendError("timed out", code="TIMEOUT")
        subscriber = ChangeFeedSubscriber(backend, notifier)

        channel = await subscriber.subscribe("payments", "condo-1", ChannelHandlers())

        assert channel.state == ConnectionState.error
        assert subscriber.channels == []

    @pytest.mark.asyncio
    async def test_unsubscribe_all(self, backend, notifier):
        subscriber = ChangeFeedSubscriber(backend, notifier)
        await subscriber.subscribe("payments", "condo-1", ChannelHandlers())
        await subscriber.subscribe("expenses", "condo-1", ChannelHandlers())

        await subscriber.unsubscribe_all()

        assert subscriber.channels == []
        assert all(c.removed for c in backend.channels)
