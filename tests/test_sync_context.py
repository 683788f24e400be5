"""Tests for the event dispatcher and the wired sync context."""

import asyncio

from helpers import ACCOUNT, PEER, FakeGateway, raw_message
from wabridge.infra.store import CHATS, MESSAGES, InMemoryStore
from wabridge.observability.correlation import get_correlation_id
from wabridge.sync.context import build_context
from wabridge.sync.dispatcher import EventDispatcher
from wabridge.whatsapp.gateway import (
    ConnectionClosed,
    ContactsUpserted,
    CredentialsUpdated,
    HistorySnapshot,
    MessagesNotified,
)
from wabridge.whatsapp.models import SessionStatus


class TestEventDispatcher:
    def test_events_handled_in_order(self):
        seen = []

        async def record(event):
            seen.append(event.reason)

        async def scenario():
            dispatcher = EventDispatcher()
            dispatcher.register(ConnectionClosed, record)
            dispatcher.start()
            for reason in (1, 2, 3):
                dispatcher.publish(ConnectionClosed(reason))
            await dispatcher.drain()
            await dispatcher.stop()

        asyncio.run(scenario())

        assert seen == [1, 2, 3]

    def test_failing_handler_does_not_stop_consumer(self):
        seen = []

        async def flaky(event):
            if event.reason == 1:
                raise RuntimeError("boom")
            seen.append(event.reason)

        async def scenario():
            dispatcher = EventDispatcher()
            dispatcher.register(ConnectionClosed, flaky)
            dispatcher.start()
            dispatcher.publish(ConnectionClosed(1))
            dispatcher.publish(ConnectionClosed(2))
            await dispatcher.drain()
            running = dispatcher.running
            await dispatcher.stop()
            return running

        assert asyncio.run(scenario()) is True
        assert seen == [2]

    def test_each_event_gets_a_correlation_id(self):
        ids = []

        async def record(event):
            ids.append(get_correlation_id())

        async def scenario():
            dispatcher = EventDispatcher()
            dispatcher.register(ConnectionClosed, record)
            await dispatcher.dispatch(ConnectionClosed(1))
            await dispatcher.dispatch(ConnectionClosed(2))

        asyncio.run(scenario())

        assert all(ids)
        assert ids[0] != ids[1]

    def test_background_handler_does_not_block_queue(self):
        order = []
        release = None

        async def slow(event):
            await release.wait()
            order.append("background")

        async def fast(event):
            order.append("live")
            release.set()

        async def scenario():
            nonlocal release
            release = asyncio.Event()
            dispatcher = EventDispatcher()
            dispatcher.register(HistorySnapshot, slow, background=True)
            dispatcher.register(ConnectionClosed, fast)
            dispatcher.start()
            dispatcher.publish(HistorySnapshot())
            dispatcher.publish(ConnectionClosed(1))
            await dispatcher.drain()
            await dispatcher.stop()

        asyncio.run(scenario())

        assert order == ["live", "background"]


class TestSyncContext:
    def test_full_flow(self):
        gateway = FakeGateway(credentials=True)
        store = InMemoryStore()

        async def scenario():
            ctx = build_context(gateway, store, render=lambda c: c, reconnect_delay=10)
            await ctx.start()
            assert gateway.sink == ctx.dispatcher.publish

            sink = gateway.sink
            sink(CredentialsUpdated())
            sink(gateway.authenticate())
            sink(ContactsUpserted([{"id": PEER, "notify": "Alice"}]))
            sink(
                HistorySnapshot(
                    chats=[{"id": PEER, "conversationTimestamp": 1700000000}],
                    messages=[raw_message("H1")],
                )
            )
            sink(MessagesNotified([raw_message("L1", text="live")], "notify"))
            await ctx.dispatcher.drain()

            status = ctx.session.session.status
            identity = ctx.session.session.identity
            await ctx.shutdown()
            return ctx, status, identity

        ctx, status, identity = asyncio.run(scenario())

        assert status is SessionStatus.CONNECTED
        assert identity == ACCOUNT
        assert "save_credentials" in gateway.calls
        assert len(ctx.resolver) == 1
        assert store.collections[CHATS][PEER]["display_name"] == "Alice"
        assert set(store.collections[MESSAGES]) == {"H1", "L1"}
        assert ctx.session.session.status is SessionStatus.DISCONNECTED
        assert "end" in gateway.calls

    def test_start_without_credentials_stands_by(self):
        gateway = FakeGateway(credentials=False)

        async def scenario():
            ctx = build_context(gateway, InMemoryStore())
            await ctx.start()
            status = ctx.session.session.status
            await ctx.shutdown()
            return status

        assert asyncio.run(scenario()) is SessionStatus.DISCONNECTED
        assert "open" not in gateway.calls

    def test_close_during_history_import_still_reconnects(self):
        gateway = FakeGateway(credentials=True)
        store = InMemoryStore()
        messages = [raw_message(f"H{i:03d}") for i in range(120)]

        async def scenario():
            ctx = build_context(gateway, store, render=lambda c: c, reconnect_delay=0.5)
            written_at_close = []
            on_closed = ctx.session.on_closed

            async def record_close(reason):
                written_at_close.append(len(store.collections[MESSAGES]))
                await on_closed(reason)

            ctx.session.on_closed = record_close
            await ctx.start()
            gateway.sink(gateway.authenticate())
            gateway.sink(HistorySnapshot(chats=[{"id": PEER}], messages=messages))
            gateway.sink(ConnectionClosed(428))
            await ctx.dispatcher.drain()

            after_sync = (ctx.session.session.status, ctx.session.reconnect_pending)
            await asyncio.sleep(0.6)
            reconnected = ctx.session.session.status
            await ctx.shutdown()
            return written_at_close, after_sync, reconnected

        written_at_close, after_sync, reconnected = asyncio.run(scenario())

        assert written_at_close and written_at_close[0] < 120
        assert len(store.collections[MESSAGES]) == 120
        assert after_sync == (SessionStatus.DISCONNECTED, True)
        assert gateway.calls.count("open") == 2
        assert reconnected is SessionStatus.CONNECTING
