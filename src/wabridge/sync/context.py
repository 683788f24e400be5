"""Sync context - one object wiring gateway, store and the sync components.

Routes and tests receive the context instead of reaching for module globals.
"""

from dataclasses import dataclass
from typing import Any

from wabridge.infra.store import UpsertStore, create_store
from wabridge.whatsapp.contacts import ContactResolver
from wabridge.whatsapp.gateway import (
    ChallengeIssued,
    ConnectionClosed,
    ConnectionOpened,
    ContactsUpserted,
    CredentialsUpdated,
    Gateway,
    HistorySnapshot,
    MessagesNotified,
)

from .dispatcher import EventDispatcher
from .history import HistorySyncPipeline
from .live import LiveIngestionHandler
from .session import SessionStateMachine


@dataclass
class SyncContext:
    gateway: Gateway
    store: UpsertStore
    resolver: ContactResolver
    dispatcher: EventDispatcher
    session: SessionStateMachine
    history: HistorySyncPipeline
    live: LiveIngestionHandler

    async def start(self) -> None:
        """Start consuming gateway events and resume a stored session if any."""
        self.dispatcher.start()
        await self.session.request_connect(manual=False)

    async def shutdown(self) -> None:
        await self.session.shutdown()
        await self.dispatcher.stop()


def build_context(
    gateway: Gateway,
    store: UpsertStore | None = None,
    **session_options: Any,
) -> SyncContext:
    """Wire the sync components around a gateway.

    Args:
        gateway: Messaging gateway implementation.
        store: Store backend; defaults to the STORE_BACKEND selection.
        **session_options: Passed to SessionStateMachine (scan_timeout,
            reconnect_delay, render).
    """
    store = store if store is not None else create_store()
    resolver = ContactResolver()
    dispatcher = EventDispatcher()
    session = SessionStateMachine(gateway, store, dispatcher.publish, **session_options)
    history = HistorySyncPipeline(store, resolver, session)
    live = LiveIngestionHandler(store, resolver)

    async def on_credentials(event: CredentialsUpdated) -> None:
        await gateway.save_credentials()

    async def on_challenge(event: ChallengeIssued) -> None:
        await session.on_challenge(event.challenge)

    async def on_opened(event: ConnectionOpened) -> None:
        await session.on_established(event.identity)

    async def on_closed(event: ConnectionClosed) -> None:
        await session.on_closed(event.reason)

    async def on_contacts(event: ContactsUpserted) -> None:
        resolver.merge(event.contacts)

    dispatcher.register(CredentialsUpdated, on_credentials)
    dispatcher.register(ChallengeIssued, on_challenge)
    dispatcher.register(ConnectionOpened, on_opened)
    dispatcher.register(ConnectionClosed, on_closed)
    dispatcher.register(ContactsUpserted, on_contacts)
    dispatcher.register(HistorySnapshot, history.run, background=True)
    dispatcher.register(MessagesNotified, live.handle)

    return SyncContext(
        gateway=gateway,
        store=store,
        resolver=resolver,
        dispatcher=dispatcher,
        session=session,
        history=history,
        live=live,
    )
