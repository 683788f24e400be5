"""Messaging gateway contract.

The gateway (protocol, encryption, transport, credential files) lives outside
this package. It is loaded from an import path and talks to us only through the
events below, pushed into an EventSink.
"""

import importlib
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, Union

# Close reason code for an explicit logout (credentials invalidated)
LOGGED_OUT = 401

NOTIFY = "notify"
APPEND = "append"


class GatewayUnavailableError(Exception):
    """Raised when a gateway operation needs an open, authenticated session."""

    pass


@dataclass(frozen=True)
class CredentialsUpdated:
    pass


@dataclass(frozen=True)
class ChallengeIssued:
    challenge: str


@dataclass(frozen=True)
class ConnectionOpened:
    identity: str | None


@dataclass(frozen=True)
class ConnectionClosed:
    reason: int | None


@dataclass(frozen=True)
class ContactsUpserted:
    contacts: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class HistorySnapshot:
    chats: list[dict[str, Any]] = field(default_factory=list)
    contacts: list[dict[str, Any]] = field(default_factory=list)
    messages: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class MessagesNotified:
    messages: list[dict[str, Any]]
    kind: str


GatewayEvent = Union[
    CredentialsUpdated,
    ChallengeIssued,
    ConnectionOpened,
    ConnectionClosed,
    ContactsUpserted,
    HistorySnapshot,
    MessagesNotified,
]

EventSink = Callable[[GatewayEvent], None]


class Gateway(Protocol):
    """Operations the sync core needs from the gateway."""

    @property
    def identity(self) -> str | None:
        """Authenticated account JID, None until the session is open."""
        ...

    def has_credentials(self) -> bool:
        """True when stored credentials can resume a session without a scan."""
        ...

    def open(self, sink: EventSink) -> Awaitable[None]:
        """Start a session; lifecycle and data events go to ``sink``."""
        ...

    def end(self) -> Awaitable[None]:
        """Close the current session without touching credentials."""
        ...

    def logout(self) -> Awaitable[None]:
        """Invalidate stored credentials and close the session."""
        ...

    def save_credentials(self) -> Awaitable[None]:
        """Persist credential material after a CredentialsUpdated event."""
        ...

    def download_media(self, key: dict[str, Any], message: dict[str, Any]) -> Awaitable[bytes]:
        """Fetch and decrypt media bytes for a minimal message."""
        ...

    def send_text(self, chat_id: str, text: str) -> Awaitable[str | None]:
        """Send a text message; returns the gateway message id."""
        ...


GatewayFactory = Callable[[], Gateway]


def load_gateway(import_path: str | None = None) -> Gateway:
    """Instantiate the gateway named by WABRIDGE_GATEWAY ("module:factory").

    Raises:
        RuntimeError: If no import path is configured or it is malformed.
    """
    import_path = import_path or os.environ.get("WABRIDGE_GATEWAY", "")
    if not import_path or ":" not in import_path:
        raise RuntimeError(
            "WABRIDGE_GATEWAY must be set to 'module:factory' for the messaging gateway"
        )
    module_name, attr = import_path.split(":", 1)
    factory: GatewayFactory = getattr(importlib.import_module(module_name), attr)
    return factory()
