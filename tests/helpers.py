"""Shared test doubles and payload builders.

Regular functions and classes, not fixtures, so both conftest.py and test
modules can import them.
"""

from __future__ import annotations

from typing import Any

from wabridge.infra.store import InMemoryStore, StoreError
from wabridge.whatsapp.gateway import ConnectionOpened
from wabridge.whatsapp.models import MessageRecord

PEER = "5511999998888@s.whatsapp.net"
OTHER_PEER = "5511977776666@s.whatsapp.net"
GROUP = "120363000000000001@g.us"
ACCOUNT = "5511900000000@s.whatsapp.net"


class FakeGateway:
    """Records calls; events are pushed by tests through ``sink``."""

    def __init__(self, credentials: bool = False, fail_open: bool = False) -> None:
        self.credentials = credentials
        self.fail_open = fail_open
        self.sink = None
        self.calls: list[str] = []
        self.downloads: list[tuple[dict, dict]] = []
        self.sent: list[tuple[str, str]] = []
        self.media = b"media-bytes"
        self.media_error: Exception | None = None
        self._identity: str | None = None

    @property
    def identity(self) -> str | None:
        return self._identity

    def has_credentials(self) -> bool:
        return self.credentials

    async def open(self, sink) -> None:
        self.calls.append("open")
        self.sink = sink
        if self.fail_open:
            raise ConnectionError("gateway unreachable")

    async def end(self) -> None:
        self.calls.append("end")

    async def logout(self) -> None:
        self.calls.append("logout")
        self.credentials = False

    async def save_credentials(self) -> None:
        self.calls.append("save_credentials")
        self.credentials = True

    async def download_media(self, key: dict, message: dict) -> bytes:
        self.downloads.append((key, message))
        if self.media_error is not None:
            raise self.media_error
        return self.media

    async def send_text(self, chat_id: str, text: str) -> str | None:
        self.sent.append((chat_id, text))
        return "SENT-1"

    def authenticate(self) -> ConnectionOpened:
        self._identity = ACCOUNT
        return ConnectionOpened(ACCOUNT)


class FlakyStore(InMemoryStore):
    """InMemoryStore whose n-th upsert calls (1-based) fail."""

    def __init__(self, fail_calls: set[int] | None = None, fail_collections: set[str] | None = None) -> None:
        super().__init__()
        self.fail_calls = fail_calls or set()
        self.fail_collections = fail_collections or set()
        self.attempts = 0

    async def upsert(self, collection, rows, on_conflict="id"):
        self.attempts += 1
        if self.attempts in self.fail_calls or collection in self.fail_collections:
            raise StoreError(f"simulated failure on call {self.attempts}")
        await super().upsert(collection, rows, on_conflict)


def raw_message(
    message_id: str,
    remote_jid: str = PEER,
    *,
    text: str | None = "hello",
    from_me: bool = False,
    timestamp: Any = 1700000000,
    push_name: str | None = None,
    participant: str | None = None,
    message: dict | None = None,
) -> dict:
    """Gateway message payload; ``message`` overrides the text body."""
    key: dict[str, Any] = {"id": message_id, "remoteJid": remote_jid, "fromMe": from_me}
    if participant:
        key["participant"] = participant
    if message is None:
        message = {"conversation": text} if text is not None else {}
    raw: dict[str, Any] = {"key": key, "message": message, "messageTimestamp": timestamp}
    if push_name:
        raw["pushName"] = push_name
    return raw


def make_record(message_id: str, chat_id: str = PEER, timestamp: int = 1700000000000) -> MessageRecord:
    return MessageRecord(
        id=message_id,
        chat_id=chat_id,
        sender_id=chat_id,
        content=f"text {message_id}",
        timestamp=timestamp,
        from_me=False,
        type="text",
        has_media=False,
        media_meta=None,
    )
