"""One-shot history snapshot import.

Steps run in order: contacts into the resolver, chats, messages, then the
session is marked connected. Chat and message writes go through the paced
batch writer; a failed batch is logged and the import moves on, since every
write is a keyed upsert and the next snapshot fills any gap.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable

from wabridge.infra.store import CHATS, MESSAGES, UpsertStore
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.whatsapp.contacts import ContactResolver
from wabridge.whatsapp.gateway import HistorySnapshot
from wabridge.whatsapp.jid import is_private_chat, local_part, normalize_user
from wabridge.whatsapp.models import ChatRecord, MessageRecord
from wabridge.whatsapp.normalizer import normalize_message

from .batch_writer import upsert_in_batches
from .session import SessionStateMachine

logger = get_logger(__name__)

CHAT_BATCH_SIZE = 25
CHAT_BATCH_PAUSE_SECONDS = 0.05
MESSAGE_BATCH_SIZE = 50
MESSAGE_BATCH_PAUSE_SECONDS = 0.1

# 2000-01-01T00:00:00Z in ms; anything smaller is a seconds timestamp
MILLIS_THRESHOLD = 946_684_800_000

# Sorts before every real activity timestamp
UNKNOWN_ACTIVITY = 1


def chat_activity_ms(raw_timestamp: Any) -> int:
    """Normalize a chat's conversation timestamp to milliseconds.

    Missing or zero means unknown and maps to UNKNOWN_ACTIVITY.
    """
    try:
        value = int(float(raw_timestamp))
    except (TypeError, ValueError, OverflowError):
        return UNKNOWN_ACTIVITY
    if value <= 0:
        return UNKNOWN_ACTIVITY
    if value < MILLIS_THRESHOLD:
        value *= 1000
    return value


def build_chat(chat: dict[str, Any], resolver: ContactResolver) -> ChatRecord:
    jid = normalize_user(chat["id"])
    return ChatRecord(
        id=jid,
        display_name=resolver.lookup(jid) or chat.get("name") or local_part(jid),
        unread_count=max(0, int(chat.get("unreadCount") or 0)),
        is_archived=bool(chat.get("archived")),
        last_activity=chat_activity_ms(chat.get("conversationTimestamp")),
    )


def push_name_hints(messages: Iterable[dict[str, Any]]) -> list[tuple[str, str]]:
    """(chat jid, push name) for incoming messages that carry one."""
    hints = []
    for message in messages:
        key = message.get("key") or {}
        if not key.get("fromMe") and message.get("pushName") and is_private_chat(key.get("remoteJid")):
            hints.append((key["remoteJid"], message["pushName"]))
    return hints


@dataclass
class SyncReport:
    contacts: int = 0
    chats_written: int = 0
    messages_written: int = 0
    messages_discarded: int = 0
    failed_chat_offsets: list[int] = field(default_factory=list)
    failed_message_offsets: list[int] = field(default_factory=list)


class HistorySyncPipeline:
    """Imports one HistorySnapshot. Safe to run concurrently with itself."""

    def __init__(
        self,
        store: UpsertStore,
        resolver: ContactResolver,
        session: SessionStateMachine,
        *,
        chat_batch_size: int = CHAT_BATCH_SIZE,
        chat_pause_seconds: float = CHAT_BATCH_PAUSE_SECONDS,
        message_batch_size: int = MESSAGE_BATCH_SIZE,
        message_pause_seconds: float = MESSAGE_BATCH_PAUSE_SECONDS,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._session = session
        self._chat_batch_size = chat_batch_size
        self._chat_pause_seconds = chat_pause_seconds
        self._message_batch_size = message_batch_size
        self._message_pause_seconds = message_pause_seconds

    async def run(self, snapshot: HistorySnapshot) -> SyncReport:
        report = SyncReport()
        logger.info(
            "history sync started",
            extra={
                "extra_fields": safe_log_context(
                    contacts=len(snapshot.contacts),
                    chats=len(snapshot.chats),
                    messages=len(snapshot.messages),
                )
            },
        )

        report.contacts = self._resolver.merge(snapshot.contacts)
        self._resolver.fill_gaps(push_name_hints(snapshot.messages))

        chats = self._build_chats(snapshot.chats)
        chat_result = await upsert_in_batches(
            self._store,
            CHATS,
            chats,
            batch_size=self._chat_batch_size,
            pause_seconds=self._chat_pause_seconds,
        )
        report.chats_written = chat_result.written
        report.failed_chat_offsets = chat_result.failed_offsets

        records, report.messages_discarded = self._normalize_messages(snapshot.messages)
        message_result = await upsert_in_batches(
            self._store,
            MESSAGES,
            records,
            batch_size=self._message_batch_size,
            pause_seconds=self._message_pause_seconds,
        )
        report.messages_written = message_result.written
        report.failed_message_offsets = message_result.failed_offsets

        await self._session.mark_connected()

        logger.info(
            "history sync finished",
            extra={
                "extra_fields": safe_log_context(
                    chats_written=report.chats_written,
                    messages_written=report.messages_written,
                    messages_discarded=report.messages_discarded,
                    failed_batches=len(report.failed_chat_offsets)
                    + len(report.failed_message_offsets),
                )
            },
        )
        return report

    def _build_chats(self, chats: Iterable[dict[str, Any]]) -> list[ChatRecord]:
        records = []
        for chat in chats:
            if not is_private_chat(chat.get("id")):
                continue
            try:
                records.append(build_chat(chat, self._resolver))
            except (TypeError, ValueError):
                logger.warning(
                    "malformed chat skipped",
                    extra={"extra_fields": safe_log_context(chat_id=chat.get("id"))},
                )
        return records

    def _normalize_messages(
        self, messages: Iterable[dict[str, Any]]
    ) -> tuple[list[MessageRecord], int]:
        records = []
        discarded = 0
        for message in messages:
            chat_id = _message_chat(message)
            if chat_id is None:
                continue
            record = normalize_message(message, chat_id)
            if record is None:
                discarded += 1
            else:
                records.append(record)
        return records, discarded


def _message_chat(message: dict[str, Any]) -> str | None:
    """Owning chat of a snapshot message, None when it is out of scope."""
    remote_jid = (message.get("key") or {}).get("remoteJid")
    if not is_private_chat(remote_jid):
        return None
    return normalize_user(remote_jid)
