"""Live message notifications - one immediate upsert per message."""

import asyncio
import os
from typing import Any

from wabridge.infra.store import CHATS, MESSAGES, UpsertStore
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.whatsapp.contacts import ContactResolver
from wabridge.whatsapp.gateway import APPEND, NOTIFY, MessagesNotified
from wabridge.whatsapp.jid import is_private_chat, normalize_user
from wabridge.whatsapp.normalizer import normalize_message

logger = get_logger(__name__)

# A notification this large is likely a re-import, so yield every N writes
LIVE_PACING_EVERY = int(os.environ.get("LIVE_PACING_EVERY", "50"))
LIVE_PACING_SECONDS = float(os.environ.get("LIVE_PACING_SECONDS", "0.1"))

_HANDLED_KINDS = frozenset({NOTIFY, APPEND})


class LiveIngestionHandler:
    def __init__(
        self,
        store: UpsertStore,
        resolver: ContactResolver,
        *,
        pacing_every: int = LIVE_PACING_EVERY,
        pacing_seconds: float = LIVE_PACING_SECONDS,
    ) -> None:
        self._store = store
        self._resolver = resolver
        self._pacing_every = pacing_every
        self._pacing_seconds = pacing_seconds

    async def handle(self, event: MessagesNotified) -> int:
        """Persist a notification's messages.

        Returns:
            Number of messages written.
        """
        if event.kind not in _HANDLED_KINDS:
            return 0

        paced = len(event.messages) > self._pacing_every
        written = 0
        for index, raw in enumerate(event.messages):
            if paced and index and index % self._pacing_every == 0:
                await asyncio.sleep(self._pacing_seconds)
            try:
                written += await self._handle_one(raw)
            except Exception as exc:
                logger.error(
                    "live message write failed",
                    extra={
                        "extra_fields": safe_log_context(
                            index=index,
                            message_id=_message_id(raw),
                            error=str(exc),
                        )
                    },
                )
        return written

    async def _handle_one(self, raw: dict[str, Any]) -> int:
        key = raw.get("key") or {}
        remote_jid = key.get("remoteJid")
        if not is_private_chat(remote_jid):
            return 0
        chat_id = normalize_user(remote_jid)

        push_name = raw.get("pushName")
        if push_name and not key.get("fromMe") and self._resolver.lookup(chat_id) is None:
            try:
                await self._store.upsert(CHATS, [{"id": chat_id, "display_name": push_name}])
                self._resolver.fill_gaps([(chat_id, push_name)])
            except Exception as exc:
                logger.warning(
                    "chat name hint not saved",
                    extra={"extra_fields": safe_log_context(chat_id=chat_id, error=str(exc))},
                )

        record = normalize_message(raw, chat_id)
        if record is None:
            return 0
        await self._store.upsert(MESSAGES, [record.to_row()])
        return 1


def _message_id(raw: Any) -> str | None:
    key = raw.get("key") if isinstance(raw, dict) else None
    return key.get("id") if isinstance(key, dict) else None
