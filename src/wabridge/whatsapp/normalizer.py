"""Gateway message normalizer - raw payload to MessageRecord or discard.

Never raises: a malformed message is logged and discarded so it cannot abort
the batch or notification it arrived in.
"""

from typing import Any

from wabridge.infra.time import now_seconds
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context

from .media import encode_media_metadata
from .models import MEDIA_TYPES, MessageRecord, MessageType

logger = get_logger(__name__)

# Payload key per message type, in classification priority order
_TYPE_KEYS: tuple[tuple[MessageType, str], ...] = (
    ("image", "imageMessage"),
    ("video", "videoMessage"),
    ("audio", "audioMessage"),
    ("document", "documentMessage"),
    ("sticker", "stickerMessage"),
    ("reaction", "reactionMessage"),
    ("protocol", "protocolMessage"),
)

_CAPTION_PLACEHOLDERS = {
    "imageMessage": "[Image]",
    "videoMessage": "[Video]",
    "documentMessage": "[Document]",
}

_WRAPPER_KEYS = (
    "ephemeralMessage",
    "viewOnceMessage",
    "viewOnceMessageV2",
    "viewOnceMessageV2Extension",
    "documentWithCaptionMessage",
)

# protocolMessage.type for "delete for everyone"
PROTOCOL_REVOKE = 0

REVOKED_PLACEHOLDER = "[Message deleted]"


class InvalidMessageError(Exception):
    """Raised when a gateway message lacks the fields a record needs."""

    pass


def unwrap_content(content: dict[str, Any] | None) -> dict[str, Any]:
    """Peel ephemeral/view-once containers off a message payload."""
    content = content or {}
    for _ in range(len(_WRAPPER_KEYS)):
        for key in _WRAPPER_KEYS:
            inner = content.get(key)
            if isinstance(inner, dict) and isinstance(inner.get("message"), dict):
                content = inner["message"]
                break
        else:
            return content
    return content


def classify(content: dict[str, Any]) -> MessageType:
    """Message type by payload shape; plain text when nothing else matches."""
    for message_type, key in _TYPE_KEYS:
        if content.get(key):
            return message_type
    return "text"


def extract_text(content: dict[str, Any]) -> str:
    """Display text for a payload, first match wins. Empty when unrepresentable."""
    if content.get("conversation"):
        return str(content["conversation"])

    extended = content.get("extendedTextMessage") or {}
    if extended.get("text"):
        return str(extended["text"])

    for key, placeholder in _CAPTION_PLACEHOLDERS.items():
        media = content.get(key)
        if media:
            return str(media.get("caption") or placeholder)

    if content.get("audioMessage"):
        return "[Audio]"
    if content.get("stickerMessage"):
        return "[Sticker]"

    protocol = content.get("protocolMessage")
    if protocol and protocol.get("type", PROTOCOL_REVOKE) in (PROTOCOL_REVOKE, "REVOKE"):
        return REVOKED_PLACEHOLDER

    reaction = content.get("reactionMessage")
    if reaction and reaction.get("text"):
        return f"[Reaction: {reaction['text']}]"

    return ""


def message_timestamp_ms(raw_timestamp: Any) -> int:
    """Gateway timestamps are seconds; missing, invalid or zero means now."""
    try:
        seconds = int(float(raw_timestamp))
    except (TypeError, ValueError, OverflowError):
        seconds = 0
    if seconds <= 0:
        seconds = now_seconds()
    return seconds * 1000


def _delivery_ack(status: Any) -> int:
    if isinstance(status, int) and not isinstance(status, bool):
        return status
    if isinstance(status, str) and status.isdigit():
        return int(status)
    return 0


def _build_record(raw: dict[str, Any], chat_id: str) -> MessageRecord | None:
    key = raw.get("key") or {}
    message_id = key.get("id")
    if not message_id or not isinstance(message_id, str):
        raise InvalidMessageError("missing or invalid message id")

    content = unwrap_content(raw.get("message"))
    message_type = classify(content)
    has_media = message_type in MEDIA_TYPES

    media_meta = None
    if has_media:
        media_payload = content.get(f"{message_type}Message")
        if isinstance(media_payload, dict):
            media_meta = encode_media_metadata(media_payload)
        else:
            has_media = False

    text = extract_text(content)
    if not text and not has_media:
        return None

    return MessageRecord(
        id=message_id,
        chat_id=chat_id,
        sender_id=key.get("participant") or key.get("remoteJid") or chat_id,
        content=text or None,
        timestamp=message_timestamp_ms(raw.get("messageTimestamp")),
        from_me=bool(key.get("fromMe")),
        type=message_type,
        has_media=has_media,
        media_meta=media_meta,
        ack=_delivery_ack(raw.get("status")),
    )


def normalize_message(raw: dict[str, Any], chat_id: str) -> MessageRecord | None:
    """Normalize one gateway message.

    Args:
        raw: Gateway message (``key``, ``message``, ``messageTimestamp``,
            ``status``, ``pushName``).
        chat_id: Owning chat JID.

    Returns:
        MessageRecord, or None when the message is discarded (no text and no
        media, or malformed).
    """
    try:
        return _build_record(raw, chat_id)
    except Exception:
        key = raw.get("key") if isinstance(raw, dict) else None
        message_id = key.get("id") if isinstance(key, dict) else None
        logger.exception(
            "message normalization failed - discarded",
            extra={
                "extra_fields": safe_log_context(
                    chat_id=chat_id,
                    message_id=message_id,
                )
            },
        )
        return None
