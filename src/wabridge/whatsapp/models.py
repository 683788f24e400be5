"""Canonical records persisted to the store.

Every field is concrete: absent source values are converted to explicit
``None`` by the normalizer before a record is built, and ``to_row()`` is the
only way a record reaches the store.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Literal

MessageType = Literal[
    "text", "image", "video", "audio", "document", "sticker", "reaction", "protocol"
]

MEDIA_TYPES: tuple[MessageType, ...] = ("image", "video", "audio", "document", "sticker")


class SessionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_SCAN = "awaiting-scan"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class MediaMetadata:
    """Fields needed to fetch media from the gateway later.

    Binary fields are base64 strings.
    """

    url: str | None
    media_key: str | None
    mimetype: str | None
    file_enc_sha256: str | None
    file_sha256: str | None
    file_length: int | None
    direct_path: str | None
    iv: str | None

    def to_row(self) -> dict[str, Any]:
        # Stored with the gateway's own field names so it can be fed back as-is
        return {
            "url": self.url,
            "mediaKey": self.media_key,
            "mimetype": self.mimetype,
            "fileEncSha256": self.file_enc_sha256,
            "fileSha256": self.file_sha256,
            "fileLength": self.file_length,
            "directPath": self.direct_path,
            "iv": self.iv,
        }


@dataclass(frozen=True)
class MessageRecord:
    id: str
    chat_id: str
    sender_id: str
    content: str | None
    timestamp: int  # milliseconds
    from_me: bool
    type: MessageType
    has_media: bool
    media_meta: MediaMetadata | None
    ack: int = 0

    def to_row(self) -> dict[str, Any]:
        row = asdict(self)
        row["media_meta"] = self.media_meta.to_row() if self.media_meta else None
        return row


@dataclass(frozen=True)
class ChatRecord:
    id: str
    display_name: str
    unread_count: int
    is_archived: bool
    last_activity: int  # milliseconds

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionStatusRecord:
    """Singleton row published on every session transition."""

    status: SessionStatus
    identity: str | None
    qr_code: str | None

    def to_row(self) -> dict[str, Any]:
        return {
            "id": 1,
            "status": self.status.value,
            "identity": self.identity,
            "qr_code": self.qr_code,
        }
