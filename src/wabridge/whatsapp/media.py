"""Media metadata encoding for storage, and decoding for later download."""

import base64
from typing import Any

from .models import MediaMetadata

_BINARY_FIELDS = ("mediaKey", "fileEncSha256", "fileSha256", "iv")


def _b64(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        # Some gateways already hand out base64 text
        return value or None
    if isinstance(value, (list, tuple)):
        value = bytes(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii") if value else None
    raise TypeError(f"unsupported binary field type: {type(value).__name__}")


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def encode_media_metadata(content: dict[str, Any]) -> MediaMetadata:
    """Build storable metadata from a raw media payload (imageMessage etc.).

    Binary fields are base64-encoded; anything missing becomes None.
    """
    return MediaMetadata(
        url=_optional_str(content.get("url")),
        media_key=_b64(content.get("mediaKey")),
        mimetype=_optional_str(content.get("mimetype")),
        file_enc_sha256=_b64(content.get("fileEncSha256")),
        file_sha256=_b64(content.get("fileSha256")),
        file_length=_optional_int(content.get("fileLength")),
        direct_path=_optional_str(content.get("directPath")),
        iv=_b64(content.get("iv")),
    )


def decode_media_metadata(meta: dict[str, Any]) -> dict[str, Any]:
    """Rebuild a gateway media payload from stored metadata.

    Binary fields are decoded back to bytes and null fields are dropped, which
    is what the gateway's download call expects.
    """
    payload: dict[str, Any] = {}
    for name, value in meta.items():
        if value is None:
            continue
        if name in _BINARY_FIELDS:
            payload[name] = base64.b64decode(value)
        else:
            payload[name] = value
    return payload
