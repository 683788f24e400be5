"""Helpers for WhatsApp JIDs (``user[:device]@server``)."""

GROUP_SERVER = "g.us"
USER_SERVER = "s.whatsapp.net"
LEGACY_USER_SERVER = "c.us"
STATUS_BROADCAST = "status@broadcast"

_GROUP_MARKER = "@" + GROUP_SERVER


def is_group(jid: str | None) -> bool:
    """True when the JID addresses a multi-party group."""
    return bool(jid) and _GROUP_MARKER in jid


def is_broadcast(jid: str | None) -> bool:
    """True for broadcast lists and the status broadcast endpoint."""
    return bool(jid) and "broadcast" in jid


def is_private_chat(jid: str | None) -> bool:
    """True for one-to-one chats, the only endpoints persisted."""
    return bool(jid) and not is_group(jid) and not is_broadcast(jid)


def local_part(jid: str) -> str:
    """Extract the user part of a JID.

    Args:
        jid: WhatsApp JID (e.g., "5511999999999@s.whatsapp.net")

    Returns:
        User part without suffix (e.g., "5511999999999")
    """
    return jid.split("@")[0]


def normalize_user(jid: str) -> str:
    """Strip device/agent suffixes and map the legacy user server.

    "5511999:12@s.whatsapp.net" -> "5511999@s.whatsapp.net"
    "5511999@c.us"              -> "5511999@s.whatsapp.net"

    Values without a server part are returned unchanged.
    """
    if "@" not in jid:
        return jid
    user, server = jid.split("@", 1)
    user = user.split(":", 1)[0].split("_", 1)[0]
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER
    return f"{user}@{server}"
