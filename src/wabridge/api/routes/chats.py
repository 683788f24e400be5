"""Chat read routes, media download and text send.

Reads come straight from the store; media bytes and sends go through the
gateway.
"""

import os

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from wabridge.api.dependencies import get_sync_context
from wabridge.infra.store import StoreError
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.sync.context import SyncContext
from wabridge.whatsapp.gateway import GatewayUnavailableError
from wabridge.whatsapp.jid import is_group
from wabridge.whatsapp.media import decode_media_metadata
from wabridge.whatsapp.models import SessionStatus

router = APIRouter(tags=["chats"])

logger = get_logger(__name__)

API_URL = os.environ.get("API_URL", "http://localhost:3000")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


class SendMessageRequest(BaseModel):
    chatId: str = Field(min_length=1)
    message: str = Field(min_length=1)


def _forbid_groups(chat_id: str) -> None:
    if is_group(chat_id):
        raise HTTPException(status_code=403, detail="group chats are not available")


def _format_message(row: dict) -> dict:
    meta = row.get("media_meta") or {}
    return {
        "id": row["id"],
        "body": row.get("content"),
        "timestamp": row["timestamp"],
        "from": row.get("sender_id"),
        "to": row["chat_id"],
        "fromMe": row.get("from_me", False),
        "type": row.get("type"),
        "hasMedia": row.get("has_media", False),
        "mediaUrl": f"{API_URL}/media/{row['chat_id']}/{row['id']}" if row.get("has_media") else None,
        "mimeType": meta.get("mimetype"),
        "ack": row.get("ack", 0),
    }


@router.get("/chats")
async def list_chats(
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    context: SyncContext = Depends(get_sync_context),
) -> dict:
    """Non-archived private chats, most recent activity first."""
    try:
        rows, total = await context.store.list_chats(limit, offset)
    except StoreError:
        logger.exception("chat listing failed")
        raise HTTPException(status_code=500, detail="chat listing failed")

    chats = [
        {
            "id": row["id"],
            "name": row.get("display_name"),
            "lastMessageTime": row.get("last_activity"),
            "unreadCount": row.get("unread_count", 0),
            "isGroup": False,
        }
        for row in rows
    ]
    return {"success": True, "chats": chats, "hasMore": offset + limit < total, "total": total}


@router.get("/chats/{chat_id}/messages")
async def list_messages(
    chat_id: str,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    context: SyncContext = Depends(get_sync_context),
) -> dict:
    """Newest page of a chat's messages, returned oldest first."""
    _forbid_groups(chat_id)
    try:
        rows, total = await context.store.list_messages(chat_id, limit, offset)
    except StoreError:
        logger.exception("message listing failed")
        raise HTTPException(status_code=500, detail="message listing failed")

    rows.sort(key=lambda r: r["timestamp"])
    return {
        "success": True,
        "messages": [_format_message(r) for r in rows],
        "hasMore": offset + limit < total,
        "total": total,
    }


@router.get("/media/{chat_id}/{message_id}")
async def download_media(
    chat_id: str,
    message_id: str,
    context: SyncContext = Depends(get_sync_context),
) -> Response:
    """Fetch a message's media through the gateway using stored metadata."""
    _forbid_groups(chat_id)
    try:
        row = await context.store.get_message(message_id)
    except StoreError:
        logger.exception(
            "media lookup failed",
            extra={"extra_fields": safe_log_context(chat_id=chat_id, message_id=message_id)},
        )
        raise HTTPException(status_code=500, detail="media lookup failed")
    if not row or not row.get("media_meta"):
        raise HTTPException(status_code=404, detail="media not found")

    meta = row["media_meta"]
    message = {f"{row['type']}Message": decode_media_metadata(meta)}
    try:
        content = await context.gateway.download_media({"id": message_id}, message)
    except Exception:
        logger.exception(
            "media download failed",
            extra={"extra_fields": safe_log_context(chat_id=chat_id, message_id=message_id)},
        )
        raise HTTPException(status_code=502, detail="media download failed")

    return Response(content=content, media_type=meta.get("mimetype") or "application/octet-stream")


@router.post("/chats/send")
async def send_message(
    body: SendMessageRequest,
    context: SyncContext = Depends(get_sync_context),
) -> dict:
    """Send a text message to a private chat."""
    _forbid_groups(body.chatId)
    if context.session.session.status is not SessionStatus.CONNECTED:
        raise HTTPException(status_code=400, detail="not connected")

    try:
        message_id = await context.gateway.send_text(body.chatId, body.message)
    except GatewayUnavailableError:
        raise HTTPException(status_code=400, detail="not connected")
    except Exception as exc:
        logger.exception(
            "send failed",
            extra={"extra_fields": safe_log_context(chat_id=body.chatId)},
        )
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, "messageId": message_id}
