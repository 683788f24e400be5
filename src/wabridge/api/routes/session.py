"""Session control routes - connect, disconnect, status and pairing QR."""

from fastapi import APIRouter, Depends, Response

from wabridge.api.dependencies import get_sync_context
from wabridge.infra.store import StoreError
from wabridge.observability.logging import get_logger
from wabridge.sync.context import SyncContext
from wabridge.whatsapp.models import SessionStatus

router = APIRouter(tags=["session"])

logger = get_logger(__name__)


@router.post("/session/connect")
async def connect(context: SyncContext = Depends(get_sync_context)) -> dict:
    """Start a manual connect (QR pairing when no credentials are stored).

    A connect while one is already in progress, or while connected, is a no-op.
    """
    await context.session.request_connect(manual=True)
    return {"success": True, "status": context.session.session.status.value}


@router.post("/session/disconnect")
async def disconnect(context: SyncContext = Depends(get_sync_context)) -> dict:
    """Log out and stay disconnected until the next manual connect."""
    await context.session.request_disconnect()
    return {"success": True, "status": context.session.session.status.value}


@router.get("/session/status")
async def status(context: SyncContext = Depends(get_sync_context)) -> dict:
    """Persisted session status, falling back to the in-process view."""
    try:
        row = await context.store.get_session_status()
    except StoreError:
        logger.warning("session status read failed - using in-process status")
        row = None
    if row is None:
        return context.session.session.to_record().to_row()
    return row


@router.get("/qr")
def qr(context: SyncContext = Depends(get_sync_context)) -> Response:
    """Rendered pairing QR (data URL) while a scan is pending.

    Returns:
        200 "ALREADY_CONNECTED" when connected.
        202 "QR_NOT_READY" when no challenge is pending.
        200 data URL otherwise.
    """
    session = context.session.session
    if session.status is SessionStatus.CONNECTED:
        return Response(content="ALREADY_CONNECTED", media_type="text/plain")
    if not session.challenge:
        return Response(status_code=202, content="QR_NOT_READY", media_type="text/plain")
    return Response(content=session.challenge, media_type="text/plain")
