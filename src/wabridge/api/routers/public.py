"""Public-facing routes."""

from fastapi import APIRouter, Depends, Response

from wabridge.api.dependencies import get_sync_context
from wabridge.sync.context import SyncContext

router = APIRouter()


@router.get("/")
def root() -> Response:
    return Response(content="WhatsApp bridge online", media_type="text/plain")


@router.get("/health")
def health(context: SyncContext = Depends(get_sync_context)) -> dict:
    """Health check endpoint with the current session status."""
    return {"ok": True, "status": context.session.session.to_dict()}
