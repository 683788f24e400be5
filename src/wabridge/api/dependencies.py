"""Request dependencies shared by the routes."""

from fastapi import HTTPException, Request

from wabridge.sync.context import SyncContext


def get_sync_context(request: Request) -> SyncContext:
    """Sync context attached to the app by create_app / lifespan."""
    context = getattr(request.app.state, "sync_context", None)
    if context is None:
        raise HTTPException(status_code=503, detail="sync context not ready")
    return context
