"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, Response

from wabridge.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from wabridge.observability.logging import get_logger
from wabridge.sync.context import SyncContext, build_context
from wabridge.whatsapp.gateway import load_gateway

from .routers import public
from .routes import chats, session

logger = get_logger(__name__)


def create_app(context: SyncContext | None = None) -> FastAPI:
    """Create the FastAPI app around a sync context.

    Args:
        context: Pre-built context (tests). If None, the lifespan builds one
            from WABRIDGE_GATEWAY and STORE_BACKEND.

    Returns:
        Configured FastAPI application. The context is started on startup
        (resuming a stored session, if any) and shut down on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ctx = context if context is not None else build_context(load_gateway())
        app.state.sync_context = ctx
        await ctx.start()
        logger.info("sync context started")
        try:
            yield
        finally:
            await ctx.shutdown()
            logger.info("sync context stopped")

    app = FastAPI(
        title="WhatsApp Bridge",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    if context is not None:
        app.state.sync_context = context

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    app.include_router(public.router)
    app.include_router(session.router)
    app.include_router(chats.router)

    return app
