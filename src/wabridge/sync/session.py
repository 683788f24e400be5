"""Gateway session lifecycle.

States: disconnected -> connecting -> (awaiting-scan ->) connected ->
disconnected | error. Every transition is published to the store's
session_status row; a failed publish is logged and never undoes the
transition.

Reconnect policy: after a close that is not an explicit logout, and while
stored credentials exist, exactly one reconnect is scheduled after a fixed
delay. A manual connect arms a scan window; when it expires without an
authenticated session the attempt is ended.
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Callable, Coroutine

from wabridge.infra.store import SESSION_STATUS, UpsertStore
from wabridge.infra.time import utc_now
from wabridge.observability.logging import get_logger
from wabridge.observability.redaction import safe_log_context
from wabridge.whatsapp.challenge import render_challenge
from wabridge.whatsapp.gateway import LOGGED_OUT, EventSink, Gateway
from wabridge.whatsapp.models import SessionStatus, SessionStatusRecord

logger = get_logger(__name__)

SCAN_TIMEOUT_SECONDS = float(os.environ.get("SESSION_SCAN_TIMEOUT_SECONDS", "300"))
RECONNECT_DELAY_SECONDS = float(os.environ.get("SESSION_RECONNECT_DELAY_SECONDS", "3"))

_S = SessionStatus

_ALLOWED: dict[SessionStatus, frozenset[SessionStatus]] = {
    _S.DISCONNECTED: frozenset({_S.DISCONNECTED, _S.CONNECTING, _S.CONNECTED, _S.ERROR}),
    _S.CONNECTING: frozenset({_S.AWAITING_SCAN, _S.CONNECTED, _S.DISCONNECTED, _S.ERROR}),
    _S.AWAITING_SCAN: frozenset({_S.AWAITING_SCAN, _S.CONNECTED, _S.DISCONNECTED, _S.ERROR}),
    _S.CONNECTED: frozenset({_S.CONNECTED, _S.DISCONNECTED, _S.ERROR}),
    _S.ERROR: frozenset({_S.ERROR, _S.CONNECTING, _S.CONNECTED, _S.DISCONNECTED}),
}


class InvalidTransitionError(Exception):
    """Raised when a session transition is not allowed from the current state."""

    pass


@dataclass
class Session:
    """Process-wide session aggregate, owned by SessionStateMachine."""

    status: SessionStatus = SessionStatus.DISCONNECTED
    identity: str | None = None
    challenge: str | None = None

    def transition(
        self,
        status: SessionStatus,
        *,
        identity: str | None = None,
        challenge: str | None = None,
    ) -> SessionStatus:
        """Move to ``status``; returns the previous status.

        ``identity`` is kept only when connected, ``challenge`` only while
        awaiting a scan.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        if status not in _ALLOWED[self.status]:
            raise InvalidTransitionError(f"{self.status.value} -> {status.value}")
        previous = self.status
        self.status = status
        self.identity = identity if status is SessionStatus.CONNECTED else None
        self.challenge = challenge if status is SessionStatus.AWAITING_SCAN else None
        return previous

    @property
    def in_progress(self) -> bool:
        return self.status in (SessionStatus.CONNECTING, SessionStatus.AWAITING_SCAN)

    def to_record(self) -> SessionStatusRecord:
        return SessionStatusRecord(status=self.status, identity=self.identity, qr_code=self.challenge)

    def to_dict(self) -> dict:
        return {
            "connected": self.status is SessionStatus.CONNECTED,
            "status": self.status.value,
            "phone": self.identity,
        }


class SessionStateMachine:
    """Drives the gateway connection and publishes every state change."""

    def __init__(
        self,
        gateway: Gateway,
        store: UpsertStore,
        sink: EventSink,
        *,
        scan_timeout: float = SCAN_TIMEOUT_SECONDS,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        render: Callable[[str], str] = render_challenge,
    ) -> None:
        self.session = Session()
        self._gateway = gateway
        self._store = store
        self._sink = sink
        self._scan_timeout = scan_timeout
        self._reconnect_delay = reconnect_delay
        self._render = render
        self._scan_timer: asyncio.Task | None = None
        self._reconnect_timer: asyncio.Task | None = None
        # Cleared by deliberate stops (disconnect, scan expiry, shutdown)
        self._auto_reconnect = True

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_timer is not None and not self._reconnect_timer.done()

    async def request_connect(self, manual: bool = False) -> None:
        """Start a gateway session unless one is already running.

        Without stored credentials only a manual request connects; otherwise
        the machine stays in standby (disconnected).
        """
        if self.session.in_progress or self.session.status is SessionStatus.CONNECTED:
            logger.info(
                "connect ignored - session already active",
                extra={"extra_fields": safe_log_context(status=self.session.status.value)},
            )
            return

        self._auto_reconnect = True
        self._cancel_timers()

        if not manual and not self._gateway.has_credentials():
            logger.info("no stored credentials - standing by for manual connect")
            await self._apply(SessionStatus.DISCONNECTED)
            return

        await self._apply(SessionStatus.CONNECTING)
        try:
            await self._gateway.open(self._sink)
        except Exception:
            logger.exception(
                "gateway connect failed",
                extra={"extra_fields": safe_log_context(manual=manual)},
            )
            await self._apply(SessionStatus.ERROR)
            self._schedule_reconnect(reason=None)
            return

        if manual:
            self._scan_timer = self._spawn(self._expire_scan_window())

    async def request_disconnect(self) -> None:
        """Log out (invalidating credentials) and stay disconnected."""
        if self.session.status is SessionStatus.DISCONNECTED and not self._gateway.has_credentials():
            logger.info("disconnect ignored - no session")
            return

        self._auto_reconnect = False
        self._cancel_timers()
        try:
            await self._gateway.logout()
        except Exception:
            logger.exception("gateway logout failed")
        await self._apply(SessionStatus.DISCONNECTED)

    async def on_challenge(self, challenge: str) -> None:
        try:
            rendered = self._render(challenge)
        except Exception:
            logger.exception("challenge rendering failed - storing raw challenge")
            rendered = challenge
        await self._apply_or_ignore(SessionStatus.AWAITING_SCAN, challenge=rendered)

    async def on_established(self, identity: str | None) -> None:
        self._cancel_scan_timer()
        await self._apply(SessionStatus.CONNECTED, identity=identity or self._gateway.identity)

    async def on_closed(self, reason: int | None) -> None:
        logger.info(
            "gateway connection closed",
            extra={"extra_fields": safe_log_context(reason=reason)},
        )
        self._cancel_scan_timer()
        await self._apply(SessionStatus.DISCONNECTED)
        self._schedule_reconnect(reason)

    async def mark_connected(self) -> None:
        """Mark the session connected once a history sync finishes.

        Skipped while a reconnect is pending: the connection closed mid-sync
        and the scheduled reconnect must still run.
        """
        if self.reconnect_pending:
            logger.info("sync finished after close - keeping scheduled reconnect")
            return
        self._cancel_scan_timer()
        await self._apply(
            SessionStatus.CONNECTED,
            identity=self._gateway.identity or self.session.identity,
        )

    async def shutdown(self) -> None:
        self._auto_reconnect = False
        self._cancel_timers()
        await self._apply(SessionStatus.DISCONNECTED)
        try:
            await self._gateway.end()
        except Exception:
            logger.exception("gateway end failed during shutdown")

    def _schedule_reconnect(self, reason: int | None) -> bool:
        if reason == LOGGED_OUT or not self._auto_reconnect or not self._gateway.has_credentials():
            logger.info(
                "no automatic reconnect - manual connect required",
                extra={"extra_fields": safe_log_context(reason=reason)},
            )
            return False

        self._cancel_reconnect_timer()
        self._reconnect_timer = self._spawn(self._reconnect_later())
        logger.info(
            "reconnect scheduled",
            extra={
                "extra_fields": safe_log_context(reason=reason, delay_s=self._reconnect_delay)
            },
        )
        return True

    async def _reconnect_later(self) -> None:
        await asyncio.sleep(self._reconnect_delay)
        self._reconnect_timer = None
        await self.request_connect(manual=False)

    async def _expire_scan_window(self) -> None:
        await asyncio.sleep(self._scan_timeout)
        self._scan_timer = None
        if self.session.status is SessionStatus.CONNECTED:
            return
        logger.warning(
            "scan window expired - aborting connect attempt",
            extra={"extra_fields": safe_log_context(timeout_s=self._scan_timeout)},
        )
        self._auto_reconnect = False
        try:
            await self._gateway.end()
        except Exception:
            logger.exception("gateway end failed after scan timeout")
        await self._apply(SessionStatus.DISCONNECTED)

    async def _apply(self, status: SessionStatus, **fields: str | None) -> None:
        previous = self.session.transition(status, **fields)
        if previous is not status:
            logger.info(
                "session transition",
                extra={
                    "extra_fields": safe_log_context(**{"from": previous.value, "to": status.value})
                },
            )
        await self._publish()

    async def _apply_or_ignore(self, status: SessionStatus, **fields: str | None) -> None:
        try:
            await self._apply(status, **fields)
        except InvalidTransitionError as exc:
            logger.warning(
                "stale gateway event ignored",
                extra={"extra_fields": safe_log_context(transition=str(exc))},
            )

    async def _publish(self) -> None:
        row = self.session.to_record().to_row()
        row["updated_at"] = utc_now()
        try:
            await self._store.upsert(SESSION_STATUS, [row])
        except Exception as exc:
            logger.error(
                "session status publish failed",
                extra={
                    "extra_fields": safe_log_context(
                        status=self.session.status.value, error=str(exc)
                    )
                },
            )

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro)

    def _cancel_scan_timer(self) -> None:
        _cancel(self._scan_timer)
        self._scan_timer = None

    def _cancel_reconnect_timer(self) -> None:
        _cancel(self._reconnect_timer)
        self._reconnect_timer = None

    def _cancel_timers(self) -> None:
        self._cancel_scan_timer()
        self._cancel_reconnect_timer()


def _cancel(task: asyncio.Task | None) -> None:
    # A timer may be the task currently running this code (reconnect -> connect)
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()
