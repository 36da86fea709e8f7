"""Owner of the single WhatsApp transport session.

The supervisor opens the session, consumes its event stream in order, keeps
``ConnectionState`` current, persists credentials, mirrors state into the
connection record and reconnects a bounded number of times after non-logout
closes. Nothing outside this module mutates the session handle or the state.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable, Optional
from uuid import UUID

import segno

from zapbot.logging_config import get_logger
from zapbot.services.alert_service import alert_critical
from zapbot.services.auth_store import FileAuthStore
from zapbot.services.broadcast_service import EVENT_CONNECTION_STATUS, EVENT_QR, EventBroadcaster
from zapbot.services.store_service import ContactStore, PersistenceFailure
from zapbot.services.transport.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    DeviceIdentity,
    MessageReceived,
    Transport,
    TransportDisconnect,
    TransportEvent,
    TransportSession,
)

logger = get_logger("session_supervisor")

DEFAULT_MAX_RECONNECT_ATTEMPTS = 5
DEFAULT_RECONNECT_DELAY_SECONDS = 5.0

InboundHandler = Callable[[MessageReceived], Awaitable[None]]


class NotConnectedError(Exception):
    def __init__(self, message: str = "WhatsApp não está conectado"):
        self.message = message
        super().__init__(message)


class SessionStartError(Exception):
    pass


class StopOutcome(str, Enum):
    DISCONNECTED = "disconnected"
    NOT_CONNECTED = "not_connected"


@dataclass
class ConnectionState:
    connected: bool = False
    device: Optional[DeviceIdentity] = None
    last_qr_payload: Optional[str] = None
    reconnect_attempts: int = 0

    def snapshot(self) -> dict:
        return {
            "connected": self.connected,
            "device": self.device.to_dict() if self.device else None,
        }


def render_qr(payload: str, scale: int = 8) -> str:
    """Render a pairing payload as a PNG data URI the UI can show directly."""
    return segno.make_qr(payload).png_data_uri(scale=scale)


class SessionSupervisor:
    def __init__(
        self,
        transport: Transport,
        auth_store: FileAuthStore,
        store: ContactStore,
        broadcaster: EventBroadcaster,
        *,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
        reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        qr_scale: int = 8,
    ):
        self.transport = transport
        self.auth_store = auth_store
        self.store = store
        self.broadcaster = broadcaster
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_delay_seconds = reconnect_delay_seconds
        self.qr_scale = qr_scale

        self._state = ConnectionState()
        self._session: Optional[TransportSession] = None
        self._connection_id: Optional[UUID] = None
        self._consumer_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._background: set[asyncio.Task] = set()
        self._inbound_handler: Optional[InboundHandler] = None
        self._start_lock = asyncio.Lock()
        self._stopped = False

    # === READ-ONLY VIEWS ===

    @property
    def state(self) -> ConnectionState:
        return replace(self._state)

    @property
    def is_live(self) -> bool:
        return self._session is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def snapshot(self) -> dict:
        return self._state.snapshot()

    def on_message(self, handler: InboundHandler) -> None:
        self._inbound_handler = handler

    # === LIFECYCLE ===

    async def restore(self) -> None:
        """Re-attach to the most recent connection record so upserts keep hitting one row."""
        try:
            last = await asyncio.to_thread(self.store.get_last_connection)
        except PersistenceFailure:
            return
        if last:
            self._connection_id = last.id
            logger.info("Connection record restored", extra={"context": {"connection_id": str(last.id)}})

    async def start(self) -> bool:
        """Open a session unless one is live. Returns False when nothing was started."""
        async with self._start_lock:
            if self._session is not None:
                return False

            self._stopped = False
            try:
                credentials = await asyncio.to_thread(self.auth_store.load)
                session = await self.transport.open_session(credentials)
            except Exception as e:
                logger.error(
                    "Failed to start WhatsApp session",
                    extra={"context": {"error": str(e), "attempts": self._state.reconnect_attempts}},
                )
                self._schedule_reconnect(reason="start_failed")
                raise SessionStartError(str(e)) from e

            self._session = session
            self._consumer_task = asyncio.create_task(self._consume(session))
            logger.info("WhatsApp session started", extra={"context": {"resumed": credentials is not None}})
            return True

    async def stop(self) -> StopOutcome:
        """Log out and forget everything. Calling it with no live session is a no-op."""
        self._stopped = True
        self._cancel_reconnect()

        session = self._session
        if session is None:
            self._state.reconnect_attempts = 0
            return StopOutcome.NOT_CONNECTED

        self._session = None
        consumer, self._consumer_task = self._consumer_task, None
        try:
            await session.logout()
        except Exception as e:
            logger.warning(f"Transport logout failed, clearing local state anyway: {e}")
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()

        self._state = ConnectionState()
        if self._connection_id is not None:
            try:
                await asyncio.to_thread(self.store.delete_connection, self._connection_id)
            except PersistenceFailure:
                pass
            self._connection_id = None

        await asyncio.to_thread(self.auth_store.clear)
        self.broadcaster.publish(EVENT_CONNECTION_STATUS, self.snapshot())
        logger.info("WhatsApp session logged out")
        return StopOutcome.DISCONNECTED

    async def shutdown(self) -> None:
        """Process exit: release the connection but keep credentials for the next start."""
        self._stopped = True
        self._cancel_reconnect()
        session, self._session = self._session, None
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            self._consumer_task = None
        if session is not None:
            await session.close()
        await self.drain()

    async def drain(self) -> None:
        """Wait for in-flight inbound handlers and background jobs."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def send(self, conversation_id: str, text: str):
        session = self._session
        if session is None or not self._state.connected:
            raise NotConnectedError()
        return await session.send_text(conversation_id, text)

    # === EVENT HANDLING ===

    async def _consume(self, session: TransportSession) -> None:
        try:
            async for event in session.events():
                if session is not self._session:
                    break
                await self.handle_event(event)
                if isinstance(event, ConnectionUpdate) and event.connection == "close":
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Transport event stream failed", extra={"context": {"error": str(e)}})
            if session is self._session:
                await self._on_close(TransportDisconnect(logged_out=False))

    async def handle_event(self, event: TransportEvent) -> None:
        """Apply one transport event. Errors are logged and never escape."""
        try:
            if isinstance(event, ConnectionUpdate):
                await self._on_connection_update(event)
            elif isinstance(event, CredentialsUpdate):
                await asyncio.to_thread(self.auth_store.save, event.credentials)
            elif isinstance(event, MessageReceived):
                self._dispatch_inbound(event)
        except Exception as e:
            logger.error(
                "Failed to handle transport event",
                extra={"context": {"event": type(event).__name__, "error": str(e)}},
            )

    def _dispatch_inbound(self, event: MessageReceived) -> None:
        if self._inbound_handler is None:
            logger.warning("Inbound message dropped: no handler registered")
            return
        self._spawn(self._inbound_handler(event))

    async def _on_connection_update(self, update: ConnectionUpdate) -> None:
        if update.qr:
            self._state.last_qr_payload = render_qr(update.qr, self.qr_scale)
            self.broadcaster.publish(EVENT_QR, self._state.last_qr_payload)
            await self._persist_state()
            logger.info("QR code generated and published")

        if update.connection == "close":
            await self._on_close(TransportDisconnect.classify(update.status_code))
        elif update.connection == "open":
            await self._on_open()

    async def _on_open(self) -> None:
        session = self._session
        self._state.reconnect_attempts = 0
        self._state.connected = True
        self._state.device = DeviceIdentity.from_user(session.user if session else None)
        self._state.last_qr_payload = None
        await self._persist_state()
        self.broadcaster.publish(EVENT_CONNECTION_STATUS, self.snapshot())
        logger.info("WhatsApp connection open", extra={"context": self.snapshot()})

    async def _on_close(self, disconnect: TransportDisconnect) -> None:
        session, self._session = self._session, None
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Failed to close transport session: {e}")

        logger.info(
            "WhatsApp connection closed",
            extra={"context": {"status_code": disconnect.status_code, "logged_out": disconnect.logged_out}},
        )
        if disconnect.logged_out:
            self._state.reconnect_attempts = 0
        else:
            self._schedule_reconnect(reason=f"closed:{disconnect.status_code}")

        self._state.connected = False
        self._state.device = None
        await self._persist_state()
        self.broadcaster.publish(EVENT_CONNECTION_STATUS, self.snapshot())

    async def _persist_state(self) -> None:
        state = self._state
        try:
            self._connection_id = await asyncio.to_thread(
                self.store.upsert_connection,
                self._connection_id,
                is_connected=state.connected,
                device_name=state.device.name if state.device else None,
                device_number=state.device.number if state.device else None,
                qr_code=state.last_qr_payload,
                auth_file=str(self.auth_store.directory),
            )
        except PersistenceFailure:
            pass

    # === RECONNECTION ===

    def _schedule_reconnect(self, reason: str) -> bool:
        if self._stopped:
            return False

        if self._state.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error(
                "Reconnect attempts exhausted, manual connect required",
                extra={"context": {"attempts": self._state.reconnect_attempts, "reason": reason}},
            )
            self._state.reconnect_attempts = 0
            self._spawn(alert_critical("WhatsApp reconnect attempts exhausted", {"reason": reason}))
            return False

        self._state.reconnect_attempts += 1
        attempt = self._state.reconnect_attempts
        logger.info(
            f"Reconnect attempt {attempt} of {self.max_reconnect_attempts} in {self.reconnect_delay_seconds}s",
            extra={"context": {"reason": reason}},
        )
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())
        return True

    async def _reconnect_after_delay(self) -> None:
        await asyncio.sleep(self.reconnect_delay_seconds)
        if self._stopped:
            return
        try:
            await self.start()
        except SessionStartError:
            pass

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task
