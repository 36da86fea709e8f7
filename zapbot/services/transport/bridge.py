"""HTTP bridge to a WhatsApp Web multi-device gateway.

Outbound calls (open, send, logout) go to the gateway REST API. Inbound events
are posted by the gateway to ``POST /transport/events`` and pushed into the
live session's queue by ``BridgeTransport.dispatch``.
"""

import asyncio
from typing import Any, AsyncIterator, Optional

import httpx

from zapbot.logging_config import get_logger
from zapbot.schemas.transport import BridgeEventRequest
from zapbot.services.transport.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    MessageReceived,
    Transport,
    TransportEvent,
    TransportSession,
)

logger = get_logger("transport.bridge")

_CLOSED = object()


def _extract_text(message: Optional[dict]) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    text = message.get("conversation")
    if not text:
        extended = message.get("extendedTextMessage")
        if isinstance(extended, dict):
            text = extended.get("text")
    if isinstance(text, str):
        return text
    return None


def _extract_status_code(data: dict) -> Optional[int]:
    code = data.get("statusCode")
    if code is None:
        last = data.get("lastDisconnect") or {}
        error = last.get("error") if isinstance(last, dict) else None
        if isinstance(error, dict):
            output = error.get("output") or {}
            code = output.get("statusCode") if isinstance(output, dict) else None
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def _coerce_timestamp(value: Any) -> Optional[int]:
    if isinstance(value, dict):
        # protobuf Long serialised as {"low": ..., "high": ...}
        value = value.get("low")
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_bridge_event(request: BridgeEventRequest) -> list[TransportEvent]:
    """Translate a gateway payload into transport events; unknown events yield nothing."""
    data = request.data or {}

    if request.event == "connection.update":
        return [
            ConnectionUpdate(
                connection=data.get("connection"),
                qr=data.get("qr"),
                status_code=_extract_status_code(data),
                user=data.get("user") if isinstance(data.get("user"), dict) else None,
            )
        ]

    if request.event == "creds.update":
        credentials = data.get("creds") if isinstance(data.get("creds"), dict) else data
        return [CredentialsUpdate(credentials=dict(credentials))]

    if request.event == "messages.upsert":
        events: list[TransportEvent] = []
        for raw in data.get("messages") or []:
            key = raw.get("key") or {}
            remote_jid = key.get("remoteJid")
            if not remote_jid:
                continue
            events.append(
                MessageReceived(
                    conversation_id=remote_jid,
                    text=_extract_text(raw.get("message")),
                    from_self=bool(key.get("fromMe")),
                    sender_display_name=raw.get("pushName"),
                    timestamp_seconds=_coerce_timestamp(raw.get("messageTimestamp")),
                    message_id=key.get("id"),
                )
            )
        return events

    logger.debug(f"Ignoring bridge event: {request.event}")
    return []


class BridgeSession(TransportSession):
    def __init__(self, transport: "BridgeTransport", session_id: str):
        self._transport = transport
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._user: Optional[dict] = None
        self._closed = False

    @property
    def user(self) -> Optional[dict]:
        return self._user

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, event: TransportEvent) -> None:
        if self._closed:
            return
        if isinstance(event, ConnectionUpdate) and event.user:
            self._user = event.user
        self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[TransportEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def send_text(self, conversation_id: str, text: str) -> dict:
        response = await self._transport.request(
            "POST",
            f"/sessions/{self.session_id}/messages",
            json={"jid": conversation_id, "text": text},
        )
        return response.json() if response.content else {}

    async def logout(self) -> None:
        try:
            await self._transport.request("DELETE", f"/sessions/{self.session_id}")
        finally:
            await self.close()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._transport.forget(self)


class BridgeTransport(Transport):
    def __init__(
        self,
        base_url: str,
        *,
        session_id: str = "default",
        webhook_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session_id = session_id
        self.webhook_url = webhook_url
        self.token = token
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None
        self._session: Optional[BridgeSession] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.token:
                headers["Authorization"] = f"Bearer {self.token}"
            self._client = httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=self.timeout)
        return self._client

    async def request(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self._get_client().request(method, path, **kwargs)
        logger.debug(f"Bridge {method} {path}: status={response.status_code}")
        response.raise_for_status()
        return response

    async def open_session(self, credentials: Optional[dict]) -> BridgeSession:
        payload: dict[str, Any] = {"credentials": credentials or None}
        if self.webhook_url:
            payload["webhook_url"] = self.webhook_url
        await self.request("POST", f"/sessions/{self.session_id}", json=payload)

        session = BridgeSession(self, self.session_id)
        self._session = session
        logger.info("Bridge session opened", extra={"context": {"session_id": self.session_id}})
        return session

    def forget(self, session: BridgeSession) -> None:
        if self._session is session:
            self._session = None

    def dispatch(self, request: BridgeEventRequest) -> int:
        """Feed a gateway event to the live session. Returns number of events accepted."""
        session = self._session
        if session is None:
            logger.warning("Bridge event without live session", extra={"context": {"event": request.event}})
            return 0
        if request.session_id and request.session_id != session.session_id:
            logger.warning(
                "Bridge event for unknown session",
                extra={"context": {"event": request.event, "session_id": request.session_id}},
            )
            return 0

        events = parse_bridge_event(request)
        for event in events:
            session.feed(event)
        return len(events)

    async def aclose(self) -> None:
        if self._session is not None:
            await self._session.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
