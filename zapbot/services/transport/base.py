"""Transport ABCs: the single WhatsApp connection the rest of the app talks through.

A ``Transport`` opens ``TransportSession`` objects. A session delivers its events
in order through ``events()`` and exposes the send/logout primitives. The
supervisor is the only caller of ``open_session``.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, AsyncIterator, Optional, Union

GROUP_JID_SUFFIX = "@g.us"
USER_JID_SUFFIX = "@s.whatsapp.net"


class DisconnectReason(IntEnum):
    """Close status codes reported by WhatsApp Web multi-device gateways."""

    LOGGED_OUT = 401
    FORBIDDEN = 403
    TIMED_OUT = 408
    MULTIDEVICE_MISMATCH = 411
    CONNECTION_CLOSED = 428
    CONNECTION_REPLACED = 440
    BAD_SESSION = 500
    UNAVAILABLE_SERVICE = 503
    RESTART_REQUIRED = 515


class TransportDisconnect(Exception):
    def __init__(self, logged_out: bool, status_code: Optional[int] = None):
        self.logged_out = logged_out
        self.status_code = status_code
        super().__init__(f"Transport closed (status={status_code}, logged_out={logged_out})")

    @classmethod
    def classify(cls, status_code: Optional[int]) -> "TransportDisconnect":
        return cls(logged_out=status_code == DisconnectReason.LOGGED_OUT, status_code=status_code)


@dataclass(frozen=True)
class DeviceIdentity:
    name: str
    number: str

    @classmethod
    def from_user(cls, user: Optional[dict]) -> "DeviceIdentity":
        # user ids look like "5511999999999:12@s.whatsapp.net"
        user = user or {}
        raw_id = user.get("id") or ""
        number = raw_id.split(":")[0].split("@")[0]
        return cls(name=user.get("name") or "Desconhecido", number=number or "Desconhecido")

    def to_dict(self) -> dict:
        return {"name": self.name, "number": self.number}


@dataclass(frozen=True)
class ConnectionUpdate:
    connection: Optional[str] = None  # connecting, open, close
    qr: Optional[str] = None
    status_code: Optional[int] = None
    user: Optional[dict] = None


@dataclass(frozen=True)
class CredentialsUpdate:
    credentials: dict = field(default_factory=dict)


@dataclass(frozen=True)
class MessageReceived:
    conversation_id: str
    text: Optional[str] = None
    from_self: bool = False
    sender_display_name: Optional[str] = None
    timestamp_seconds: Optional[int] = None
    message_id: Optional[str] = None

    @property
    def is_group(self) -> bool:
        return is_group_jid(self.conversation_id)

    @property
    def phone(self) -> str:
        return phone_from_jid(self.conversation_id)


TransportEvent = Union[ConnectionUpdate, CredentialsUpdate, MessageReceived]


def is_group_jid(jid: Optional[str]) -> bool:
    return bool(jid) and jid.endswith(GROUP_JID_SUFFIX)


def phone_from_jid(jid: str) -> str:
    return jid.split("@")[0]


def jid_from_number(number: str) -> str:
    if "@" in number:
        return number
    return f"{number}{USER_JID_SUFFIX}"


class TransportSession(ABC):
    """One live connection. Events are yielded in delivery order, never concurrently."""

    @property
    @abstractmethod
    def user(self) -> Optional[dict]:
        """Identity of the linked device once the connection is open."""

    @abstractmethod
    def events(self) -> AsyncIterator[TransportEvent]:
        """Yield transport events until the session is closed."""

    @abstractmethod
    async def send_text(self, conversation_id: str, text: str) -> Any:
        """Send a plain text message to a conversation."""

    @abstractmethod
    async def logout(self) -> None:
        """Unlink the device. The session is unusable afterwards."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection without unlinking. Safe to call multiple times."""


class Transport(ABC):
    @abstractmethod
    async def open_session(self, credentials: Optional[dict]) -> TransportSession:
        """Open a new session, resuming from stored credentials when given."""

    async def aclose(self) -> None:
        """Release transport-wide resources."""
