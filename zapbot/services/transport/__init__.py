from zapbot.services.transport.base import (
    ConnectionUpdate,
    CredentialsUpdate,
    DeviceIdentity,
    DisconnectReason,
    MessageReceived,
    Transport,
    TransportDisconnect,
    TransportEvent,
    TransportSession,
)
from zapbot.services.transport.bridge import BridgeTransport

__all__ = [
    "BridgeTransport",
    "ConnectionUpdate",
    "CredentialsUpdate",
    "DeviceIdentity",
    "DisconnectReason",
    "MessageReceived",
    "Transport",
    "TransportDisconnect",
    "TransportEvent",
    "TransportSession",
]
