from zapbot.schemas.connection import ConnectResponse, SendRequest, SendResponse, StatusResponse
from zapbot.schemas.transport import BridgeEventRequest, BridgeEventResponse

__all__ = [
    "ConnectResponse",
    "SendRequest",
    "SendResponse",
    "StatusResponse",
    "BridgeEventRequest",
    "BridgeEventResponse",
]
