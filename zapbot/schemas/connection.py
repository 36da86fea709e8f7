from typing import Optional

from pydantic import BaseModel, Field


class DeviceInfo(BaseModel):
    name: str
    number: str


class StatusResponse(BaseModel):
    connected: bool
    device: Optional[DeviceInfo] = None


class ConnectResponse(BaseModel):
    status: str  # connecting, already_connected, disconnected, not_connected
    message: str


class SendRequest(BaseModel):
    number: str = Field(min_length=1)
    message: str = Field(min_length=1)


class SendResponse(BaseModel):
    status: str
    message: str
