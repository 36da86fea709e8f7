from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field


class BridgeEventRequest(BaseModel):
    """Event pushed by the WhatsApp bridge gateway."""

    event: str  # connection.update, creds.update, messages.upsert
    session_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("session_id", "sessionId", "instance"),
    )
    data: dict[str, Any] = Field(default_factory=dict)


class BridgeEventResponse(BaseModel):
    success: bool
    accepted: int = 0
    message: Optional[str] = None
