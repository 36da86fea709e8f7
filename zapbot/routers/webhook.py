"""Events pushed by the WhatsApp bridge gateway."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from zapbot.config import settings
from zapbot.container import Services, get_services
from zapbot.logging_config import get_logger
from zapbot.schemas.transport import BridgeEventRequest, BridgeEventResponse
from zapbot.services.transport.bridge import BridgeTransport

logger = get_logger("routers.webhook")

router = APIRouter(tags=["transport"])


def _get_request_webhook_secret(request: Request) -> Optional[str]:
    header_secret = request.headers.get("X-Webhook-Secret")
    if header_secret:
        return header_secret.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def _require_webhook_secret(request: Request) -> None:
    expected = (settings.webhook_secret or "").strip()
    if not expected:
        return
    if _get_request_webhook_secret(request) != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")


@router.post("/transport/events", response_model=BridgeEventResponse)
async def transport_events(
    event: BridgeEventRequest,
    request: Request,
    services: Services = Depends(get_services),
):
    _require_webhook_secret(request)

    transport = services.transport
    if not isinstance(transport, BridgeTransport):
        return BridgeEventResponse(success=False, message="Transport does not accept pushed events")

    accepted = transport.dispatch(event)
    if not accepted:
        return BridgeEventResponse(success=True, accepted=0, message="Ignored")
    return BridgeEventResponse(success=True, accepted=accepted)
