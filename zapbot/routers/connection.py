from fastapi import APIRouter, Depends, HTTPException, status

from zapbot.container import Services, get_services
from zapbot.logging_config import get_logger
from zapbot.schemas.connection import ConnectResponse, SendRequest, SendResponse, StatusResponse
from zapbot.services.session_supervisor import NotConnectedError, SessionStartError, StopOutcome
from zapbot.services.transport.base import jid_from_number

logger = get_logger("routers.connection")

router = APIRouter(tags=["whatsapp"])


@router.post("/connect", response_model=ConnectResponse)
async def connect(services: Services = Depends(get_services)):
    """Start the WhatsApp session; calling it again while live is harmless."""
    logger.info("Connect requested")
    try:
        started = await services.supervisor.start()
    except SessionStartError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Erro ao iniciar conexão: {e}",
        )

    if started:
        return ConnectResponse(status="connecting", message="Iniciando conexão")
    return ConnectResponse(status="already_connected", message="WhatsApp já está conectado")


@router.post("/disconnect", response_model=ConnectResponse)
async def disconnect(services: Services = Depends(get_services)):
    logger.info("Disconnect requested")
    outcome = await services.supervisor.stop()
    if outcome == StopOutcome.NOT_CONNECTED:
        return ConnectResponse(status="not_connected", message="WhatsApp não está conectado")
    return ConnectResponse(status="disconnected", message="WhatsApp desconectado com sucesso")


@router.get("/status", response_model=StatusResponse)
async def get_status(services: Services = Depends(get_services)):
    return StatusResponse(**services.supervisor.snapshot())


@router.post("/send", response_model=SendResponse)
async def send_message(request: SendRequest, services: Services = Depends(get_services)):
    jid = jid_from_number(request.number.strip())
    try:
        await services.supervisor.send(jid, request.message)
    except NotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except Exception as e:
        logger.error("Failed to send message", extra={"context": {"jid": jid, "error": str(e)}})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Erro ao enviar mensagem: {e}",
        )

    logger.info("Message sent", extra={"context": {"jid": jid}})
    return SendResponse(status="sent", message="Mensagem enviada com sucesso")
