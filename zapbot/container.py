"""Wiring of the long-lived service objects, one set per process."""

from dataclasses import dataclass

from starlette.requests import HTTPConnection

from zapbot.config import Settings
from zapbot.services.ai_responder import AIResponder
from zapbot.services.auth_store import FileAuthStore
from zapbot.services.broadcast_service import EventBroadcaster
from zapbot.services.context_service import ContextStore
from zapbot.services.conversation_router import ConversationRouter
from zapbot.services.ingest_service import IngestService
from zapbot.services.llm import OpenAIProvider
from zapbot.services.session_supervisor import SessionSupervisor
from zapbot.services.store_service import ContactStore
from zapbot.services.transport import BridgeTransport, Transport


@dataclass
class Services:
    transport: Transport
    store: ContactStore
    broadcaster: EventBroadcaster
    supervisor: SessionSupervisor
    contexts: ContextStore
    router: ConversationRouter
    ingest: IngestService


def build_services(settings: Settings, session_factory) -> Services:
    store = ContactStore(session_factory)
    broadcaster = EventBroadcaster()
    transport = BridgeTransport(
        settings.bridge_url,
        session_id=settings.bridge_session_id,
        webhook_url=f"{settings.public_base_url.rstrip('/')}/transport/events",
        token=settings.bridge_token,
    )
    supervisor = SessionSupervisor(
        transport,
        FileAuthStore(settings.auth_dir),
        store,
        broadcaster,
        max_reconnect_attempts=settings.max_reconnect_attempts,
        reconnect_delay_seconds=settings.reconnect_delay_seconds,
        qr_scale=settings.qr_scale,
    )
    responder = AIResponder(
        OpenAIProvider(
            settings.openai_api_key,
            default_model=settings.openai_model,
            timeout_seconds=settings.openai_timeout_seconds,
        ),
        temperature=settings.openai_temperature,
    )
    contexts = ContextStore(max_history=settings.max_conversation_history)
    router = ConversationRouter(store, responder, supervisor.send, contexts)
    ingest = IngestService(store, router, broadcaster)
    supervisor.on_message(ingest.on_inbound_message)

    return Services(
        transport=transport,
        store=store,
        broadcaster=broadcaster,
        supervisor=supervisor,
        contexts=contexts,
        router=router,
        ingest=ingest,
    )


def get_services(connection: HTTPConnection) -> Services:
    return connection.app.state.services
