import asyncio
from datetime import datetime, timezone
from typing import Optional

from zapbot.logging_config import get_logger
from zapbot.services.broadcast_service import EVENT_MESSAGE, EventBroadcaster
from zapbot.services.context_service import KeyedLocks
from zapbot.services.conversation_router import ConversationRouter, RouteOutcome
from zapbot.services.store_service import ContactRecord, ContactStore
from zapbot.services.transport.base import MessageReceived

logger = get_logger("ingest_service")

SENDER_CONTACT = "contact"


def message_timestamp(message: MessageReceived) -> datetime:
    if message.timestamp_seconds:
        return datetime.fromtimestamp(message.timestamp_seconds, tz=timezone.utc)
    return datetime.now(timezone.utc)


def should_ingest(message: MessageReceived) -> bool:
    """Groups and echoes of our own sends never enter the pipeline."""
    return not message.is_group and not message.from_self


class IngestService:
    """Inbound message -> contact -> stored message -> router -> UI observers."""

    def __init__(
        self,
        store: ContactStore,
        router: ConversationRouter,
        broadcaster: EventBroadcaster,
        locks: Optional[KeyedLocks] = None,
    ):
        self.store = store
        self.router = router
        self.broadcaster = broadcaster
        self.locks = locks if locks is not None else KeyedLocks()

    async def on_inbound_message(self, message: MessageReceived) -> Optional[RouteOutcome]:
        if not should_ingest(message):
            return None

        # Held across persistence and routing: two messages of one conversation never interleave.
        async with self.locks.hold(message.conversation_id):
            try:
                contact = await self._store_inbound(message)
            except Exception as e:
                logger.error(
                    "Failed to ingest message",
                    extra={"context": {"conversation_id": message.conversation_id, "error": str(e)}},
                )
                return None

            outcome = await self.router.handle(message, contact)

        logger.info(
            "Message routed",
            extra={
                "context": {
                    "conversation_id": message.conversation_id,
                    "contact_id": str(contact.id),
                    "action": outcome.action.value,
                }
            },
        )
        self.broadcaster.publish(
            EVENT_MESSAGE,
            {
                "from": message.conversation_id,
                "content": message.text,
                "timestamp": message.timestamp_seconds,
                "contact": contact.to_dict(),
            },
        )
        return outcome

    async def _store_inbound(self, message: MessageReceived) -> ContactRecord:
        contact, created = await asyncio.to_thread(
            self.store.get_or_create_contact,
            message.phone,
            message.sender_display_name,
        )
        if created:
            logger.info("New contact created", extra={"context": {"contact_id": str(contact.id)}})

        await asyncio.to_thread(
            self.store.save_message,
            contact.id,
            message.text,
            SENDER_CONTACT,
            message_timestamp(message),
        )
        await asyncio.to_thread(self.store.touch_contact, contact.id)
        return contact
