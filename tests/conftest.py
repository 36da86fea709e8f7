import asyncio
from datetime import datetime, timezone
from typing import Optional
from unittest.mock import Mock
from uuid import uuid4

import pytest

from zapbot.services.broadcast_service import EventBroadcaster
from zapbot.services.context_service import ContextStore
from zapbot.services.store_service import (
    ConnectionRecord,
    ContactRecord,
    MenuEntry,
    PersistenceFailure,
    PromptRecord,
    replace_department_tag,
)
from zapbot.services.transport.base import Transport, TransportSession

_CLOSED = object()


class FakeStore:
    """In-memory stand-in for ContactStore with the same method surface."""

    def __init__(self):
        self.contacts: dict[str, ContactRecord] = {}
        self.messages: list[dict] = []
        self.menu: list[MenuEntry] = []
        self.prompts: dict = {}
        self.manual: set = set()
        self.connections: dict = {}
        self.fail_on: set[str] = set()

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise PersistenceFailure(operation, RuntimeError("database unavailable"))

    # setup helpers

    def add_option(self, title: str, prompt: Optional[str] = None, order: Optional[int] = None) -> MenuEntry:
        option = MenuEntry(id=uuid4(), title=title, order=order if order is not None else len(self.menu) + 1)
        self.menu.append(option)
        if prompt is not None:
            self.prompts[option.id] = PromptRecord(id=uuid4(), menu_option_id=option.id, content=prompt)
        return option

    def add_contact(self, phone: str, *, manual: bool = False, tags: Optional[list[str]] = None) -> ContactRecord:
        contact = ContactRecord(id=uuid4(), phone=phone, name=phone, tags=tags or [], is_manual_service=manual)
        self.contacts[phone] = contact
        if manual:
            self.manual.add(contact.id)
        return contact

    def bot_messages(self, contact_id) -> list[str]:
        return [m["content"] for m in self.messages if m["contact_id"] == contact_id and m["sender_type"] == "bot"]

    # ContactStore surface

    def get_or_create_contact(self, phone: str, name: Optional[str] = None):
        self._check("get_or_create_contact")
        if phone in self.contacts:
            return self.contacts[phone], False
        contact = ContactRecord(id=uuid4(), phone=phone, name=name or phone, tags=["Novo Contato"])
        self.contacts[phone] = contact
        return contact, True

    def is_manual_service(self, contact_id) -> bool:
        self._check("is_manual_service")
        return contact_id in self.manual

    def touch_contact(self, contact_id, at=None) -> None:
        self._check("touch_contact")

    def set_department_tag(self, contact_id, department: str) -> list[str]:
        self._check("set_department_tag")
        for contact in self.contacts.values():
            if contact.id == contact_id:
                contact.tags = replace_department_tag(contact.tags, department)
                return list(contact.tags)
        raise PersistenceFailure("set_department_tag", LookupError(contact_id))

    def save_message(self, contact_id, content, sender_type, created_at=None):
        self._check("save_message")
        message_id = uuid4()
        self.messages.append(
            {
                "id": message_id,
                "contact_id": contact_id,
                "content": content,
                "sender_type": sender_type,
                "created_at": created_at or datetime.now(timezone.utc),
            }
        )
        return message_id

    def count_messages(self, contact_id) -> int:
        self._check("count_messages")
        return sum(1 for m in self.messages if m["contact_id"] == contact_id)

    def list_menu_options(self) -> list[MenuEntry]:
        self._check("list_menu_options")
        return sorted(self.menu, key=lambda option: option.order)

    def get_prompt_for_option(self, menu_option_id):
        self._check("get_prompt_for_option")
        return self.prompts.get(menu_option_id)

    def upsert_connection(self, connection_id, **fields):
        self._check("upsert_connection")
        connection_id = connection_id or uuid4()
        self.connections[connection_id] = fields
        return connection_id

    def delete_connection(self, connection_id) -> None:
        self._check("delete_connection")
        self.connections.pop(connection_id, None)

    def get_last_connection(self):
        self._check("get_last_connection")
        if not self.connections:
            return None
        connection_id, fields = list(self.connections.items())[-1]
        return ConnectionRecord(id=connection_id, is_connected=fields.get("is_connected", False))


class FakeSession(TransportSession):
    def __init__(self, user: Optional[dict] = None):
        self._user = user
        self._queue: asyncio.Queue = asyncio.Queue()
        self.sent: list[tuple[str, str]] = []
        self.logged_out = False
        self.closed = False
        self.send_error: Optional[Exception] = None

    @property
    def user(self):
        return self._user

    def push(self, event) -> None:
        self._queue.put_nowait(event)

    async def events(self):
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def send_text(self, conversation_id: str, text: str):
        if self.send_error:
            raise self.send_error
        self.sent.append((conversation_id, text))
        return {"status": "sent"}

    async def logout(self) -> None:
        self.logged_out = True
        await self.close()

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)


class FakeTransport(Transport):
    def __init__(self, user: Optional[dict] = None):
        self.user = user or {"id": "5511988887777:3@s.whatsapp.net", "name": "Loja Centro"}
        self.sessions: list[FakeSession] = []
        self.credentials_seen: list = []
        self.failures_left = 0

    async def open_session(self, credentials):
        self.credentials_seen.append(credentials)
        if self.failures_left > 0:
            self.failures_left -= 1
            raise ConnectionError("gateway unreachable")
        session = FakeSession(self.user)
        self.sessions.append(session)
        return session


class RecordingSender:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.error: Optional[Exception] = None

    async def __call__(self, conversation_id: str, text: str):
        if self.error:
            raise self.error
        self.sent.append((conversation_id, text))

    def texts(self, conversation_id: Optional[str] = None) -> list[str]:
        return [text for jid, text in self.sent if conversation_id is None or jid == conversation_id]


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def contexts():
    return ContextStore(max_history=200)


@pytest.fixture
def broadcaster():
    return EventBroadcaster()


@pytest.fixture
def transport():
    return FakeTransport()
