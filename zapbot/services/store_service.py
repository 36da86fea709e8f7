"""Relational store access for contacts, messages, menu, prompts and the connection row."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from zapbot.logging_config import get_logger
from zapbot.models import Connection, Contact, MenuOption, Message, Prompt
from zapbot.models.contact import DEPARTMENT_TAG_PREFIX, NEW_CONTACT_TAG

logger = get_logger("store_service")


class PersistenceFailure(Exception):
    def __init__(self, operation: str, error: Exception):
        self.operation = operation
        self.error = error
        super().__init__(f"{operation} failed: {error}")


@dataclass
class ContactRecord:
    id: UUID
    phone: str
    name: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    is_manual_service: bool = False

    @classmethod
    def from_model(cls, contact: Contact) -> "ContactRecord":
        return cls(
            id=contact.id,
            phone=contact.phone,
            name=contact.name,
            tags=list(contact.tags or []),
            is_manual_service=bool(contact.is_manual_service),
        )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "phone": self.phone,
            "name": self.name,
            "tags": list(self.tags),
            "is_manual_service": self.is_manual_service,
        }


@dataclass(frozen=True)
class MenuEntry:
    id: UUID
    title: str
    order: int = 0


@dataclass(frozen=True)
class PromptRecord:
    id: UUID
    menu_option_id: UUID
    content: str


@dataclass(frozen=True)
class ConnectionRecord:
    id: UUID
    is_connected: bool
    device_name: Optional[str] = None
    device_number: Optional[str] = None
    qr_code: Optional[str] = None


def replace_department_tag(tags: list[str], department: str) -> list[str]:
    """Drop every ``dept:`` tag and append the new one, keeping other tags in order."""
    kept = [tag for tag in tags or [] if not tag.startswith(DEPARTMENT_TAG_PREFIX)]
    return kept + [f"{DEPARTMENT_TAG_PREFIX}{department}"]


class ContactStore:
    """Short-lived session per operation; every SQLAlchemy error becomes PersistenceFailure."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Store operation failed: {operation}", extra={"context": {"error": str(e)}})
            raise PersistenceFailure(operation, e) from e
        finally:
            db.close()

    # === CONTACTS ===

    def get_or_create_contact(self, phone: str, name: Optional[str] = None) -> tuple[ContactRecord, bool]:
        """Find contact by phone or create it tagged as a new contact."""
        with self._session("get_or_create_contact") as db:
            contact = db.query(Contact).filter(Contact.phone == phone).first()
            created = False
            if not contact:
                contact = Contact(
                    phone=phone,
                    name=name or phone,
                    tags=[NEW_CONTACT_TAG],
                    is_manual_service=False,
                    created_at=datetime.now(timezone.utc),
                )
                db.add(contact)
                db.flush()
                created = True
            return ContactRecord.from_model(contact), created

    def is_manual_service(self, contact_id: UUID) -> bool:
        with self._session("is_manual_service") as db:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            return bool(contact and contact.is_manual_service)

    def touch_contact(self, contact_id: UUID, at: Optional[datetime] = None) -> None:
        with self._session("touch_contact") as db:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            if contact:
                contact.last_message_at = at or datetime.now(timezone.utc)

    def set_department_tag(self, contact_id: UUID, department: str) -> list[str]:
        with self._session("set_department_tag") as db:
            contact = db.query(Contact).filter(Contact.id == contact_id).first()
            if not contact:
                raise PersistenceFailure("set_department_tag", LookupError(f"contact {contact_id} not found"))
            contact.tags = replace_department_tag(list(contact.tags or []), department)
            return list(contact.tags)

    # === MESSAGES ===

    def save_message(
        self,
        contact_id: UUID,
        content: Optional[str],
        sender_type: str,
        created_at: Optional[datetime] = None,
    ) -> UUID:
        with self._session("save_message") as db:
            message = Message(
                contact_id=contact_id,
                content=content,
                sender_type=sender_type,
                created_at=created_at or datetime.now(timezone.utc),
            )
            db.add(message)
            db.flush()
            return message.id

    def count_messages(self, contact_id: UUID) -> int:
        with self._session("count_messages") as db:
            return db.query(Message).filter(Message.contact_id == contact_id).count()

    # === MENU ===

    def list_menu_options(self) -> list[MenuEntry]:
        with self._session("list_menu_options") as db:
            rows = db.query(MenuOption).order_by(MenuOption.order).all()
            return [MenuEntry(id=row.id, title=row.title, order=row.order) for row in rows]

    def get_prompt_for_option(self, menu_option_id: UUID) -> Optional[PromptRecord]:
        """First prompt attached to the option; duplicates are a data problem upstream."""
        with self._session("get_prompt_for_option") as db:
            prompt = (
                db.query(Prompt)
                .filter(Prompt.menu_option_id == menu_option_id)
                .order_by(Prompt.created_at)
                .first()
            )
            if not prompt:
                return None
            return PromptRecord(id=prompt.id, menu_option_id=prompt.menu_option_id, content=prompt.content)

    # === CONNECTION RECORD ===

    def upsert_connection(
        self,
        connection_id: Optional[UUID],
        *,
        is_connected: bool,
        device_name: Optional[str] = None,
        device_number: Optional[str] = None,
        qr_code: Optional[str] = None,
        auth_file: Optional[str] = None,
    ) -> UUID:
        now = datetime.now(timezone.utc)
        with self._session("upsert_connection") as db:
            row = None
            if connection_id:
                row = db.query(Connection).filter(Connection.id == connection_id).first()
            if not row:
                row = Connection(created_at=now)
                db.add(row)
            row.is_connected = is_connected
            row.device_name = device_name
            row.device_number = device_number
            row.qr_code = qr_code
            row.auth_file = auth_file
            row.updated_at = now
            db.flush()
            return row.id

    def delete_connection(self, connection_id: UUID) -> None:
        with self._session("delete_connection") as db:
            db.query(Connection).filter(Connection.id == connection_id).delete()

    def get_last_connection(self) -> Optional[ConnectionRecord]:
        with self._session("get_last_connection") as db:
            row = db.query(Connection).order_by(Connection.updated_at.desc()).first()
            if not row:
                return None
            return ConnectionRecord(
                id=row.id,
                is_connected=bool(row.is_connected),
                device_name=row.device_name,
                device_number=row.device_number,
                qr_code=row.qr_code,
            )
