import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from zapbot.database import Base

DEPARTMENT_TAG_PREFIX = "dept:"
NEW_CONTACT_TAG = "Novo Contato"


class Contact(Base):
    __tablename__ = "whatsapp_contacts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    phone = Column(Text, nullable=False, unique=True)
    name = Column(Text)
    tags = Column(JSONB, nullable=False, default=list)
    is_manual_service = Column(Boolean, nullable=False, default=False)
    last_message_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    messages = relationship("Message", back_populates="contact")
