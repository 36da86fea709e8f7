import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from zapbot.database import Base


class Message(Base):
    __tablename__ = "whatsapp_messages"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contact_id = Column(UUID(as_uuid=True), ForeignKey("whatsapp_contacts.id"), nullable=False)
    content = Column(Text)
    sender_type = Column(Text, nullable=False)  # contact, bot, agent
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)

    contact = relationship("Contact", back_populates="messages")
