import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from zapbot.database import Base


class Connection(Base):
    __tablename__ = "whatsapp_connections"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    is_connected = Column(Boolean, nullable=False, default=False)
    device_name = Column(Text)
    device_number = Column(Text)
    qr_code = Column(Text)
    auth_file = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))
