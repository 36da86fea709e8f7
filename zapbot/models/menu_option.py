import uuid

from sqlalchemy import Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from zapbot.database import Base


class MenuOption(Base):
    __tablename__ = "menu_options"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True))
