import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from zapbot.database import Base


class Prompt(Base):
    __tablename__ = "prompts"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    menu_option_id = Column(UUID(as_uuid=True), ForeignKey("menu_options.id"))
    title = Column(Text)
    content = Column(Text, nullable=False)
    created_at = Column(TIMESTAMP(timezone=True))
