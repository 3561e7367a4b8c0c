from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class StoredState(Base):
    """One JSON document per storage key; the chat store lives under a single key."""

    __tablename__ = "stored_state"

    storage_key: Mapped[str] = mapped_column(String(120), primary_key=True)
    payload_json: Mapped[str] = mapped_column(Text)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
