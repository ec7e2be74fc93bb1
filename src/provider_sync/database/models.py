"""Database models for Provider Sync."""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, JSON, String, Text
from sqlalchemy.orm import declarative_base
from pydantic import BaseModel, ConfigDict, Field


Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# SQLAlchemy Models (Database Tables)

class CapabilityHandleModel(Base):
    """Persisted directory capability granted by the user."""

    __tablename__ = "capability_handles"

    key = Column(String(100), primary_key=True)
    path = Column(Text, nullable=False)
    mode = Column(String(20), nullable=False, default="readwrite")
    name = Column(String(255), nullable=True)
    handle_metadata = Column("metadata", JSON, nullable=True)
    stored_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


# Pydantic Models (API/Validation)

class CapabilityRecord(BaseModel):
    """Stored capability as returned to callers."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    path: str
    mode: str = "readwrite"
    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    stored_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, model: CapabilityHandleModel) -> "CapabilityRecord":
        """Build a record from its table row."""
        return cls(
            key=model.key,
            path=model.path,
            mode=model.mode,
            name=model.name,
            metadata=model.handle_metadata or {},
            stored_at=model.stored_at,
        )
