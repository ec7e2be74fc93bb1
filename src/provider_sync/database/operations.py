"""Database operations and repository classes."""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from .models import CapabilityHandleModel
from ..utils.logging import get_logger


logger = get_logger("database.operations")


class CapabilityRepository:
    """Repository for persisted capability handles."""

    def __init__(self, session: Session):
        """Bind the repository to a session."""
        self.session = session

    def get(self, key: str) -> Optional[CapabilityHandleModel]:
        """Get a stored handle by key."""
        return self.session.get(CapabilityHandleModel, key)

    def upsert(
        self,
        key: str,
        path: str,
        mode: str,
        name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> CapabilityHandleModel:
        """Insert or replace the handle stored under ``key``."""
        handle = self.get(key)
        if handle is None:
            handle = CapabilityHandleModel(key=key)
            self.session.add(handle)

        handle.path = path
        handle.mode = mode
        handle.name = name
        handle.handle_metadata = metadata or {}
        self.session.flush()

        logger.debug("Capability handle stored", key=key, path=path, mode=mode)
        return handle

    def delete(self, key: str) -> bool:
        """Delete a stored handle; returns whether one existed."""
        handle = self.get(key)
        if handle is None:
            return False
        self.session.delete(handle)
        self.session.flush()
        return True

    def list_all(self) -> List[CapabilityHandleModel]:
        """All stored handles ordered by key."""
        return self.session.query(CapabilityHandleModel).order_by(CapabilityHandleModel.key).all()

    def clear(self) -> int:
        """Delete every stored handle and return how many were removed."""
        return self.session.query(CapabilityHandleModel).delete()


def get_capability_repository(session: Session) -> CapabilityRepository:
    """Get capability repository instance."""
    return CapabilityRepository(session)
