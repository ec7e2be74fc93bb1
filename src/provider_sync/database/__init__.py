"""Database package for Provider Sync."""

from .database import (
    DatabaseManager,
    init_database,
    close_database
)

from .models import (
    Base,
    CapabilityHandleModel,
    CapabilityRecord
)

from .operations import (
    CapabilityRepository,
    get_capability_repository
)

__all__ = [
    # Database management
    "DatabaseManager",
    "init_database",
    "close_database",

    # Models
    "Base",
    "CapabilityHandleModel",
    "CapabilityRecord",

    # Repositories
    "CapabilityRepository",
    "get_capability_repository"
]
