"""Synchronization engine: capability handles, transformation and file patching."""

from .errors import (
    SyncEngineError,
    PermissionDeniedError,
    PatchError,
    ConfigValidationError,
    ConcurrentModificationError,
    ArtifactNotFoundError
)
from .capability import (
    AccessMode,
    PermissionState,
    DirectoryHandle,
    CapabilityStore,
    allow_if_accessible,
    deny_prompt
)
from .transformer import ConfigTransformer, ExternalConfig, ValidationResult
from .artifacts import ArtifactKind
from .sync_engine import FileSyncEngine, SyncResult

__all__ = [
    # Errors
    "SyncEngineError",
    "PermissionDeniedError",
    "PatchError",
    "ConfigValidationError",
    "ConcurrentModificationError",
    "ArtifactNotFoundError",

    # Capability handles
    "AccessMode",
    "PermissionState",
    "DirectoryHandle",
    "CapabilityStore",
    "allow_if_accessible",
    "deny_prompt",

    # Transformation
    "ConfigTransformer",
    "ExternalConfig",
    "ValidationResult",

    # Synchronization
    "ArtifactKind",
    "FileSyncEngine",
    "SyncResult"
]
