"""Exceptions raised by the synchronization engine."""

from typing import List, Optional


class SyncEngineError(Exception):
    """Base class for synchronization engine errors."""
    pass


class PermissionDeniedError(SyncEngineError, PermissionError):
    """Raised when no writable handle to the project directory can be obtained."""
    pass


class PatchError(SyncEngineError):
    """Raised when a source file does not have the shape the patcher expects."""

    def __init__(self, message: str, file: Optional[str] = None, anchor: Optional[str] = None):
        """Initialize the error.

        Args:
            message: Description of the problem
            file: Project-relative path of the file being patched
            anchor: The block or pattern that could not be located
        """
        super().__init__(message)
        self.file = file
        self.anchor = anchor


class ConfigValidationError(SyncEngineError, ValueError):
    """Raised when provider or model records fail validation before any I/O."""

    def __init__(self, errors: List[str]):
        """Initialize with the list of validation messages."""
        super().__init__("; ".join(errors) or "Invalid configuration")
        self.errors = list(errors)


class ConcurrentModificationError(SyncEngineError):
    """Raised when a file keeps changing between read and write."""
    pass


class ArtifactNotFoundError(SyncEngineError, FileNotFoundError):
    """Raised when an artifact that must already exist is absent."""
    pass
