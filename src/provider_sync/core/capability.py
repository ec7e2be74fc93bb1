"""Directory capability handles and their persisted store."""

import asyncio
import hashlib
import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from sqlalchemy.exc import SQLAlchemyError

from .errors import PermissionDeniedError
from ..database.database import DatabaseManager
from ..database.models import CapabilityRecord
from ..database.operations import get_capability_repository
from ..utils.logging import get_logger


class AccessMode(str, Enum):
    """Access level requested on a directory."""
    READ = "read"
    READWRITE = "readwrite"


class PermissionState(str, Enum):
    """Result of querying a handle's permission."""
    GRANTED = "granted"
    PROMPT = "prompt"
    DENIED = "denied"


PermissionPrompter = Callable[["DirectoryHandle", AccessMode], Awaitable[bool]]


async def deny_prompt(handle: "DirectoryHandle", mode: AccessMode) -> bool:
    """Prompter that never grants access."""
    return False


async def allow_if_accessible(handle: "DirectoryHandle", mode: AccessMode) -> bool:
    """Prompter that grants whatever the operating system allows."""
    return handle.os_allows(mode)


def content_hash(content: Optional[str]) -> Optional[str]:
    """SHA-256 of file content, or None for a missing file."""
    if content is None:
        return None
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class DirectoryHandle:
    """Revocable, permission-scoped reference to a project directory.

    A handle starts without grants. Reading requires a ``read`` grant and
    writing a ``readwrite`` grant; both are obtained through
    :meth:`request_permission`. All paths passed to the I/O helpers are
    relative to the handle's root and may not escape it.
    """

    def __init__(self, path: Union[str, Path], name: Optional[str] = None):
        """Initialize the handle.

        Args:
            path: Directory the handle refers to
            name: Display name, defaults to the directory name
        """
        self.path = Path(path).expanduser().resolve()
        self.name = name or self.path.name
        self._granted: Set[AccessMode] = set()
        self._revoked = False

    def __repr__(self) -> str:
        """Debug representation."""
        return f"DirectoryHandle(path={str(self.path)!r}, granted={sorted(self._granted)})"

    def os_allows(self, mode: AccessMode) -> bool:
        """Whether the operating system permits ``mode`` on the directory."""
        flags = os.R_OK | os.X_OK
        if AccessMode(mode) == AccessMode.READWRITE:
            flags |= os.W_OK
        return self.path.is_dir() and os.access(self.path, flags)

    def grant(self, mode: AccessMode) -> None:
        """Record a user grant for ``mode``."""
        mode = AccessMode(mode)
        self._revoked = False
        self._granted.add(mode)
        if mode == AccessMode.READWRITE:
            self._granted.add(AccessMode.READ)

    def has_grant(self, mode: AccessMode) -> bool:
        """Whether ``mode`` has been granted and not revoked."""
        return not self._revoked and AccessMode(mode) in self._granted

    def revoke(self) -> None:
        """Withdraw every grant; later queries report ``denied``."""
        self._revoked = True
        self._granted.clear()

    async def query_permission(self, mode: AccessMode) -> PermissionState:
        """Report the current permission state without prompting."""
        mode = AccessMode(mode)
        if self._revoked or not self.os_allows(mode):
            return PermissionState.DENIED
        if mode in self._granted:
            return PermissionState.GRANTED
        return PermissionState.PROMPT

    async def request_permission(
        self,
        mode: AccessMode,
        prompter: PermissionPrompter = deny_prompt
    ) -> bool:
        """Query the permission and ask ``prompter`` when a prompt is needed.

        Returns:
            True when ``mode`` is granted afterwards
        """
        state = await self.query_permission(mode)
        if state == PermissionState.GRANTED:
            return True
        if state == PermissionState.DENIED:
            return False
        if await prompter(self, AccessMode(mode)):
            self.grant(mode)
            return True
        return False

    def resolve(self, relative_path: str) -> Path:
        """Absolute path for ``relative_path`` inside the handle's root."""
        target = (self.path / relative_path).resolve()
        if target != self.path and self.path not in target.parents:
            raise PermissionDeniedError(f"Path escapes project directory: {relative_path}")
        return target

    def _require(self, mode: AccessMode) -> None:
        if not self.has_grant(mode):
            raise PermissionDeniedError(
                f"No {mode.value} permission for {self.path}"
            )

    async def _run(self, func: Callable[[], Any]) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, func)

    async def exists(self, relative_path: str) -> bool:
        """Whether a file exists under the root."""
        self._require(AccessMode.READ)
        target = self.resolve(relative_path)
        return await self._run(target.is_file)

    async def read_text(self, relative_path: str) -> Optional[str]:
        """Read a UTF-8 file byte-exactly; None when it does not exist."""
        self._require(AccessMode.READ)
        target = self.resolve(relative_path)

        def _read() -> Optional[str]:
            try:
                return target.read_bytes().decode("utf-8")
            except FileNotFoundError:
                return None

        return await self._run(_read)

    async def write_text(self, relative_path: str, content: str) -> None:
        """Write a UTF-8 file, creating parent directories."""
        self._require(AccessMode.READWRITE)
        target = self.resolve(relative_path)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content.encode("utf-8"))

        await self._run(_write)

    async def remove(self, relative_path: str) -> bool:
        """Delete a file; returns False when it was already absent."""
        self._require(AccessMode.READWRITE)
        target = self.resolve(relative_path)

        def _remove() -> bool:
            try:
                target.unlink()
                return True
            except FileNotFoundError:
                return False

        return await self._run(_remove)


class CapabilityStore:
    """Caches, persists and revalidates directory handles by key.

    Storage failures never raise: they are logged and reported as ``None`` or
    ``False`` so callers fall back to asking the user for a fresh grant.
    """

    def __init__(
        self,
        db_manager: Optional[DatabaseManager] = None,
        prompter: Optional[PermissionPrompter] = None
    ):
        """Initialize the store.

        Args:
            db_manager: Database used to persist handles; memory only when None
            prompter: Coroutine asked to grant access when a handle needs it
        """
        self.db_manager = db_manager
        self.prompter = prompter or deny_prompt
        self.logger = get_logger(self.__class__.__name__)
        self._cache: Dict[str, DirectoryHandle] = {}

    async def grant(
        self,
        key: str,
        path: Union[str, Path],
        mode: AccessMode = AccessMode.READWRITE,
        metadata: Optional[Dict[str, Any]] = None
    ) -> DirectoryHandle:
        """Record a fresh user grant for ``path`` and persist it.

        Raises:
            PermissionDeniedError: If the directory is missing or the
                operating system refuses ``mode``
        """
        handle = DirectoryHandle(path)
        if not handle.os_allows(mode):
            raise PermissionDeniedError(f"Cannot grant {AccessMode(mode).value} access to {path}")

        handle.grant(mode)
        self._cache[key] = handle
        await self.persist(key, handle, metadata)
        self.logger.info("Directory access granted", key=key, path=str(handle.path))
        return handle

    async def persist(
        self,
        key: str,
        handle: DirectoryHandle,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Store ``handle`` under ``key`` with its display name and a timestamp."""
        self._cache[key] = handle
        if self.db_manager is None:
            return False

        mode = AccessMode.READWRITE if handle.has_grant(AccessMode.READWRITE) else AccessMode.READ
        stored_metadata = {
            "name": handle.name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        }
        try:
            with self.db_manager.session_scope() as session:
                get_capability_repository(session).upsert(
                    key, str(handle.path), mode.value, handle.name, stored_metadata
                )
            return True
        except SQLAlchemyError as e:
            self.logger.warning("Failed to persist directory handle", key=key, error=str(e))
            return False

    async def _restore(self, key: str) -> Optional[DirectoryHandle]:
        if self.db_manager is None:
            return None
        try:
            with self.db_manager.session_scope() as session:
                model = get_capability_repository(session).get(key)
                record = CapabilityRecord.from_model(model) if model else None
        except SQLAlchemyError as e:
            self.logger.warning("Failed to restore directory handle", key=key, error=str(e))
            return None

        if record is None:
            return None

        cached = self._cache.get(key)
        if cached is not None and str(cached.path) == record.path:
            return cached
        return DirectoryHandle(record.path, record.name)

    async def acquire(
        self,
        key: str,
        mode: AccessMode = AccessMode.READWRITE
    ) -> Optional[DirectoryHandle]:
        """Return a live handle permitted for ``mode``, or None.

        The persisted handle is tried first, then the in-memory cache. A
        handle failing revalidation is purged from both before returning.
        """
        handle = await self._restore(key)
        if handle is not None:
            if await self.revalidate(handle, mode, key=key):
                self._cache[key] = handle
                return handle
            return None

        cached = self._cache.get(key)
        if cached is not None and await self.revalidate(cached, mode, key=key):
            return cached
        return None

    async def revalidate(
        self,
        handle: DirectoryHandle,
        mode: AccessMode,
        key: Optional[str] = None
    ) -> bool:
        """Query and, when needed, request permission for ``mode``.

        On failure the handle is removed from persistence and from the cache.
        """
        try:
            granted = await handle.request_permission(mode, self.prompter)
        except Exception as e:
            self.logger.warning("Permission request failed", path=str(handle.path), error=str(e))
            granted = False

        if not granted:
            keys = {k for k, cached in self._cache.items() if cached is handle}
            if key:
                keys.add(key)
            for stale_key in keys:
                await self.remove(stale_key)
            self.logger.info(
                "Directory handle no longer permitted",
                path=str(handle.path),
                mode=AccessMode(mode).value
            )
        return granted

    async def remove(self, key: str) -> bool:
        """Forget the handle stored under ``key``."""
        removed = self._cache.pop(key, None) is not None
        if self.db_manager is None:
            return removed
        try:
            with self.db_manager.session_scope() as session:
                return get_capability_repository(session).delete(key) or removed
        except SQLAlchemyError as e:
            self.logger.warning("Failed to remove directory handle", key=key, error=str(e))
            return False

    async def list_handles(self) -> List[CapabilityRecord]:
        """Describe every known handle."""
        if self.db_manager is not None:
            try:
                with self.db_manager.session_scope() as session:
                    return [
                        CapabilityRecord.from_model(model)
                        for model in get_capability_repository(session).list_all()
                    ]
            except SQLAlchemyError as e:
                self.logger.warning("Failed to list directory handles", error=str(e))
                return []

        return [
            CapabilityRecord(key=key, path=str(handle.path), name=handle.name)
            for key, handle in sorted(self._cache.items())
        ]

    async def clear(self) -> bool:
        """Drop all cached and persisted handles."""
        self._cache.clear()
        if self.db_manager is None:
            return True
        try:
            with self.db_manager.session_scope() as session:
                get_capability_repository(session).clear()
            return True
        except SQLAlchemyError as e:
            self.logger.warning("Failed to clear directory handles", error=str(e))
            return False
