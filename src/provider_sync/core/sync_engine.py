"""Synchronization of provider and model changes into a TaskMaster project."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .artifacts import (
    CATALOG_PATH,
    CRITICAL_KINDS,
    INDEX_PATH,
    PROJECT_CONFIG_PATH,
    REGISTRY_FILES,
    SECRETS_PATH,
    ArtifactKind,
    RegistryFile,
    add_model_mapping,
    class_name,
    env_var_name,
    is_default_manifest,
    is_generated_json,
    js_string,
    load_json_document,
    prefixed_model_id,
    read_model_map,
    read_secrets,
    read_stub_details,
    remove_catalog_bucket,
    remove_model_mapping,
    remove_secret,
    render_stub,
    roles_using,
    set_secret,
    stub_path,
    update_catalog_bucket,
)
from .capability import AccessMode, CapabilityStore, DirectoryHandle, content_hash
from .errors import (
    ArtifactNotFoundError,
    ConcurrentModificationError,
    PatchError,
    PermissionDeniedError,
)
from .patcher import (
    ensure_export_line,
    ensure_import_name,
    ensure_object_entry,
    has_import_block,
    has_object_block,
    remove_export_line,
    remove_import_name,
    remove_object_entry,
)
from .transformer import ConfigTransformer, ExternalConfig
from ..config.schema import Model, Provider, make_provider_key
from ..config.settings import get_settings
from ..performance.async_optimizer import KeyedLockPool, get_lock_pool
from ..utils.logging import get_logger, log_async_execution_time, mask_secret


Edit = Callable[[Optional[str]], Optional[str]]

CREATED = "created"
UPDATED = "updated"
DELETED = "deleted"
UNCHANGED = "unchanged"


@dataclass
class SyncResult:
    """Per-artifact outcome of one engine operation.

    Every artifact lands in exactly one of ``succeeded``, ``failed`` or
    ``warnings``. ``success`` turns False only when validation fails or a
    critical artifact fails.
    """

    operation: str
    provider_key: str
    success: bool = True
    succeeded: List[Dict[str, str]] = field(default_factory=list)
    failed: List[Dict[str, str]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def updated_files(self) -> List[str]:
        """Files created or rewritten."""
        return [item["file"] for item in self.succeeded if item["action"] in (CREATED, UPDATED)]

    @property
    def deleted_files(self) -> List[str]:
        """Files removed."""
        return [item["file"] for item in self.succeeded if item["action"] == DELETED]

    def add_success(self, file: str, action: str) -> None:
        """Record an artifact that was synchronized."""
        self.succeeded.append({"file": file, "action": action})

    def add_failure(self, file: str, error: str) -> None:
        """Record a failed critical artifact."""
        self.failed.append({"file": file, "error": error})
        self.errors.append(f"{file}: {error}")
        self.success = False

    def add_warning(self, message: str) -> None:
        """Record a non-blocking problem."""
        self.warnings.append(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "success": self.success,
            "operation": self.operation,
            "providerKey": self.provider_key,
            "succeeded": list(self.succeeded),
            "failed": list(self.failed),
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "updatedFiles": self.updated_files,
            "deletedFiles": self.deleted_files,
        }


@dataclass
class ProjectImport:
    """Editor records read back from a TaskMaster project.

    ``errors`` holds catalog validation errors; when present no records are
    returned. ``warnings`` lists stubs or manifests that could not be read.
    """

    providers: List[Provider] = field(default_factory=list)
    models: List[Model] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether the catalog could be imported."""
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable summary."""
        return {
            "success": self.success,
            "providersCount": len(self.providers),
            "modelsCount": len(self.models),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


class FileSyncEngine:
    """Applies provider and model changes to the five artifact kinds.

    Each operation acquires a ``readwrite`` handle on the project root, then
    patches the artifacts one after another. A failure in one artifact is
    recorded and the remaining artifacts are still processed; there is no
    rollback. Read-modify-write cycles on the same file are serialized
    through a keyed lock and checked against the file's content hash right
    before writing.
    """

    def __init__(
        self,
        store: CapabilityStore,
        transformer: Optional[ConfigTransformer] = None,
        capability_key: Optional[str] = None,
        lock_pool: Optional[KeyedLockPool] = None,
        server_aliases: Optional[Sequence[str]] = None,
        max_write_attempts: int = 3
    ):
        """Initialize the engine.

        Args:
            store: Source of project directory handles
            transformer: Record to catalog converter and validator
            capability_key: Key of the project handle in ``store``
            lock_pool: Locks serializing edits of the same file
            server_aliases: MCP server names searched in the secrets manifest
            max_write_attempts: Read-modify-write attempts before giving up
                on a file that keeps changing
        """
        settings = get_settings()
        self.store = store
        self.transformer = transformer or ConfigTransformer()
        self.capability_key = capability_key or settings.project.capability_key
        self.lock_pool = lock_pool or get_lock_pool()
        self.server_aliases = tuple(server_aliases or settings.project.mcp_server_aliases)
        self.max_write_attempts = max_write_attempts
        self.logger = get_logger(self.__class__.__name__)

    async def _acquire(self, mode: AccessMode = AccessMode.READWRITE) -> DirectoryHandle:
        handle = await self.store.acquire(self.capability_key, mode)
        if handle is None:
            raise PermissionDeniedError(
                f"No {AccessMode(mode).value} access to the project directory; "
                "grant access to the TaskMaster project again"
            )
        return handle

    async def _patch_file(self, handle: DirectoryHandle, path: str, edit: Edit) -> str:
        """Run one read-modify-write cycle on ``path``.

        ``edit`` receives the current content (None when missing) and returns
        the new content, or None to delete the file.

        Returns:
            One of ``created``, ``updated``, ``deleted`` or ``unchanged``
        """
        async with self.lock_pool.acquire(f"{handle.path}:{path}"):
            for attempt in range(1, self.max_write_attempts + 1):
                current = await handle.read_text(path)
                new = edit(current)
                if new == current:
                    return UNCHANGED

                if content_hash(await handle.read_text(path)) != content_hash(current):
                    self.logger.warning(
                        "File changed during update, retrying",
                        file=path,
                        attempt=attempt
                    )
                    continue

                if new is None:
                    await handle.remove(path)
                    return DELETED
                await handle.write_text(path, new)
                return CREATED if current is None else UPDATED

        raise ConcurrentModificationError(
            f"{path} changed on disk {self.max_write_attempts} times while being updated"
        )

    async def _apply(
        self,
        result: SyncResult,
        handle: DirectoryHandle,
        kind: ArtifactKind,
        path: str,
        edit: Edit
    ) -> None:
        try:
            action = await self._patch_file(handle, path, edit)
        except Exception as e:
            if isinstance(e, PatchError) and e.file is None:
                e.file = path
            if kind in CRITICAL_KINDS:
                result.add_failure(path, str(e))
                self.logger.error(
                    "Artifact update failed",
                    file=path,
                    kind=kind.value,
                    error=str(e),
                    error_type=type(e).__name__
                )
            else:
                result.add_warning(f"{path}: {e}")
                self.logger.warning("Artifact update skipped", file=path, error=str(e))
            return

        result.add_success(path, action)
        self.logger.debug("Artifact synchronized", file=path, action=action)

    def _pre_validate(
        self,
        operation: str,
        provider: Provider,
        models: Sequence[Model],
        existing: Optional[Sequence[Provider]] = None
    ) -> Optional[SyncResult]:
        key = make_provider_key(provider.name)
        validation = self.transformer.validate([provider], list(models))
        errors = list(validation.errors)

        for other in existing or []:
            if other.id != provider.id and make_provider_key(other.name) == key and key:
                errors.append(
                    f"Provider key '{key}' is already used by provider '{other.name}'"
                )

        if not errors:
            return None

        self.logger.warning("Validation failed", operation=operation, errors=errors)
        return SyncResult(operation, key, success=False, errors=errors)

    # Artifact edits

    def _stub_edit(self, provider: Provider, models: Sequence[Model], overwrite: bool) -> Edit:
        key = provider.provider_key

        def _edit(current: Optional[str]) -> Optional[str]:
            if current is not None and not overwrite:
                return current
            model_map = {prefixed_model_id(key, m.model_id): m.model_id for m in models}
            if current is not None:
                try:
                    model_map = {**read_model_map(current), **model_map}
                except PatchError:
                    self.logger.warning("Existing stub has no readable modelMap", provider=key)
            return render_stub(key, provider.name, provider.endpoint, model_map)

        return _edit

    @staticmethod
    def _index_add_edit(provider_key: str) -> Edit:
        def _edit(current: Optional[str]) -> Optional[str]:
            text, _ = ensure_export_line(current or "", class_name(provider_key), provider_key)
            return text

        return _edit

    @staticmethod
    def _index_remove_edit(provider_key: str) -> Edit:
        def _edit(current: Optional[str]) -> Optional[str]:
            if current is None:
                return None
            text, changed = remove_export_line(current, class_name(provider_key), provider_key)
            if changed and not text.strip():
                return None
            return text

        return _edit

    @staticmethod
    def _registry_add_edit(registry: RegistryFile, provider_key: str) -> Edit:
        cls = class_name(provider_key)

        def _edit(current: Optional[str]) -> Optional[str]:
            if current is None:
                raise ArtifactNotFoundError(f"Registry file not found: {registry.path}")
            text = current
            if registry.requires_imports or has_import_block(text):
                text, _ = ensure_import_name(text, cls)
            if registry.requires_providers or has_object_block(text, "PROVIDERS"):
                text, _ = ensure_object_entry(text, "PROVIDERS", provider_key, f"new {cls}()")
            if registry.requires_key_map or has_object_block(text, "keyMap"):
                text, _ = ensure_object_entry(
                    text, "keyMap", provider_key, js_string(env_var_name(provider_key))
                )
            return text

        return _edit

    @staticmethod
    def _registry_remove_edit(registry: RegistryFile, provider_key: str) -> Edit:
        cls = class_name(provider_key)

        def _edit(current: Optional[str]) -> Optional[str]:
            if current is None:
                return None
            text = current
            if registry.requires_key_map or has_object_block(text, "keyMap"):
                text, _ = remove_object_entry(text, "keyMap", provider_key)
            if registry.requires_providers or has_object_block(text, "PROVIDERS"):
                text, _ = remove_object_entry(text, "PROVIDERS", provider_key)
            if registry.requires_imports or has_import_block(text):
                text, _ = remove_import_name(text, cls)
            return text

        return _edit

    @staticmethod
    def _catalog_edit(
        provider_key: str,
        upserts: Sequence[Dict[str, Any]] = (),
        remove_ids: Sequence[str] = (),
        drop_bucket: bool = False
    ) -> Edit:
        def _edit(current: Optional[str]) -> Optional[str]:
            if not drop_bucket:
                return update_catalog_bucket(current, provider_key, upserts, remove_ids)
            if current is None:
                return None
            catalog = load_json_document(current, CATALOG_PATH).data
            if provider_key not in catalog:
                return current
            if len(catalog) == 1 and is_generated_json(current, catalog):
                return None
            return remove_catalog_bucket(current, provider_key)

        return _edit

    def _secrets_edit(
        self,
        provider_key: str,
        api_key: Optional[str],
        clear_missing: bool = True
    ) -> Edit:
        name = env_var_name(provider_key)

        def _edit(current: Optional[str]) -> Optional[str]:
            if api_key:
                return set_secret(current, name, api_key, self.server_aliases)
            if current is None or not clear_missing:
                return current
            manifest = load_json_document(current, SECRETS_PATH).data
            text = remove_secret(current, name, self.server_aliases)
            if text != current and is_generated_json(current, manifest) \
                    and is_default_manifest(load_json_document(text, SECRETS_PATH).data):
                return None
            return text

        return _edit

    # Operations

    async def _add_artifacts(
        self,
        result: SyncResult,
        handle: DirectoryHandle,
        provider: Provider,
        models: Sequence[Model],
        updating: bool
    ) -> None:
        key = provider.provider_key
        await self._apply(result, handle, ArtifactKind.STUB, stub_path(key),
                          self._stub_edit(provider, models, updating))
        await self._apply(result, handle, ArtifactKind.INDEX, INDEX_PATH,
                          self._index_add_edit(key))
        for registry in REGISTRY_FILES:
            await self._apply(result, handle, ArtifactKind.REGISTRY, registry.path,
                              self._registry_add_edit(registry, key))
        descriptors = [
            self.transformer.model_to_descriptor(
                model, prefixed_model_id(key, model.model_id), default_score=0
            )
            for model in models
        ]
        await self._apply(result, handle, ArtifactKind.CATALOG, CATALOG_PATH,
                          self._catalog_edit(key, upserts=descriptors))
        await self._apply(result, handle, ArtifactKind.SECRETS, SECRETS_PATH,
                          self._secrets_edit(key, provider.api_key, clear_missing=updating))

    async def _remove_artifacts(
        self,
        result: SyncResult,
        handle: DirectoryHandle,
        provider_key: str
    ) -> None:
        for role in await self._roles_using(handle, provider_key):
            result.add_warning(
                f"Provider '{provider_key}' is still assigned to the '{role}' role "
                f"in {PROJECT_CONFIG_PATH}"
            )

        await self._apply(result, handle, ArtifactKind.STUB, stub_path(provider_key),
                          lambda current: None)
        await self._apply(result, handle, ArtifactKind.INDEX, INDEX_PATH,
                          self._index_remove_edit(provider_key))
        for registry in REGISTRY_FILES:
            await self._apply(result, handle, ArtifactKind.REGISTRY, registry.path,
                              self._registry_remove_edit(registry, provider_key))
        await self._apply(result, handle, ArtifactKind.CATALOG, CATALOG_PATH,
                          self._catalog_edit(provider_key, drop_bucket=True))
        await self._apply(result, handle, ArtifactKind.SECRETS, SECRETS_PATH,
                          self._secrets_edit(provider_key, None))

    @log_async_execution_time
    async def add_provider(
        self,
        provider: Provider,
        models: Sequence[Model] = (),
        existing: Optional[Sequence[Provider]] = None
    ) -> SyncResult:
        """Create or complete every artifact for a provider.

        An existing stub is left untouched; every other edit is skipped when
        an equivalent entry is already present, so repeated calls are
        harmless.

        Args:
            provider: Provider to synchronize
            models: Models of the provider to put in its catalog bucket
            existing: Other configured providers, checked for key collisions

        Raises:
            PermissionDeniedError: If the project directory is not writable
        """
        failure = self._pre_validate("add_provider", provider, models, existing)
        if failure is not None:
            return failure

        handle = await self._acquire()
        result = SyncResult("add_provider", provider.provider_key)
        await self._add_artifacts(result, handle, provider, models, updating=False)

        self.logger.info(
            "Provider synchronized",
            provider=provider.provider_key,
            api_key=mask_secret(provider.api_key),
            success=result.success,
            failed=len(result.failed)
        )
        return result

    @log_async_execution_time
    async def update_provider(
        self,
        provider: Provider,
        previous: Optional[Provider] = None,
        models: Sequence[Model] = (),
        existing: Optional[Sequence[Provider]] = None
    ) -> SyncResult:
        """Bring a provider's artifacts in line with its edited record.

        The stub is regenerated with the new endpoint while its ``modelMap``
        is kept. When the name change moves the provider to another key, the
        artifacts of the old key are removed and recreated under the new one.

        Raises:
            PermissionDeniedError: If the project directory is not writable
        """
        failure = self._pre_validate("update_provider", provider, models, existing)
        if failure is not None:
            return failure

        handle = await self._acquire()
        key = provider.provider_key
        result = SyncResult("update_provider", key)

        old_key = previous.provider_key if previous is not None else key
        if old_key and old_key != key:
            self.logger.info("Provider key changed", old=old_key, new=key)
            await self._remove_artifacts(result, handle, old_key)

        await self._add_artifacts(result, handle, provider, models, updating=True)
        return result

    @log_async_execution_time
    async def delete_provider(self, provider: Union[Provider, str]) -> SyncResult:
        """Remove every artifact of a provider.

        A missing stub or entry counts as already removed. Roles still
        assigned to the provider produce warnings but do not block.

        Args:
            provider: Provider record or provider key

        Raises:
            PermissionDeniedError: If the project directory is not writable
        """
        key = provider if isinstance(provider, str) else provider.provider_key
        if not key:
            return SyncResult("delete_provider", key, success=False,
                              errors=["Provider key is empty"])

        handle = await self._acquire()
        result = SyncResult("delete_provider", key)
        await self._remove_artifacts(result, handle, key)

        self.logger.info("Provider removed", provider=key, success=result.success)
        return result

    @log_async_execution_time
    async def add_model(self, provider: Provider, model: Model) -> SyncResult:
        """Add a model to its provider's catalog bucket and stub ``modelMap``.

        The catalog id is ``<providerKey>-<modelId>``. The stub and the
        aggregator export are created when missing.

        Raises:
            PermissionDeniedError: If the project directory is not writable
        """
        failure = self._pre_validate("add_model", provider, [model])
        if failure is not None:
            return failure

        handle = await self._acquire()
        key = provider.provider_key
        catalog_id = prefixed_model_id(key, model.model_id)
        result = SyncResult("add_model", key)

        def _stub(current: Optional[str]) -> Optional[str]:
            if current is None:
                return render_stub(key, provider.name, provider.endpoint,
                                   {catalog_id: model.model_id})
            return add_model_mapping(current, catalog_id, model.model_id)

        descriptor = self.transformer.model_to_descriptor(model, catalog_id, default_score=0)
        await self._apply(result, handle, ArtifactKind.CATALOG, CATALOG_PATH,
                          self._catalog_edit(key, upserts=[descriptor]))
        await self._apply(result, handle, ArtifactKind.STUB, stub_path(key), _stub)
        await self._apply(result, handle, ArtifactKind.INDEX, INDEX_PATH,
                          self._index_add_edit(key))

        self.logger.info("Model synchronized", provider=key, model=catalog_id,
                         success=result.success)
        return result

    @log_async_execution_time
    async def delete_model(self, provider: Provider, model: Model) -> SyncResult:
        """Remove a model from the catalog and from the stub's ``modelMap``.

        Raises:
            PermissionDeniedError: If the project directory is not writable
        """
        key = provider.provider_key
        catalog_id = prefixed_model_id(key, model.model_id)
        handle = await self._acquire()
        result = SyncResult("delete_model", key)

        def _stub(current: Optional[str]) -> Optional[str]:
            if current is None:
                return None
            return remove_model_mapping(current, catalog_id)

        await self._apply(result, handle, ArtifactKind.CATALOG, CATALOG_PATH,
                          self._catalog_edit(key, remove_ids=[catalog_id, model.model_id]))
        await self._apply(result, handle, ArtifactKind.STUB, stub_path(key), _stub)

        self.logger.info("Model removed", provider=key, model=catalog_id,
                         success=result.success)
        return result

    async def _roles_using(self, handle: DirectoryHandle, provider_key: str) -> List[str]:
        try:
            document = load_json_document(
                await handle.read_text(PROJECT_CONFIG_PATH), PROJECT_CONFIG_PATH
            )
        except (PatchError, OSError) as e:
            self.logger.warning("Could not read project configuration", error=str(e))
            return []
        return roles_using(document.data, provider_key)

    async def check_usage(self, provider_key: str) -> List[str]:
        """Roles in the project's active configuration assigned to ``provider_key``.

        Raises:
            PermissionDeniedError: If the project directory is not readable
        """
        handle = await self._acquire(AccessMode.READ)
        return await self._roles_using(handle, provider_key)

    @log_async_execution_time
    async def load_project(self) -> ProjectImport:
        """Read the project's catalog, secrets and provider stubs back into records.

        Each catalog bucket becomes a provider. Its stub, when present,
        supplies the display name, the base URL and the ``modelMap`` used to
        restore API model names; the manifest supplies the API key.

        Raises:
            PermissionDeniedError: If the project directory is not readable
        """
        handle = await self._acquire(AccessMode.READ)
        outcome = ProjectImport()

        try:
            catalog = load_json_document(await handle.read_text(CATALOG_PATH), CATALOG_PATH).data
        except PatchError as e:
            outcome.errors.append(f"{CATALOG_PATH}: {e}")
            return outcome

        secrets: Dict[str, str] = {}
        try:
            manifest = load_json_document(await handle.read_text(SECRETS_PATH), SECRETS_PATH)
            secrets = read_secrets(manifest.data, self.server_aliases)
        except PatchError as e:
            outcome.warnings.append(f"{SECRETS_PATH}: {e}")

        overrides: Dict[str, Dict[str, Any]] = {}
        for key in catalog:
            source = await handle.read_text(stub_path(key))
            if source is None:
                continue
            try:
                overrides[key] = read_stub_details(source)
            except PatchError as e:
                outcome.warnings.append(f"{stub_path(key)}: {e}")

        external = ExternalConfig(supported_models=catalog, secrets=secrets, providers=overrides)
        validation = self.transformer.validate_external(external)
        if not validation.is_valid:
            outcome.errors.extend(validation.errors)
            self.logger.warning("Project catalog rejected", errors=validation.errors)
            return outcome

        outcome.providers, outcome.models = self.transformer.to_internal(external)
        self.logger.info(
            "Project loaded",
            providers_count=len(outcome.providers),
            models_count=len(outcome.models),
            warnings=len(outcome.warnings)
        )
        return outcome
