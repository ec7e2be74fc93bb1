"""Main application entry point."""

import asyncio
import json
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from aiohttp import web, web_runner

from .api_clients.base import NetworkError
from .api_clients.network import NetworkClient
from .api_clients.provider_check import ProviderCheckError, ProviderValidator
from .config.loader import ConfigurationError
from .config.manager import ConfigManager
from .config.settings import get_settings
from .core.capability import AccessMode, CapabilityStore, allow_if_accessible
from .core.errors import ConfigValidationError, PermissionDeniedError
from .core.sync_engine import FileSyncEngine, SyncResult
from .database import close_database, init_database
from .utils.logging import get_logger, setup_logging


@web.middleware
async def error_middleware(request: web.Request, handler):
    """Translate engine and configuration errors into JSON responses."""
    try:
        return await handler(request)
    except PermissionDeniedError as e:
        return web.json_response({"error": str(e), "type": "permission"}, status=403)
    except ConfigValidationError as e:
        return web.json_response({"error": str(e), "errors": e.errors}, status=400)
    except ConfigurationError as e:
        return web.json_response({"error": str(e)}, status=400)


class ProviderSyncApp:
    """Provider Sync application: editor configuration plus the HTTP surface."""

    def __init__(
        self,
        config_manager: Optional[ConfigManager] = None,
        store: Optional[CapabilityStore] = None,
        engine: Optional[FileSyncEngine] = None,
        validator: Optional[ProviderValidator] = None
    ):
        """Initialize the application.

        Components not passed in are created during :meth:`startup`.
        """
        self.settings = get_settings()
        self.logger = get_logger("ProviderSync")
        self.running = False
        self.started_at: Optional[datetime] = None
        self.web_app: Optional[web.Application] = None
        self.web_runner: Optional[web_runner.AppRunner] = None
        self.network_client: Optional[NetworkClient] = None
        self.config_manager = config_manager
        self.store = store
        self.engine = engine
        self.validator = validator

    async def startup(self):
        """Application startup."""
        self.logger.info(
            "Starting Provider Sync",
            version=self.settings.version,
            environment=self.settings.environment
        )

        Path("./data").mkdir(exist_ok=True)
        Path("./logs").mkdir(exist_ok=True)

        db_manager = init_database(create_tables=True)

        if self.config_manager is None:
            self.config_manager = ConfigManager(self.settings.storage.config_file)
            self.config_manager.load_config()
        if self.store is None:
            self.store = CapabilityStore(db_manager, prompter=allow_if_accessible)
        if self.engine is None:
            self.engine = FileSyncEngine(self.store)
        if self.validator is None:
            self.network_client = NetworkClient.from_settings()
            self.validator = ProviderValidator(self.network_client)

        await self._restore_project_access()
        await self._setup_web_server()

        self.running = True
        self.started_at = datetime.now(timezone.utc)
        self.logger.info("Provider Sync started successfully")

    async def shutdown(self):
        """Application shutdown."""
        self.logger.info("Shutting down Provider Sync")
        self.running = False

        await self._stop_web_server()

        if self.network_client:
            await self.network_client.close()

        close_database()
        self.logger.info("Provider Sync stopped")

    async def run(self):
        """Run until a shutdown signal arrives."""
        await self.startup()

        try:
            while self.running:
                await asyncio.sleep(1)
        except KeyboardInterrupt:
            self.logger.info("Received shutdown signal")
        finally:
            await self.shutdown()

    async def _restore_project_access(self):
        """Re-grant the configured project root when no usable handle is stored."""
        root = self.settings.project.root or self.config_manager.project_path
        key = self.settings.project.capability_key
        if await self.store.acquire(key, AccessMode.READWRITE) is not None:
            return
        if not root or not self.settings.project.auto_regrant:
            self.logger.info("No project directory access yet", capability_key=key)
            return
        try:
            await self.store.grant(key, root, AccessMode.READWRITE)
        except PermissionDeniedError as e:
            self.logger.warning("Project directory not accessible", path=root, error=str(e))

    def create_web_app(self) -> web.Application:
        """Build the aiohttp application with all routes."""
        app = web.Application(middlewares=[error_middleware])

        app.router.add_get('/health', self._health_handler)
        app.router.add_post('/project', self._project_handler)
        app.router.add_post('/project/import', self._import_project_handler)
        app.router.add_get('/providers', self._list_providers_handler)
        app.router.add_post('/providers', self._add_provider_handler)
        app.router.add_put('/providers/{provider_id}', self._update_provider_handler)
        app.router.add_delete('/providers/{provider_id}', self._delete_provider_handler)
        app.router.add_post('/providers/{provider_id}/test', self._test_provider_handler)
        app.router.add_get('/providers/{provider_id}/remote-models', self._remote_models_handler)
        app.router.add_post('/models', self._add_model_handler)
        app.router.add_delete('/models/{model_id}', self._delete_model_handler)
        app.router.add_get('/usage/{provider_key}', self._usage_handler)

        return app

    async def _setup_web_server(self):
        """Start the HTTP server."""
        self.web_app = self.create_web_app()
        self.web_runner = web_runner.AppRunner(self.web_app)
        await self.web_runner.setup()

        host, port = self.settings.server.host, self.settings.server.port
        site = web_runner.TCPSite(self.web_runner, host, port)
        await site.start()

        self.logger.info(f"Web server started on http://{host}:{port}")

    async def _stop_web_server(self):
        """Stop the HTTP server."""
        if self.web_runner:
            await self.web_runner.cleanup()
            self.web_runner = None
            self.logger.info("Web server stopped")

    @staticmethod
    async def _read_json(request: web.Request) -> Dict[str, Any]:
        try:
            data = await request.json()
        except json.JSONDecodeError:
            raise ConfigValidationError(["Request body must be valid JSON"])
        if not isinstance(data, dict):
            raise ConfigValidationError(["Request body must be a JSON object"])
        return data

    @staticmethod
    def _sync_response(payload: Dict[str, Any], result: SyncResult, status: int = 200):
        payload["sync"] = result.to_dict()
        return web.json_response(payload, status=status)

    def _provider_or_404(self, provider_id: str):
        provider = self.config_manager.get_provider(provider_id)
        if provider is None:
            raise web.HTTPNotFound(
                text=json.dumps({"error": f"Provider not found: {provider_id}"}),
                content_type="application/json"
            )
        return provider

    async def _health_handler(self, request):
        """Health check endpoint."""
        uptime = 0
        if self.started_at:
            uptime = int((datetime.now(timezone.utc) - self.started_at).total_seconds())
        health_data = {
            "status": "healthy" if self.running else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": self.settings.version,
            "environment": self.settings.environment,
            "uptime_seconds": uptime
        }

        status_code = 200 if self.running else 503
        return web.json_response(health_data, status=status_code)

    async def _project_handler(self, request):
        """Grant access to the TaskMaster project directory."""
        data = await self._read_json(request)
        path = data.get("path")
        if not path:
            raise ConfigValidationError(["Project path is required"])
        try:
            mode = AccessMode(data.get("mode", AccessMode.READWRITE.value))
        except ValueError:
            raise ConfigValidationError([f"Unknown access mode: {data.get('mode')}"])

        handle = await self.store.grant(self.settings.project.capability_key, path, mode)
        self.config_manager.set_project_path(str(handle.path))
        return web.json_response({"path": str(handle.path), "name": handle.name,
                                  "mode": mode.value})

    async def _import_project_handler(self, request):
        """Replace the editor configuration with what the project files hold."""
        loaded = await self.engine.load_project()
        if not loaded.success:
            return web.json_response(loaded.to_dict(), status=400)
        self.config_manager.import_configuration(loaded.providers, loaded.models)
        return web.json_response(loaded.to_dict())

    async def _list_providers_handler(self, request):
        """List providers and models in their editor form."""
        return web.json_response({
            "providers": [p.model_dump(by_alias=True, mode="json")
                          for p in self.config_manager.providers],
            "models": [m.model_dump(by_alias=True, mode="json")
                       for m in self.config_manager.models],
        })

    async def _add_provider_handler(self, request):
        """Add a provider and create its project files."""
        data = await self._read_json(request)
        provider = self.config_manager.add_provider(data)
        result = await self.engine.add_provider(
            provider,
            self.config_manager.get_models_by_provider(provider.id),
            existing=self.config_manager.providers
        )
        return self._sync_response(
            {"provider": provider.model_dump(by_alias=True, mode="json")}, result, status=201
        )

    async def _update_provider_handler(self, request):
        """Update a provider and its project files."""
        provider_id = request.match_info["provider_id"]
        previous = self._provider_or_404(provider_id)
        data = await self._read_json(request)
        merged = {**previous.model_dump(by_alias=True, mode="json"), **data, "id": provider_id}

        provider = self.config_manager.update_provider(merged)
        result = await self.engine.update_provider(
            provider,
            previous,
            self.config_manager.get_models_by_provider(provider_id),
            existing=self.config_manager.providers
        )
        return self._sync_response({"provider": provider.model_dump(by_alias=True, mode="json")},
                                   result)

    async def _delete_provider_handler(self, request):
        """Delete a provider, its models and its project files."""
        provider_id = request.match_info["provider_id"]
        self._provider_or_404(provider_id)
        removed = self.config_manager.delete_provider(provider_id)
        result = await self.engine.delete_provider(removed)
        return self._sync_response({"providerId": provider_id}, result)

    async def _test_provider_handler(self, request):
        """Test a provider's API connection."""
        provider = self._provider_or_404(request.match_info["provider_id"])
        result = await self.validator.test_provider_connection(provider)
        return web.json_response(result.to_dict())

    async def _remote_models_handler(self, request):
        """List the models reported by a provider's API."""
        provider = self._provider_or_404(request.match_info["provider_id"])
        try:
            models = await self.validator.fetch_models(provider)
        except ProviderCheckError as e:
            return web.json_response({"error": str(e)}, status=400)
        except NetworkError as e:
            return web.json_response({"error": str(e), "type": e.kind.value}, status=502)
        return web.json_response({"models": [model.to_dict() for model in models]})

    async def _add_model_handler(self, request):
        """Add a model and register it in the project files."""
        data = await self._read_json(request)
        model = self.config_manager.add_model(data)
        provider = self.config_manager.get_provider(model.provider_id)
        result = await self.engine.add_model(provider, model)
        return self._sync_response(
            {"model": model.model_dump(by_alias=True, mode="json")}, result, status=201
        )

    async def _delete_model_handler(self, request):
        """Delete a model and remove it from the project files."""
        model_id = request.match_info["model_id"]
        model = self.config_manager.get_model(model_id)
        if model is None:
            return web.json_response({"error": f"Model not found: {model_id}"}, status=404)
        provider = self.config_manager.get_provider(model.provider_id)
        self.config_manager.delete_model(model_id)
        result = await self.engine.delete_model(provider, model)
        return self._sync_response({"modelId": model_id}, result)

    async def _usage_handler(self, request):
        """Roles of the project configuration that use a provider."""
        provider_key = request.match_info["provider_key"]
        roles = await self.engine.check_usage(provider_key)
        return web.json_response({"providerKey": provider_key, "roles": roles,
                                  "inUse": bool(roles)})


def setup_signal_handlers(app: ProviderSyncApp):
    """Set up signal handlers for graceful shutdown."""
    def _signal_handler(signum, frame):
        app.logger.info(f"Received signal {signum}")
        app.running = False

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)


async def main():
    """Main entry point."""
    setup_logging()

    logger = get_logger("main")
    logger.info("Initializing Provider Sync application")

    app = ProviderSyncApp()
    setup_signal_handlers(app)

    await app.run()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    run()
