# Application factory for the key service API.
# Created: 2026-10-14
#
# All shared state (store, validator, meter, limiter, manager) is built here
# and hung off app.state; nothing in the key core is a module global.

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from gapminer import __version__
from gapminer.api.middleware import UsageRecordingMiddleware
from gapminer.api.v1 import mount_v1_routers
from gapminer.config import Settings, get_settings
from gapminer.keys.errors import KeyStoreError
from gapminer.keys.manager import APIKeyManager
from gapminer.keys.store import CredentialStore, FileKeyStore, UsageStore
from gapminer.keys.usage import UsageMeter
from gapminer.keys.validator import CredentialValidator
from gapminer.security.audit import AuditLogger
from gapminer.security.rate_limiter import KeyRateLimiter, prune_periodically

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings | None = None,
    credential_store: CredentialStore | None = None,
    usage_store: UsageStore | None = None,
    audit: AuditLogger | None = None,
) -> FastAPI:
    """Build the API app.

    Defaults to a FileKeyStore under ``settings.config_dir`` for both
    credentials and usage.
    """
    settings = settings or get_settings()
    if credential_store is None:
        credential_store = FileKeyStore(settings.config_dir)
    if usage_store is None:
        usage_store = credential_store  # type: ignore[assignment]
    if audit is None and settings.audit_enabled:
        audit = AuditLogger(settings.config_dir / "audit.jsonl")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        pruner = asyncio.create_task(
            prune_periodically(app.state.rate_limiter, settings.rate_limit_cleanup_interval)
        )
        app.state.rate_limit_pruner = pruner
        try:
            yield
        finally:
            pruner.cancel()
            with suppress(asyncio.CancelledError):
                await pruner

    app = FastAPI(title="GapMiner API Keys", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.validator = CredentialValidator(credential_store)
    app.state.usage_meter = UsageMeter(usage_store)
    app.state.rate_limiter = KeyRateLimiter()
    app.state.key_manager = APIKeyManager(
        credential_store,
        audit=audit,
        default_rate_limit=settings.api_key_default_rate_limit,
    )

    @app.exception_handler(KeyStoreError)
    async def key_store_error_handler(request: Request, exc: KeyStoreError):
        logger.error("Key store error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "Key store unavailable"})

    app.add_middleware(UsageRecordingMiddleware)
    mount_v1_routers(app)
    return app
