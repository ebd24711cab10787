from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from instadrop.api.config import AppConfig, load_app_config
from instadrop.api.errors import ApiError, PaymentRequired
from instadrop.api.routes_public import public_router
from instadrop.api.routes_public_parts.health import router as health_router
from instadrop.api.structured_logging import RequestLogMiddleware, configure_structured_logging, log_event
from instadrop.ledger.verifier import LedgerVerifier
from instadrop.runtime.gate import DownloadGate
from instadrop.storage.artifacts import ArtifactStorage
from instadrop.storage.drop_cache import CachedDropStore
from instadrop.storage.drop_store import DropStoreError, JsonDropStore, StoreCorruptError, StoreWriteError

logger = logging.getLogger("instadrop.app")

_HTTP_CODES = {
    400: "bad_request",
    404: "not_found",
    405: "method_not_allowed",
    413: "payload_too_large",
}


class SPAStaticFiles(StaticFiles):
    """Static frontend; unknown non-API paths fall back to index.html."""

    async def get_response(self, path: str, scope):
        try:
            return await super().get_response(path, scope)
        except StarletteHTTPException as e:
            if e.status_code != 404 or path.startswith("api/") or path == "api":
                raise
            return await super().get_response("index.html", scope)


def _error(status_code: int, code: str, message: str, details: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ApiError(status_code, code, message, details or {}).to_body())


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(PaymentRequired)
    async def _payment_required(request: Request, exc: PaymentRequired) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(DropStoreError)
    async def _store_error(request: Request, exc: DropStoreError) -> JSONResponse:
        if isinstance(exc, StoreCorruptError):
            code, message = "store_corrupt", "File index is unavailable"
        elif isinstance(exc, StoreWriteError):
            code, message = "store_write_failed", "File index could not be updated"
        else:
            code, message = "store_error", "File index error"
        log_event(logger, "store_error", level=logging.ERROR, code=code, path=request.url.path, error=str(exc))
        return _error(500, code, message)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "bad_request", "Invalid request", {"errors": jsonable_encoder(exc.errors())})

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        code = _HTTP_CODES.get(exc.status_code, "http_error")
        return _error(exc.status_code, code, str(exc.detail or code))

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled error on %s", request.url.path)
        return _error(500, "internal", "Internal server error")


def create_app(
    *,
    cfg: Optional[AppConfig] = None,
    ledger_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Create the FastAPI application.

    cfg defaults to load_app_config() (INSTADROP_* env). ledger_transport lets
    tests route ledger lookups through httpx.MockTransport.

    Services attached to app.state: cfg, store, artifacts, verifier, gate.
    """
    configure_structured_logging()
    cfg = cfg or load_app_config()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        log_event(
            logger,
            "app_started",
            mode=cfg.mode,
            network=cfg.ledger_network,
            failure_policy=cfg.verification_failure_policy,
            accept_pending=cfg.accept_pending,
            frontend=str(cfg.frontend_dir) if cfg.frontend_dir else None,
        )
        yield

    # Disable docs in production.
    if cfg.mode == "prod":
        app = FastAPI(title="InstaDrop API", docs_url=None, redoc_url=None, openapi_url=None, lifespan=_lifespan)
    else:
        app = FastAPI(title="InstaDrop API", lifespan=_lifespan)

    app.state.cfg = cfg

    store = JsonDropStore(cfg.db_path, corrupt_policy=cfg.store_corrupt_policy)
    app.state.store = CachedDropStore(store) if cfg.cache_enabled else store
    app.state.artifacts = ArtifactStorage(cfg.uploads_dir)
    app.state.verifier = LedgerVerifier.from_config(cfg, transport=ledger_transport)
    app.state.gate = DownloadGate.from_config(
        cfg,
        store=app.state.store,
        artifacts=app.state.artifacts,
        verifier=app.state.verifier,
    )

    # --- Middleware ---
    app.add_middleware(RequestLogMiddleware)

    # CORS (explicit allowlist only by default).
    if cfg.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(cfg.cors_origins),
            allow_credentials=cfg.cors_origins != ("*",),
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", "X-Payment-TxId"],
            expose_headers=["Content-Disposition", "Content-Length", "X-Payment-Verification"],
        )

    _install_error_handlers(app)

    # --- Routers ---
    app.include_router(health_router, tags=["health"])
    app.include_router(public_router)

    # Frontend last so API routes win.
    if cfg.frontend_dir is not None:
        app.mount("/", SPAStaticFiles(directory=str(cfg.frontend_dir), html=True), name="frontend")

    return app
