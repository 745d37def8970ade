"""
FastAPI entrypoint for the bucket proxy.

``create_app`` wires the bucket registry, storage gateway, rate limiters and
session store into one application. Routes live in ``bucketproxy.api_router``
(management API) and ``bucketproxy.proxy_router`` (public reads); this module
owns startup, shutdown and the translation of domain errors into responses.
"""
import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from bucketproxy import api_router, backend_clients, proxy_router
from bucketproxy.auth import SessionStore
from bucketproxy.buckets import BucketRegistry, InvalidBucketError
from bucketproxy.config import ConfigurationError, Settings, load_settings
from bucketproxy.models import HealthResponse
from bucketproxy.ratelimit import RateLimiterSet
from bucketproxy.storage import ObjectNotFoundError, StorageGateway

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    storage_client=None,
    redis_factory=None,
) -> FastAPI:
    """
    Build the application. Configuration problems raise ``ConfigurationError``
    here, before any request can be served.
    """
    if settings is None:
        settings = load_settings()
    registry = BucketRegistry.from_settings(settings)
    if storage_client is None:
        storage_client = backend_clients.create_client(settings)
    limiters = RateLimiterSet.from_settings(settings, redis_factory=redis_factory)

    # No docs routes: they would shadow public reads from a bucket aliased "docs".
    app = FastAPI(title="Bucket Proxy", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.registry = registry
    app.state.storage = StorageGateway(registry, storage_client)
    app.state.limiters = limiters
    app.state.sessions = SessionStore(settings.session_ttl_seconds)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.allowed_origins),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup_event():
        state = await limiters.initialize()
        logger.info(
            "Serving buckets %s (rate limiting: %s)",
            ", ".join(display for _, display in registry.entries()),
            state.value,
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        await limiters.close()

    @app.exception_handler(InvalidBucketError)
    async def invalid_bucket_handler(request: Request, exc: InvalidBucketError):
        return JSONResponse(status_code=400, content={"detail": "Invalid bucket"})

    @app.exception_handler(ObjectNotFoundError)
    async def object_not_found_handler(request: Request, exc: ObjectNotFoundError):
        return JSONResponse(status_code=404, content={"detail": "File not found"})

    def server_error(exc: Exception) -> JSONResponse:
        detail = "Internal server error" if settings.is_production else str(exc)
        return JSONResponse(status_code=500, content={"detail": detail})

    async def storage_error_handler(request: Request, exc: Exception):
        logger.error("Storage error on %s %s", request.method, request.url.path, exc_info=exc)
        return server_error(exc)

    async def unhandled_error_handler(request: Request, exc: Exception):
        # The server error middleware re-raises after this, so the server logs the traceback.
        logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return server_error(exc)

    app.add_exception_handler(ClientError, storage_error_handler)
    app.add_exception_handler(BotoCoreError, storage_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router.router)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        return HealthResponse(status="healthy", rate_limit_backend=limiters.state.value)

    # Catch-all public reads go last.
    app.include_router(proxy_router.router)
    return app


def main():
    try:
        settings = load_settings()
        app = create_app(settings)
    except ConfigurationError as exc:
        logger.error("Failed to start server: %s", exc)
        raise SystemExit(1)

    logging.getLogger().setLevel(settings.log_level)

    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
