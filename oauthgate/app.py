from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, Dict, List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from oauthgate.api.error_handling import register_exception_handlers
from oauthgate.api.routes import router
from oauthgate.config import get_settings
from oauthgate.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = get_settings()

__version__ = "0.1.0"


_sweep_task: asyncio.Task | None = None


async def _run_credential_sweep(interval_seconds: int) -> None:
    """Periodically purge refresh tokens past their expiry."""
    from oauthgate.service.runtime import get_runtime

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            get_runtime().credentials.delete_expired()
        except Exception as exc:
            logger.error("credential_sweep_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _sweep_task
    from oauthgate.service.runtime import get_runtime

    runtime = get_runtime()
    interval = runtime.settings.credential_sweep_interval_seconds
    if interval > 0:
        _sweep_task = asyncio.create_task(_run_credential_sweep(interval))
        logger.info("credential_sweep_started", interval_seconds=interval)

    yield

    if _sweep_task:
        _sweep_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _sweep_task
        _sweep_task = None
    logger.info("runtime_shutdown_complete")


app = FastAPI(title="oauthgate", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Default to common local dev hosts; avoid wildcard when credentials are enabled.
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation id for structured logging.

    Taken from the X-Request-ID header when the client sends one, otherwise
    generated, and echoed back on the response.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
    # Token responses must never be cached by proxies
    if request.url.path.startswith("/v1/"):
        response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz")
async def health() -> Dict[str, Any]:
    from oauthgate.service.runtime import get_runtime

    runtime = get_runtime()
    return {
        "status": "healthy",
        "version": __version__,
        "users": len(runtime.identities),
        "credentials": len(runtime.credentials),
        "oauth_configured": bool(runtime.settings.oauth_google_client_id),
    }
